"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no secrets in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

ChannelName = Literal["log", "staff", "slack"]


class RiskThresholds(BaseModel):
    """Thresholds for every rule the risk evaluator applies."""

    missed_session_window_days: int = Field(
        default=30, gt=0, description="Look-back window for counting no-shows"
    )
    missed_sessions_high: int = Field(default=2, gt=0, description="No-shows that mean high risk")
    missed_sessions_critical: int = Field(
        default=4, gt=0, description="No-shows that mean critical risk"
    )

    contact_gap_medium_days: int = Field(
        default=90, gt=0, description="Days without contact before medium risk"
    )
    contact_gap_high_days: int = Field(
        default=180, gt=0, description="Days without contact before high risk"
    )

    metric_delta_high_pct: float = Field(
        default=25.0, gt=0.0, description="Relative metric change (percent) for high risk"
    )
    metric_delta_critical_pct: float = Field(
        default=50.0, gt=0.0, description="Relative metric change (percent) for critical risk"
    )

    progress_session_count: int = Field(
        default=3, gt=0, description="Attended sessions inspected for progress notes"
    )
    progress_keywords: list[str] = Field(
        default_factory=lambda: ["improv", "progress", "better", "تحسن", "تقدم"],
        description="Words in an assessment or plan that indicate progress",
    )

    plan_stall_days: int = Field(
        default=60, gt=0, description="Plan age after which low progress is flagged"
    )
    plan_min_progress_pct: float = Field(
        default=20.0, ge=0.0, le=100.0, description="Minimum expected plan progress"
    )

    @model_validator(mode="after")
    def escalation_steps_are_ordered(self) -> "RiskThresholds":
        """Each critical/high threshold must sit above its lower tier."""
        if self.missed_sessions_critical <= self.missed_sessions_high:
            raise ValueError("missed_sessions_critical must be greater than missed_sessions_high")
        if self.contact_gap_high_days <= self.contact_gap_medium_days:
            raise ValueError("contact_gap_high_days must be greater than contact_gap_medium_days")
        if self.metric_delta_critical_pct <= self.metric_delta_high_pct:
            raise ValueError("metric_delta_critical_pct must be greater than metric_delta_high_pct")
        return self


class MonitoringConfig(BaseModel):
    """Core monitoring run configuration."""

    active_patient_limit: int = Field(
        default=1000, gt=0, description="Maximum active patients fetched per run"
    )
    max_concurrent_evaluations: int = Field(
        default=10, gt=0, description="Maximum number of concurrent patient evaluations"
    )
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)


class AlertConfig(BaseModel):
    """Where and how staff alerts are delivered."""

    batching: Literal["per_patient", "digest"] = Field(
        default="per_patient", description="One notification per patient or one digest per run"
    )
    channels: list[ChannelName] = Field(
        default_factory=lambda: cast(list[ChannelName], ["log"]),
        min_length=1,
        description="Notification channels alerts are sent to",
    )
    staff_roles: list[str] = Field(
        default_factory=lambda: ["supervisor", "admin"],
        description="Staff roles that receive in-app notifications",
    )
    slack_webhook_url: str | None = Field(default=None, description="Slack incoming webhook URL")
    slack_timeout_seconds: float = Field(default=10.0, gt=0.0)
    enable_ai_summary: bool = Field(
        default=False, description="Append an AI-written triage note to each alert"
    )
    notify_new_cases: bool = Field(
        default=False, description="Send a separate alert when a run opens a critical case"
    )


class SecurityConfig(BaseModel):
    cron_secret: str | None = Field(
        default=None, description="Shared secret the cron trigger presents as a bearer token"
    )


class AIProviderConfig(BaseModel):
    """AI provider configuration with secure defaults."""

    openai_api_key: str | None = Field(None, description="OpenAI API key")
    summary_model: str = Field(
        default="openai:gpt-4o-mini", description="Model used for alert triage notes"
    )
    temperature: float = Field(default=0.1, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=20.0, gt=0.0)

    @field_validator("openai_api_key")
    def validate_api_key(cls, v):
        if v is None:
            return v
        if not v.startswith("sk-"):
            raise ValueError("AI provider API key must start with 'sk-'")
        return v


class DatabaseConfig(BaseModel):
    url: str = Field(default="sqlite:///./clinic.db", description="Database URL")


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, gt=0, lt=65536, description="API server port")
    reload: bool = Field(default=False, description="Enable auto-reload for development")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    ai_provider: AIProviderConfig = Field(default_factory=AIProviderConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self

    @model_validator(mode="after")
    def channels_are_configured(self) -> "AppConfig":
        if "slack" in self.alerts.channels and not self.alerts.slack_webhook_url:
            raise ValueError("slack channel requires SLACK_WEBHOOK_URL")
        if self.alerts.enable_ai_summary and not self.ai_provider.openai_api_key:
            raise ValueError("AI alert summaries require OPENAI_API_KEY")
        return self


def _split_list(val: str) -> list[str]:
    return [item.strip() for item in val.split(",") if item.strip()]


_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})


def parse_flag(value: object) -> bool | None:
    """Strictly read an on/off value from env or stored settings; None if it is not one."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in _TRUE_WORDS

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    thresholds = RiskThresholds(
        missed_sessions_high=int(os.getenv("MISSED_SESSIONS_HIGH", "2")),
        missed_sessions_critical=int(os.getenv("MISSED_SESSIONS_CRITICAL", "4")),
        contact_gap_medium_days=int(os.getenv("CONTACT_GAP_MEDIUM_DAYS", "90")),
        contact_gap_high_days=int(os.getenv("CONTACT_GAP_HIGH_DAYS", "180")),
        metric_delta_high_pct=float(os.getenv("METRIC_DELTA_HIGH_PCT", "25")),
        metric_delta_critical_pct=float(os.getenv("METRIC_DELTA_CRITICAL_PCT", "50")),
    )

    monitoring_config = MonitoringConfig(
        active_patient_limit=int(os.getenv("ACTIVE_PATIENT_LIMIT", "1000")),
        max_concurrent_evaluations=int(os.getenv("MAX_CONCURRENT_EVALUATIONS", "10")),
        thresholds=thresholds,
    )

    alert_config = AlertConfig(
        batching="digest" if os.getenv("ALERT_BATCHING", "").strip().lower() == "digest"
        else "per_patient",
        channels=cast(list[ChannelName], _split_list(os.getenv("ALERT_CHANNELS", "log"))),
        staff_roles=_split_list(os.getenv("ALERT_STAFF_ROLES", "supervisor,admin")),
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
        enable_ai_summary=_parse_bool(os.getenv("ENABLE_AI_SUMMARY"), False),
        notify_new_cases=_parse_bool(os.getenv("NOTIFY_NEW_CASES"), False),
    )

    security_config = SecurityConfig(cron_secret=os.getenv("CRON_SECRET") or None)

    ai_config = AIProviderConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        summary_model=os.getenv("ALERT_SUMMARY_MODEL", "openai:gpt-4o-mini"),
    )

    database_config = DatabaseConfig(url=os.getenv("DATABASE_URL", "sqlite:///./clinic.db"))

    api_config = APIConfig(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=_parse_bool(os.getenv("API_RELOAD"), debug),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        monitoring=monitoring_config,
        alerts=alert_config,
        security=security_config,
        ai_provider=ai_config,
        database=database_config,
        api=api_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


# Development helpers
def print_config_summary(config: AppConfig | None = None) -> None:
    """Print configuration summary for debugging."""
    config = config or get_config()
    thresholds = config.monitoring.thresholds

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nMONITORING CONFIGURATION")
    print(f"Active Patient Limit: {config.monitoring.active_patient_limit}")
    print(f"Concurrent Evaluations: {config.monitoring.max_concurrent_evaluations}")
    print(
        f"Missed Sessions: high >= {thresholds.missed_sessions_high}, "
        f"critical >= {thresholds.missed_sessions_critical}"
    )
    print(
        f"Contact Gap: medium > {thresholds.contact_gap_medium_days}d, "
        f"high > {thresholds.contact_gap_high_days}d"
    )

    print("\nALERT CONFIGURATION")
    print(f"Channels: {', '.join(config.alerts.channels)}")
    print(f"Batching: {config.alerts.batching}")
    print(f"AI Summary: {config.alerts.enable_ai_summary}")
    print(f"New Case Alerts: {config.alerts.notify_new_cases}")
    print(f"Cron Secret Set: {bool(config.security.cron_secret)}")


if __name__ == "__main__":
    print_config_summary()
