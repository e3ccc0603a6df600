"""
AI-written triage notes for staff alerts, using Pydantic AI.

The note is an optional extra on top of the deterministic alert text: any
timeout, provider error or empty answer simply leaves the alert without it.
"""

import asyncio

from pydantic_ai import Agent

from risk_monitor.config import AIProviderConfig
from risk_monitor.domain.models import MonitoringResult
from risk_monitor.services.common import logger

MAX_NOTE_LENGTH = 600


class AlertSummaryAgent:
    """
    Writes a short note to help staff prioritise a flagged patient.

    Design principles:
    - No diagnosis and no treatment changes, only follow-up priorities
    - Works from the monitoring findings alone; no raw patient record is sent
    - Bounded by a timeout so alerting is never held up
    """

    def __init__(self, config: AIProviderConfig) -> None:
        self.config = config
        self.logger = logger.bind(component="alert_summary_agent")

        self.agent = Agent(
            model=self.config.summary_model,
            output_type=str,
            system_prompt=self._build_system_prompt(),
            model_settings={"temperature": self.config.temperature},
            defer_model_check=True,
        )

    def _build_system_prompt(self) -> str:
        return """You assist the supervisors of a medical center with patient follow-up.

Given the automated monitoring findings for one patient, write 2-4 short lines:
1. What needs attention first
2. Who should reach out (reception, treating doctor, supervisor)
3. How soon

Rules:
- No diagnosis, no medication or treatment changes
- Do not invent facts that are not in the findings
- Plain text only, no markdown headings"""

    def _build_user_prompt(self, result: MonitoringResult) -> str:
        findings = "\n".join(
            f"- [{f.level.value}] {f.reason}" for f in result.findings
        ) or "- none"
        recommendations = "\n".join(f"- {r}" for r in result.recommendations) or "- none"
        return f"""PATIENT: {result.patient_name or result.patient_id}
OVERALL RISK: {result.risk_level.value}

FINDINGS:
{findings}

STANDARD RECOMMENDATIONS:
{recommendations}"""

    async def summarize(self, result: MonitoringResult) -> str | None:
        try:
            run_result = await asyncio.wait_for(
                self.agent.run(self._build_user_prompt(result)),
                timeout=self.config.timeout_seconds,
            )
        except TimeoutError:
            self.logger.warning(
                "alert_summary_timeout",
                patient_id=result.patient_id,
                timeout_seconds=self.config.timeout_seconds,
            )
            return None
        except Exception as e:
            self.logger.error("alert_summary_failed", patient_id=result.patient_id, error=str(e))
            return None

        note = run_result.output.strip()
        if not note:
            return None
        return note[:MAX_NOTE_LENGTH]
