"""Builds the monitoring pipeline and its collaborators from configuration."""

from adapters.notifications.slack import SlackWebhookChannel
from adapters.notifications.staff import StaffNotificationChannel
from adapters.persistence.sql import SqlClinicStore
from risk_monitor.config import AppConfig
from risk_monitor.services.alert_summary import AlertSummaryAgent
from risk_monitor.services.alert_system import (
    AlertDispatcher,
    LogAlertChannel,
    NotificationChannel,
)
from risk_monitor.services.monitoring_run import MonitoringPipeline
from risk_monitor.services.persistence import ClinicStore, StaffDirectory


def create_store(config: AppConfig) -> SqlClinicStore:
    store = SqlClinicStore(config.database.url)
    store.create_schema()
    return store


def build_channels(config: AppConfig, directory: StaffDirectory) -> list[NotificationChannel]:
    channels: list[NotificationChannel] = []
    for name in config.alerts.channels:
        if name == "log":
            channels.append(LogAlertChannel())
        elif name == "staff":
            channels.append(StaffNotificationChannel(directory, config.alerts.staff_roles))
        elif name == "slack" and config.alerts.slack_webhook_url:
            channels.append(
                SlackWebhookChannel(
                    config.alerts.slack_webhook_url,
                    timeout_seconds=config.alerts.slack_timeout_seconds,
                )
            )
    return channels


def build_pipeline(config: AppConfig, store: ClinicStore) -> MonitoringPipeline:
    summarizer = AlertSummaryAgent(config.ai_provider) if config.alerts.enable_ai_summary else None
    dispatcher = AlertDispatcher(
        channels=build_channels(config, store),  # type: ignore[arg-type]
        batching=config.alerts.batching,
        summarizer=summarizer,
    )
    return MonitoringPipeline(store, config, dispatcher)
