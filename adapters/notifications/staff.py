"""In-app notifications for supervisors and admins."""

from collections.abc import Sequence

from risk_monitor.domain.errors import NotificationDeliveryError
from risk_monitor.domain.models import AlertNotification, RiskLevel
from risk_monitor.services.common import logger
from risk_monitor.services.persistence import StaffDirectory


class StaffNotificationChannel:
    """Writes one in-app notification per staff member holding one of ``roles``."""

    channel_name = "staff"

    def __init__(self, directory: StaffDirectory, roles: Sequence[str]) -> None:
        self.directory = directory
        self.roles = list(roles)
        self.logger = logger.bind(component="staff_notification_channel")

    async def send(self, alert: AlertNotification) -> None:
        recipients = await self.directory.list_staff(self.roles)
        if not recipients:
            self.logger.warning("no_staff_recipients", roles=self.roles, title=alert.title)
            return

        notification_type = "critical" if alert.level == RiskLevel.CRITICAL else "warning"
        if alert.case_id is not None:
            entity_type, entity_id = "critical_case", alert.case_id
        elif len(alert.patient_ids) == 1:
            entity_type, entity_id = "patient", alert.patient_ids[0]
        else:
            # Digest alerts cover several patients and are linked to none of them
            entity_type, entity_id = "patient", "monitoring_run"

        failed = []
        for user_id in recipients:
            try:
                await self.directory.create_notification(
                    user_id=user_id,
                    title=alert.title,
                    message=alert.body,
                    notification_type=notification_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
            except Exception as e:
                self.logger.error("staff_notification_failed", user_id=user_id, error=str(e))
                failed.append(user_id)

        if failed:
            raise NotificationDeliveryError(
                f"{len(failed)} of {len(recipients)} staff notifications failed"
            )
