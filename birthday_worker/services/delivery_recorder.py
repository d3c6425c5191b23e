# birthday_worker/services/delivery_recorder.py
from typing import Optional
from birthday_worker.database.store import SchedulerStore
from birthday_worker.models import DeliveryOutcome, DeliveryRecord, DeliveryStatus
import logging

logger = logging.getLogger(__name__)

class DeliveryRecorder:
    """Appends one delivery record per send attempt"""

    def __init__(self, store: SchedulerStore):
        self.store = store

    @staticmethod
    def build_record(
        recipient_id: str,
        template_id: Optional[str],
        tenant_id: str,
        outcome: DeliveryOutcome
    ) -> DeliveryRecord:
        if outcome.success:
            return DeliveryRecord(
                recipient_id=recipient_id,
                template_id=template_id,
                tenant_id=tenant_id,
                channel=outcome.channel,
                status=DeliveryStatus.DELIVERED,
                scheduled_for=outcome.scheduled_for,
                sent_at=outcome.attempted_at,
                delivered_at=outcome.attempted_at,
                external_id=outcome.external_id
            )
        return DeliveryRecord(
            recipient_id=recipient_id,
            template_id=template_id,
            tenant_id=tenant_id,
            channel=outcome.channel,
            status=DeliveryStatus.FAILED,
            scheduled_for=outcome.scheduled_for,
            error_message=outcome.error_message or "Unknown error"
        )

    async def record(
        self,
        recipient_id: str,
        template_id: Optional[str],
        tenant_id: str,
        outcome: DeliveryOutcome
    ) -> Optional[str]:
        """Write the record; a failed write is logged and never raised, since the
        send it describes has already happened"""
        record = self.build_record(recipient_id, template_id, tenant_id, outcome)
        try:
            return await self.store.create_delivery_record(record)
        except Exception as e:
            logger.error(
                f"Failed to record {record.status.value} {record.channel.value} delivery "
                f"for recipient {recipient_id} (tenant {tenant_id}): {e}",
                exc_info=True
            )
            return None
