# birthday_worker/scheduler/run_ledger.py
from datetime import datetime
from enum import Enum
from typing import List, Tuple
from birthday_worker.database.store import SchedulerStore
import logging

logger = logging.getLogger(__name__)

class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"

class RunLedger:
    """At-most-once gate per (tenant, local date), with a finer per-(recipient,
    local date) gate underneath so an interrupted run can be resumed."""

    def __init__(self, store: SchedulerStore):
        self.store = store

    async def claim(self, tenant_id: str, date_key: str) -> ClaimResult:
        if await self.store.claim_run(tenant_id, date_key):
            logger.info(f"Claimed run for tenant {tenant_id} on {date_key}")
            return ClaimResult.CLAIMED
        logger.debug(f"Run for tenant {tenant_id} on {date_key} already claimed")
        return ClaimResult.ALREADY_CLAIMED

    async def claim_recipient(self, recipient_id: str, date_key: str) -> ClaimResult:
        if await self.store.claim_recipient(recipient_id, date_key):
            return ClaimResult.CLAIMED
        logger.debug(f"Recipient {recipient_id} already handled on {date_key}")
        return ClaimResult.ALREADY_CLAIMED

    async def complete(self, tenant_id: str, date_key: str, completed_at: datetime) -> bool:
        return await self.store.complete_run(tenant_id, date_key, completed_at)

    async def unfinished(self, started_before: datetime, started_after: datetime) -> List[Tuple[str, str]]:
        return await self.store.list_unfinished_runs(started_before, started_after)
