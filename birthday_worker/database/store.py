# birthday_worker/database/store.py
from typing import Protocol, Optional, List, Sequence, Tuple
from datetime import datetime
from birthday_worker.models import TenantSnapshot, Template, NewTemplate, DeliveryRecord

class SchedulerStore(Protocol):
    """Persistence surface the scheduler reads and writes.

    The dashboard owns tenants, recipients and templates; the scheduler only
    seeds templates, appends delivery records, writes run bookkeeping and
    touches the tenant's advisory last-run timestamp.
    """

    async def list_tenant_ids(self) -> List[str]: ...

    async def load_tenant(self, tenant_id: str) -> Optional[TenantSnapshot]: ...

    async def update_last_run(self, tenant_id: str, ran_at: datetime) -> None: ...

    async def claim_run(self, tenant_id: str, date_key: str) -> bool:
        """Insert the (tenant, date) run marker; False when it already exists"""
        ...

    async def claim_recipient(self, recipient_id: str, date_key: str) -> bool:
        """Insert the (recipient, date) send marker; False when it already exists"""
        ...

    async def complete_run(self, tenant_id: str, date_key: str, completed_at: datetime) -> bool:
        """Record the completion; False when another pass already recorded it"""
        ...

    async def list_unfinished_runs(
        self, started_before: datetime, started_after: datetime
    ) -> List[Tuple[str, str]]:
        """(tenant id, date key) of run markers with no completion, started inside the window"""
        ...

    async def list_templates(self, tenant_id: str) -> List[Template]:
        """Active or default templates, default first"""
        ...

    async def count_templates(self, tenant_id: str) -> int: ...

    async def seed_templates(
        self, tenant_id: str, templates: Sequence[NewTemplate]
    ) -> List[Template]:
        """Insert templates only if the tenant still has none; returns the
        tenant's active or default templates afterwards"""
        ...

    async def create_delivery_record(self, record: DeliveryRecord) -> str: ...
