# birthday_worker/scheduler/orchestrator.py
"""Tick orchestrator.

Once per tick every tenant is checked against its configured local send
minute. A due tenant is claimed in the run ledger, its birthdays are sent
and recorded one recipient at a time, and its admins get a digest of the
birthdays coming up. Failures stay inside the recipient or tenant they
happened in.
"""
import asyncio
from datetime import datetime, timedelta, timezone as dt_timezone
from enum import Enum
from typing import Callable, List, Optional
from pydantic import BaseModel
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.database.store import SchedulerStore
from birthday_worker.exceptions import (
    DispatchError,
    SenderConfigurationError,
    TemplateUnavailableError,
    TenantNotFoundError,
)
from birthday_worker.models import (
    DeliveryChannel,
    DeliveryOutcome,
    DispatchRequest,
    Recipient,
    Sender,
    Template,
    Tenant,
    TenantSnapshot,
)
from birthday_worker.scheduler.civil_time import CivilTime, local_date, local_instant, local_now
from birthday_worker.scheduler.eligibility import scan_today, scan_upcoming
from birthday_worker.scheduler.run_ledger import ClaimResult, RunLedger
from birthday_worker.services.admin_notifier import AdminNotifier
from birthday_worker.services.delivery_recorder import DeliveryRecorder
from birthday_worker.services.dispatch import DispatchGateway
from birthday_worker.services.template_service import (
    TemplateResolver,
    build_variables,
    render,
    select_send_template,
)
from birthday_worker.utils.validation import strip_html, validate_email
import logging

logger = logging.getLogger(__name__)

# Wake slightly after the interval boundary so the local minute has turned over
TICK_OFFSET_SECONDS = 1.0

# Markers older than this belong to a local day that has already ended everywhere
RESUME_LOOKBACK = timedelta(days=2)

class SchedulerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    STOPPED = "stopped"

class TenantRunSummary(BaseModel):
    tenant_id: str
    date_key: str
    birthdays: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    admins_notified: int = 0
    resumed: bool = False

def utc_now() -> datetime:
    return datetime.now(dt_timezone.utc)

def is_due(tenant: Tenant, now: CivilTime) -> bool:
    """Coarse pre-filter: the tenant's send minute, not yet run today.

    Duplicate sends are prevented by the run ledger, not by this check.
    """
    if now.hour != tenant.send_hour or now.minute != tenant.send_minute:
        return False
    if tenant.last_run_at is None:
        return True
    return local_date(tenant.last_run_at, tenant.timezone) != now.date

class BirthdayScheduler:
    def __init__(
        self,
        store: SchedulerStore,
        email_gateway: DispatchGateway,
        sms_gateway: Optional[DispatchGateway] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.settings = settings or default_settings
        self.store = store
        self.email_gateway = email_gateway
        self.sms_gateway = sms_gateway
        self.clock = clock

        self.ledger = RunLedger(store)
        self.templates = TemplateResolver(store)
        self.recorder = DeliveryRecorder(store)
        self.notifier = AdminNotifier(email_gateway, self.settings)

        self.state = SchedulerState.IDLE
        self.last_tick_at: Optional[datetime] = None
        self.ticks_run = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Resume interrupted runs, tick once now, then on every interval"""
        if self.is_running:
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever(), name="birthday-scheduler")
        return self._task

    async def stop(self):
        """Stop scheduling ticks and wait for the in-flight one to finish"""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        self.state = SchedulerState.STOPPED
        logger.info("Birthday scheduler stopped")

    async def run_forever(self):
        logger.info(f"🚀 Birthday scheduler started (every {self.settings.tick_interval_seconds}s)")
        try:
            # Nothing is in flight in this process yet, so any open run of today is resumable
            await self.resume_unfinished_runs(min_age_seconds=0)
        except Exception as e:
            logger.error(f"Failed to resume unfinished runs: {e}", exc_info=True)

        while not self._stop_event.is_set():
            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)
                self.state = SchedulerState.IDLE

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.seconds_until_next_tick())
            except asyncio.TimeoutError:
                pass

        self.state = SchedulerState.STOPPED

    def seconds_until_next_tick(self) -> float:
        interval = max(1, self.settings.tick_interval_seconds)
        elapsed = self.clock().timestamp() % interval
        return interval - elapsed + TICK_OFFSET_SECONDS

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def run_tick(self, now: Optional[datetime] = None) -> List[TenantRunSummary]:
        now = now or self.clock()
        self.state = SchedulerState.SCANNING
        tenant_ids = await self.store.list_tenant_ids()

        self.state = SchedulerState.PROCESSING
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_tenants))

        async def guarded(tenant_id: str) -> Optional[TenantRunSummary]:
            async with semaphore:
                return await self._process_tenant_safely(tenant_id, now)

        results = await asyncio.gather(*(guarded(tenant_id) for tenant_id in tenant_ids))
        summaries = [summary for summary in results if summary is not None]

        # Runs left open by a crashed replica or a failed recipient claim
        try:
            summaries.extend(await self.resume_unfinished_runs(now))
        except Exception as e:
            logger.error(f"Failed to check for unfinished runs: {e}", exc_info=True)

        self.last_tick_at = now
        self.ticks_run += 1
        self.state = SchedulerState.IDLE
        if summaries:
            logger.info(
                f"✅ Tick at {now.isoformat()} processed {len(summaries)} of {len(tenant_ids)} tenants"
            )
        return summaries

    async def resume_unfinished_runs(
        self, now: Optional[datetime] = None, min_age_seconds: Optional[int] = None
    ) -> List[TenantRunSummary]:
        """Finish today's runs that were claimed but never completed.

        Only runs older than `min_age_seconds` (default: stale_run_seconds) are
        picked up, so a run another replica is still working through is left
        alone. Recipient claims keep a resumed run from sending twice.
        """
        now = now or self.clock()
        if min_age_seconds is None:
            min_age_seconds = self.settings.stale_run_seconds
        cutoff = now - timedelta(seconds=min_age_seconds)
        summaries = []

        for tenant_id, date_key in await self.ledger.unfinished(cutoff, now - RESUME_LOOKBACK):
            summary = await self._process_tenant_safely(tenant_id, now, resume_date_key=date_key)
            if summary is not None:
                summaries.append(summary)

        if summaries:
            logger.info(f"Resumed {len(summaries)} unfinished tenant runs")
        return summaries

    async def _process_tenant_safely(
        self, tenant_id: str, now: datetime, resume_date_key: Optional[str] = None
    ) -> Optional[TenantRunSummary]:
        try:
            return await self.process_tenant(tenant_id, now, resume_date_key=resume_date_key)
        except TenantNotFoundError:
            logger.warning(f"Tenant {tenant_id} disappeared before processing, skipping")
        except Exception as e:
            logger.error(f"Failed to process tenant {tenant_id}: {e}", exc_info=True)
        return None

    async def process_tenant(
        self, tenant_id: str, now: datetime, resume_date_key: Optional[str] = None
    ) -> Optional[TenantRunSummary]:
        """Run one tenant's daily cycle; None when it is not due or already claimed"""
        snapshot = await self.store.load_tenant(tenant_id)
        if snapshot is None:
            raise TenantNotFoundError(tenant_id)

        tenant = snapshot.tenant
        local = local_now(tenant.timezone, now)

        if resume_date_key is not None:
            if resume_date_key != local.date_key:
                logger.info(f"Unfinished run for tenant {tenant_id} on {resume_date_key} is past, not resuming")
                return None
            logger.info(f"Resuming unfinished run for tenant {tenant_id} on {resume_date_key}")
        else:
            if not is_due(tenant, local):
                return None
            if await self.ledger.claim(tenant_id, local.date_key) == ClaimResult.ALREADY_CLAIMED:
                return None

        summary = TenantRunSummary(
            tenant_id=tenant_id, date_key=local.date_key, resumed=resume_date_key is not None
        )
        scheduled_for = local_instant(local.date, tenant.send_hour, tenant.send_minute, tenant.timezone)

        birthdays = scan_today(snapshot.recipients, local)
        summary.birthdays = len(birthdays)
        if birthdays:
            template, template_error = await self._resolve_send_template(tenant_id)
            for recipient in birthdays:
                try:
                    claim = await self.ledger.claim_recipient(recipient.id, local.date_key)
                except Exception as e:
                    logger.error(f"Failed to claim recipient {recipient.id} for {local.date_key}, deferring: {e}")
                    summary.deferred += 1
                    continue
                if claim == ClaimResult.ALREADY_CLAIMED:
                    summary.skipped += 1
                    continue
                for outcome in await self._deliver(snapshot, recipient, template, template_error, local, scheduled_for):
                    if outcome.success:
                        summary.delivered += 1
                    else:
                        summary.failed += 1

        completed = await self._finish_run(tenant, local, close_run=summary.deferred == 0)

        upcoming = scan_upcoming(snapshot.recipients, local, self.settings.admin_notice_days_ahead)
        # The digest goes out with whichever pass closes the run
        if upcoming and completed:
            try:
                notified = await self.notifier.notify_admins(
                    tenant, snapshot.admin_emails, upcoming, self.settings.admin_notice_days_ahead
                )
                summary.admins_notified = len(notified)
            except Exception as e:
                logger.error(f"Admin digest failed for tenant {tenant_id}: {e}", exc_info=True)

        logger.info(
            f"Tenant {tenant_id} ({local.date_key}): {summary.birthdays} birthdays, "
            f"{summary.delivered} delivered, {summary.failed} failed, {summary.skipped} skipped, "
            f"{summary.deferred} deferred"
        )
        return summary

    async def _finish_run(self, tenant: Tenant, local: CivilTime, close_run: bool = True) -> bool:
        """Record the run; True only when this call wrote the completion"""
        completed_at = self.clock()
        try:
            await self.store.update_last_run(tenant.id, completed_at)
        except Exception as e:
            logger.error(f"Failed to update last run for tenant {tenant.id}: {e}")

        if not close_run:
            logger.warning(f"Run for tenant {tenant.id} on {local.date_key} left open for a later tick")
            return False
        try:
            return await self.ledger.complete(tenant.id, local.date_key, completed_at)
        except Exception as e:
            logger.error(f"Failed to mark run complete for tenant {tenant.id}: {e}")
            return False

    async def _resolve_send_template(self, tenant_id: str):
        templates = await self.templates.resolve_templates(tenant_id)
        try:
            return select_send_template(templates), None
        except TemplateUnavailableError as e:
            logger.warning(f"Tenant {tenant_id} has no usable template: {e}")
            return None, e

    # ------------------------------------------------------------------
    # Per-recipient delivery
    # ------------------------------------------------------------------

    def resolve_sender(self, tenant: Tenant) -> Sender:
        email = tenant.email_from_address or self.settings.default_from_email
        if not validate_email(email):
            raise SenderConfigurationError(f"No usable sender address for tenant {tenant.id}")
        name = tenant.email_from_name or tenant.name or self.settings.default_from_name
        return Sender(name=name, email=email)

    async def _deliver(
        self,
        snapshot: TenantSnapshot,
        recipient: Recipient,
        template: Optional[Template],
        template_error: Optional[Exception],
        local: CivilTime,
        scheduled_for: datetime
    ) -> List[DeliveryOutcome]:
        tenant = snapshot.tenant
        template_id = template.id if template else None
        outcomes = []

        message = None
        try:
            if template is None:
                raise template_error or TemplateUnavailableError("No active or default template")
            sender = self.resolve_sender(tenant)
            message = render(template, build_variables(recipient, tenant, local.date, self.settings))
            outcome = await self._attempt(
                self.email_gateway,
                DeliveryChannel.EMAIL,
                DispatchRequest(
                    to=recipient.email,
                    subject=message.subject,
                    html=message.html,
                    text=message.text,
                    from_=sender
                ),
                scheduled_for
            )
        except Exception as e:
            logger.error(f"❌ Failed to prepare birthday email for {recipient.email} (tenant {tenant.id}): {e}")
            outcome = self._failure(DeliveryChannel.EMAIL, e, scheduled_for)

        await self.recorder.record(recipient.id, template_id, tenant.id, outcome)
        outcomes.append(outcome)

        if message is not None and tenant.sms_enabled and recipient.phone and self.sms_gateway is not None:
            sms = DispatchRequest(
                to=recipient.phone,
                subject=message.subject,
                text=message.text or strip_html(message.html or ""),
                from_=Sender(name=tenant.sender_id or self.settings.default_sms_sender_id)
            )
            sms_outcome = await self._attempt(self.sms_gateway, DeliveryChannel.SMS, sms, scheduled_for)
            await self.recorder.record(recipient.id, template_id, tenant.id, sms_outcome)
            outcomes.append(sms_outcome)

        return outcomes

    async def _attempt(
        self,
        gateway: DispatchGateway,
        channel: DeliveryChannel,
        request: DispatchRequest,
        scheduled_for: datetime
    ) -> DeliveryOutcome:
        try:
            result = await gateway.send(request)
            if not result.success:
                raise DispatchError("Provider reported an unsuccessful send")
        except Exception as e:
            logger.error(f"❌ Failed to send birthday {channel.value} to {request.to}: {e}")
            return self._failure(channel, e, scheduled_for)

        logger.info(f"✅ Birthday {channel.value} sent to {request.to} ({result.id})")
        return DeliveryOutcome(
            success=True,
            channel=channel,
            external_id=result.id,
            scheduled_for=scheduled_for,
            attempted_at=self.clock()
        )

    def _failure(self, channel: DeliveryChannel, error: Exception, scheduled_for: datetime) -> DeliveryOutcome:
        return DeliveryOutcome(
            success=False,
            channel=channel,
            error_message=str(error) or type(error).__name__,
            scheduled_for=scheduled_for,
            attempted_at=self.clock()
        )
