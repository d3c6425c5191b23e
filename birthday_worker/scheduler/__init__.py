# birthday_worker/scheduler/__init__.py
from .civil_time import CivilTime, local_now, local_date_key
from .eligibility import is_birthday_today, is_upcoming, scan_today, scan_upcoming
from .run_ledger import RunLedger, ClaimResult
from .orchestrator import BirthdayScheduler, SchedulerState, TenantRunSummary, is_due

__all__ = [
    "CivilTime",
    "local_now",
    "local_date_key",
    "is_birthday_today",
    "is_upcoming",
    "scan_today",
    "scan_upcoming",
    "RunLedger",
    "ClaimResult",
    "BirthdayScheduler",
    "SchedulerState",
    "TenantRunSummary",
    "is_due",
]
