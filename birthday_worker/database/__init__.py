# birthday_worker/database/__init__.py
from .connection import Database
from .store import SchedulerStore
from .scheduler_repository import SchedulerRepository
from .schema import ensure_schema

__all__ = ["Database", "SchedulerStore", "SchedulerRepository", "ensure_schema"]
