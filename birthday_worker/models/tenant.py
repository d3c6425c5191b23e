# birthday_worker/models/tenant.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import date, datetime

class Tenant(BaseModel):
    id: str
    name: str
    timezone: str = "UTC"
    send_hour: int = Field(default=9, ge=0, le=23)
    send_minute: int = Field(default=0, ge=0, le=59)
    last_run_at: Optional[datetime] = None
    email_from_name: Optional[str] = None
    email_from_address: Optional[str] = None
    sms_enabled: bool = False
    sender_id: Optional[str] = None

class Recipient(BaseModel):
    id: str
    tenant_id: str
    full_name: str
    first_name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    birthday: date
    opted_out: bool = False

    @field_validator("birthday", mode="before")
    @classmethod
    def _strip_time(cls, value):
        # Birthdays written by the dashboard may arrive as timestamps
        if isinstance(value, datetime):
            return value.date()
        return value

    @property
    def display_first_name(self) -> str:
        if self.first_name:
            return self.first_name
        parts = self.full_name.split()
        return parts[0] if parts else self.full_name

class TenantSnapshot(BaseModel):
    """A tenant with its active recipients, active templates and admin emails,
    read once per cycle."""
    tenant: Tenant
    recipients: List[Recipient] = []
    admin_emails: List[str] = []
