# birthday_worker/models/delivery.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum

class DeliveryStatus(str, Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"

class DeliveryChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"

class Sender(BaseModel):
    name: str
    email: str = ""

class DispatchRequest(BaseModel):
    to: str
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    from_: Sender

class DispatchResult(BaseModel):
    id: str
    success: bool = True

class DeliveryOutcome(BaseModel):
    """What happened to one send attempt"""
    success: bool
    channel: DeliveryChannel = DeliveryChannel.EMAIL
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    scheduled_for: datetime
    attempted_at: datetime

class DeliveryRecord(BaseModel):
    recipient_id: str
    template_id: Optional[str] = None
    tenant_id: str
    channel: DeliveryChannel = DeliveryChannel.EMAIL
    status: DeliveryStatus
    scheduled_for: datetime
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None
    external_id: Optional[str] = None
