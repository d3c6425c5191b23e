# birthday_worker/models/__init__.py
from .tenant import Tenant, Recipient, TenantSnapshot
from .template import Template, NewTemplate, TemplateType
from .delivery import (
    DeliveryStatus,
    DeliveryChannel,
    DeliveryOutcome,
    DeliveryRecord,
    DispatchRequest,
    DispatchResult,
    Sender,
)

__all__ = [
    "Tenant",
    "Recipient",
    "TenantSnapshot",
    "Template",
    "NewTemplate",
    "TemplateType",
    "DeliveryStatus",
    "DeliveryChannel",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DispatchRequest",
    "DispatchResult",
    "Sender",
]
