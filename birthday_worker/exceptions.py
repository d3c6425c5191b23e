# birthday_worker/exceptions.py


class SchedulerError(Exception):
    """Base class for errors raised by the birthday scheduler"""


class SenderConfigurationError(SchedulerError):
    """No usable sender address for a tenant"""


class DispatchError(SchedulerError):
    """The send provider rejected the message or could not be reached"""


class TemplateUnavailableError(SchedulerError):
    """The tenant has templates, but none is active or default"""


class TenantNotFoundError(SchedulerError):
    """The tenant vanished between listing and processing"""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id
