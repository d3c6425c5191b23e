# birthday_worker/services/dispatch.py
from typing import Protocol, Optional
from itertools import count
from birthday_worker.config import Settings
from birthday_worker.models import DispatchRequest, DispatchResult
import logging
import time

logger = logging.getLogger(__name__)

class DispatchGateway(Protocol):
    """Anything that can transmit one message.

    Implementations return a result with the provider's message id, or raise
    on transport or provider-side failure. The scheduler never retries.
    """

    async def send(self, request: DispatchRequest) -> DispatchResult: ...

class ConsoleGateway:
    """Writes messages to the log instead of sending them"""

    def __init__(self, channel: str = "email"):
        self.channel = channel
        self._sequence = count(1)

    async def send(self, request: DispatchRequest) -> DispatchResult:
        logger.info(
            f"📧 [{self.channel}] To: {request.to} | From: {request.from_.name} <{request.from_.email}> "
            f"| Subject: {request.subject}\n{request.html or request.text or ''}"
        )
        return DispatchResult(id=f"{self.channel}-{int(time.time())}-{next(self._sequence)}", success=True)

    async def close(self):
        pass

def build_email_gateway(settings: Settings):
    """Email gateway selected by EMAIL_PROVIDER"""
    provider = settings.email_provider.lower()
    if provider == "ses":
        from birthday_worker.services.email_service import SesEmailGateway
        return SesEmailGateway(settings)
    if provider == "console":
        return ConsoleGateway("email")
    raise ValueError(f"Unknown email provider: {settings.email_provider}")

def build_sms_gateway(settings: Settings) -> Optional[DispatchGateway]:
    """SMS gateway selected by SMS_PROVIDER, or None when SMS is off"""
    provider = settings.sms_provider.lower()
    if provider in ("", "none"):
        return None
    if provider == "termii":
        from birthday_worker.services.sms_service import TermiiSmsGateway
        return TermiiSmsGateway(settings)
    if provider == "console":
        return ConsoleGateway("sms")
    raise ValueError(f"Unknown SMS provider: {settings.sms_provider}")
