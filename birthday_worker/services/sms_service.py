# birthday_worker/services/sms_service.py - Termii SMS Integration
import httpx
from typing import Optional
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.exceptions import DispatchError
from birthday_worker.models import DispatchRequest, DispatchResult
from birthday_worker.utils.validation import normalize_phone
import logging

logger = logging.getLogger(__name__)

class TermiiSmsGateway:
    """Sends the plain-text body of a request as an SMS.

    The request's `to` is a phone number and `from_.name` is used as the
    sender id.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or default_settings
        self.api_key = self.settings.termii_api_key
        self.client = client or httpx.AsyncClient(base_url=self.settings.termii_base_url, timeout=15.0)

        if not self.api_key:
            logger.warning("⚠️ TERMII_API_KEY not set. SMS will not work.")

    async def send(self, request: DispatchRequest) -> DispatchResult:
        if not self.api_key:
            raise DispatchError("TERMII_API_KEY is not configured")
        if not request.text:
            raise DispatchError("SMS requires a text body")

        try:
            phone = normalize_phone(request.to, self.settings.default_phone_country_code)
        except ValueError as e:
            raise DispatchError(str(e))

        try:
            response = await self.client.post("/api/sms/send", json={
                "to": phone,
                "from": request.from_.name or self.settings.default_sms_sender_id,
                "sms": request.text,
                "type": "plain",
                "channel": "generic",
                "api_key": self.api_key,
            })
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"SMS Service Error: {e}")
            raise DispatchError(f"SMS transport failed: {e}")

        if data.get("code") == "ok":
            logger.info(f"✅ SMS sent to {phone}: {data.get('message_id')}")
            return DispatchResult(id=str(data.get("message_id")), success=True)

        logger.error(f"❌ SMS failed: {data.get('message')}")
        raise DispatchError(f"SMS rejected: {data.get('message', 'unknown error')}")

    async def close(self):
        await self.client.aclose()
