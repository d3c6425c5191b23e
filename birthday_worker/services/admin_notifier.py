# birthday_worker/services/admin_notifier.py
import html
from typing import List, Optional, Sequence
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.models import DispatchRequest, Recipient, Sender, Tenant
from birthday_worker.services.dispatch import DispatchGateway
from birthday_worker.utils.formatting import format_month_day
from birthday_worker.utils.validation import validate_email
import logging

logger = logging.getLogger(__name__)

class AdminNotifier:
    """Sends each tenant admin a digest of birthdays coming up in N days"""

    def __init__(self, gateway: DispatchGateway, settings: Optional[Settings] = None):
        self.gateway = gateway
        self.settings = settings or default_settings

    def _sender(self) -> Optional[Sender]:
        email = self.settings.notifications_from_email or self.settings.default_from_email
        if not validate_email(email):
            return None
        return Sender(name=self.settings.notifications_from_name, email=email)

    def build_digest(
        self, tenant: Tenant, upcoming: Sequence[Recipient], days_ahead: int, sender: Sender
    ) -> DispatchRequest:
        lines = [
            f"{person.full_name} ({format_month_day(person.birthday)})"
            for person in upcoming
        ]
        when = "tomorrow" if days_ahead == 1 else f"in {days_ahead} days"

        text = "\n".join(
            [f"The following birthdays are coming up {when}:", ""]
            + [f"- {line}" for line in lines]
            + ["", "These birthday messages are scheduled to be sent automatically."]
        )
        items = "".join(f"<li>{html.escape(line)}</li>" for line in lines)
        body = f"""
            <h2>Upcoming Birthdays - {html.escape(tenant.name)}</h2>
            <p>The following birthdays are coming up {when}:</p>
            <ul>{items}</ul>
            <p>These birthday messages are scheduled to be sent automatically.</p>
        """

        return DispatchRequest(
            to="",
            subject=f"Upcoming birthdays - {tenant.name}",
            html=body,
            text=text,
            from_=sender
        )

    async def notify_admins(
        self,
        tenant: Tenant,
        admin_emails: Sequence[str],
        upcoming: Sequence[Recipient],
        days_ahead: int
    ) -> List[str]:
        """Send the digest to every admin; returns the addresses that were sent to"""
        if not upcoming or not admin_emails:
            return []

        sender = self._sender()
        if sender is None:
            logger.error(f"No notification sender configured, skipping digest for tenant {tenant.id}")
            return []

        digest = self.build_digest(tenant, upcoming, days_ahead, sender)
        delivered = []
        for email in admin_emails:
            try:
                await self.gateway.send(digest.model_copy(update={"to": email}))
                delivered.append(email)
            except Exception as e:
                logger.error(f"Failed to send birthday digest to {email} (tenant {tenant.id}): {e}")

        logger.info(f"📬 Birthday digest sent to {len(delivered)}/{len(admin_emails)} admins of tenant {tenant.id}")
        return delivered
