# birthday_worker/services/template_service.py
import html
import re
from datetime import date
from typing import Dict, List, Optional, Sequence
from pydantic import BaseModel
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.database.store import SchedulerStore
from birthday_worker.exceptions import TemplateUnavailableError
from birthday_worker.models import NewTemplate, Recipient, Template, TemplateType, Tenant
from birthday_worker.utils.formatting import format_long_date
import logging

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_TEMPLATES: List[NewTemplate] = [
    NewTemplate(
        name="Simple Birthday",
        type=TemplateType.PLAIN_TEXT,
        subject="Happy Birthday {{first_name}}! 🎉",
        content="""Happy Birthday {{first_name}}!

Wishing you a wonderful day filled with joy and happiness.

From everyone at {{organization_name}}""",
        is_default=True,
        is_active=True,
    ),
    NewTemplate(
        name="Professional Birthday",
        type=TemplateType.HTML,
        subject="Happy Birthday {{first_name}}!",
        content="""<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 40px; text-align: center; border-radius: 8px 8px 0 0;">
    <h1 style="color: white; margin: 0; font-size: 32px;">Happy Birthday!</h1>
  </div>
  <div style="background: #ffffff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 8px 8px;">
    <p style="font-size: 18px; color: #1f2937;">Dear {{full_name}},</p>
    <p style="font-size: 16px; line-height: 1.6; color: #4b5563;">
      On behalf of everyone at {{organization_name}}, we want to wish you a very happy birthday!
    </p>
    <p style="font-size: 16px; line-height: 1.6; color: #4b5563;">
      We hope your day is filled with happiness and that the year ahead brings you success.
    </p>
    <p style="font-size: 16px; color: #1f2937;">Best wishes,<br><strong>{{organization_name}}</strong></p>
  </div>
</body>
</html>""",
        is_default=False,
        is_active=False,
    ),
    NewTemplate(
        name="Modern Gradient Birthday",
        type=TemplateType.HTML,
        subject="Happy Birthday {{first_name}}! 🎉",
        content="""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>Happy Birthday!</title>
</head>
<body style="margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f3f4f6;">
  <table width="100%" cellpadding="0" cellspacing="0" style="background-color: #f3f4f6; padding: 40px 20px;">
    <tr>
      <td align="center">
        <table width="600" cellpadding="0" cellspacing="0" style="max-width: 600px; background-color: #ffffff; border-radius: 16px; overflow: hidden;">
          <tr>
            <td style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 50px 30px; text-align: center;">
              <h1 style="margin: 0; color: #ffffff; font-size: 36px;">Happy Birthday!</h1>
            </td>
          </tr>
          <tr>
            <td style="padding: 40px 30px;">
              <p style="font-size: 20px; color: #1f2937; font-weight: 600;">Dear {{first_name}},</p>
              <p style="font-size: 16px; line-height: 1.6; color: #4b5563;">
                On behalf of everyone at <strong>{{organization_name}}</strong>, we want to wish you the happiest of birthdays!
              </p>
              <p style="font-size: 16px; line-height: 1.6; color: #4b5563;">
                May your special day be filled with joy, laughter, and wonderful memories.
              </p>
              <p style="font-size: 16px; color: #6b7280;">With warm wishes,<br><strong style="color: #1f2937;">{{organization_name}}</strong></p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>""",
        is_default=False,
        is_active=False,
    ),
]

class RenderedMessage(BaseModel):
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None

def interpolate(text: str, variables: Dict[str, str]) -> str:
    """Replace {{key}} tokens; tokens without a value are left as written"""
    return PLACEHOLDER.sub(
        lambda match: variables.get(match.group(1), match.group(0)),
        text
    )

def select_send_template(templates: Sequence[Template]) -> Template:
    """The default template, else the first one"""
    if not templates:
        raise TemplateUnavailableError("No active or default template")
    for template in templates:
        if template.is_default:
            return template
    return templates[0]

def build_variables(
    recipient: Recipient,
    tenant: Tenant,
    today: date,
    settings: Optional[Settings] = None
) -> Dict[str, str]:
    settings = settings or default_settings
    variables = {
        "first_name": recipient.display_first_name,
        "full_name": recipient.full_name,
        "organization_name": tenant.name,
        "date": format_long_date(today),
    }
    if settings.frontend_url:
        variables["unsubscribe_link"] = f"{settings.frontend_url.rstrip('/')}/unsubscribe?id={recipient.id}"
    return variables

def render(template: Template, variables: Dict[str, str]) -> RenderedMessage:
    """Interpolate a template and place the body in the field its type calls for"""
    subject = interpolate(template.subject, variables)
    content = interpolate(template.content, variables)

    if template.type == TemplateType.PLAIN_TEXT:
        return RenderedMessage(subject=subject, text=content)

    if template.type == TemplateType.CUSTOM_IMAGE and template.image_url:
        image = (
            f'<img src="{html.escape(template.image_url, quote=True)}" '
            f'alt="{html.escape(subject, quote=True)}" style="max-width: 100%;">'
        )
        content = f"{image}\n{content}"

    return RenderedMessage(subject=subject, html=content)

class TemplateResolver:
    """Finds the templates a tenant sends with, seeding built-ins on first use"""

    def __init__(self, store: SchedulerStore, defaults: Sequence[NewTemplate] = DEFAULT_TEMPLATES):
        self.store = store
        self.defaults = list(defaults)

    async def resolve_templates(self, tenant_id: str) -> List[Template]:
        templates = await self.store.list_templates(tenant_id)
        if templates:
            return templates

        if await self.store.count_templates(tenant_id) > 0:
            logger.warning(f"Tenant {tenant_id} has templates but none is active or default")
            return []

        logger.info(f"No templates for tenant {tenant_id}, seeding defaults")
        return await self.store.seed_templates(tenant_id, self.defaults)
