# birthday_worker/models/template.py
from pydantic import BaseModel
from typing import Optional
from enum import Enum

class TemplateType(str, Enum):
    PLAIN_TEXT = "PLAIN_TEXT"
    HTML = "HTML"
    CUSTOM_IMAGE = "CUSTOM_IMAGE"

class NewTemplate(BaseModel):
    name: str
    type: TemplateType
    subject: str
    content: str
    image_url: Optional[str] = None
    is_default: bool = False
    is_active: bool = True

class Template(NewTemplate):
    id: str
    tenant_id: str
