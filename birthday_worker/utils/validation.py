# birthday_worker/utils/validation.py
import re
from typing import Optional

def validate_email(email: Optional[str]) -> bool:
    """Validate email format with strict RFC compliance"""
    if not email or len(email) > 254:
        return False

    pattern = r'^[a-zA-Z0-9.!#$%&\'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$'

    if not re.match(pattern, email):
        return False

    local, domain = email.rsplit('@', 1)
    if len(local) > 64 or len(domain) > 253:
        return False

    return True

def normalize_phone(raw: str, default_country_code: Optional[str] = None) -> str:
    """Normalize a phone number to +<digits> form"""
    trimmed = (raw or "").strip()
    if not trimmed:
        raise ValueError("Phone number is required")

    cleaned = re.sub(r'[^\d+]', '', trimmed)
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    if cleaned.startswith("+"):
        digits = re.sub(r'\D', '', cleaned[1:])
        if not digits:
            raise ValueError("Invalid phone number")
        return f"+{digits}"

    digits = re.sub(r'\D', '', cleaned)
    if not digits:
        raise ValueError("Invalid phone number")

    if default_country_code:
        country_code = re.sub(r'\D', '', default_country_code)
        if not country_code:
            raise ValueError("DEFAULT_PHONE_COUNTRY_CODE is invalid")
        return f"+{country_code}{digits}"

    if 10 <= len(digits) <= 15:
        return f"+{digits}"

    raise ValueError("Phone number must include country code")

def strip_html(text: str) -> str:
    """Rough plain-text rendering of an HTML body, for SMS"""
    text = re.sub(r'(?is)<(script|style|head|title)[^>]*>.*?</\1>', '', text)
    text = re.sub(r'(?i)<br\s*/?>|</p>|</div>|</h[1-6]>|</tr>', '\n', text)
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n\s*\n+', '\n\n', text)
    return text.strip()
