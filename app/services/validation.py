from datetime import date, datetime
from typing import Any, Iterable, Optional

from app.core.errors import ValidationError

def parse_iso_date(value: Optional[str], field: str) -> date:
    """Parse a YYYY-MM-DD (or ISO timestamp) field into a date"""
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use YYYY-MM-DD")

def parse_iso_datetime(value: Optional[str], field: str) -> datetime:
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use ISO 8601")

def require_fields(payload: Any, *fields: str):
    missing = [f for f in fields if getattr(payload, f, None) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

def require_choice(value: Optional[str], choices: Iterable[str], field: str):
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {', '.join(choices)}")

def check_max_length(value: Optional[str], limit: int, field: str):
    if value is not None and len(value) > limit:
        raise ValidationError(f"{field} must be at most {limit} characters")
