from datetime import date
from typing import Optional

from django.utils.dateparse import parse_date


def get_business_for_user(user, business_id):
    """The business with this id if the user owns it, else None."""
    if not user or not getattr(user, "is_authenticated", False):
        return None
    from .models import Business

    return Business.objects.filter(pk=business_id, owner_user=user, is_deleted=False).first()


def parse_optional_date(value) -> Optional[date]:
    """Parse an ISO date query parameter; blank means None. Raises ValueError when malformed."""
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value).strip())
    if parsed is None:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD.")
    return parsed


def parse_optional_bool(value) -> Optional[bool]:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean '{value}'.")
