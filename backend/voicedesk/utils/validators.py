"""
Argument validation helpers for tool handlers.

The model sends loosely typed JSON: numbers as strings, a single address
where a list is expected. These helpers coerce what is safe to coerce and
raise InvalidRequestError for the rest.
"""
import re
from datetime import datetime, timezone
from typing import List, Optional

from voicedesk.utils.errors import InvalidRequestError

EMAIL_PATTERN = re.compile(r"^[^@\s<>,;]+@[^@\s<>,;]+\.[^@\s<>,;]+$")


def require_str(args: dict, key: str) -> str:
    value = args.get(key)
    if value is None or not str(value).strip():
        raise InvalidRequestError(f"'{key}' is required", details={"field": key})
    return str(value).strip()


def optional_str(args: dict, key: str) -> Optional[str]:
    value = args.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def clamp_int(value, default: int, minimum: int, maximum: int) -> int:
    """Parse an int and clamp it into [minimum, maximum]. Garbage gives the default."""
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, number))


def email_list(value, field: str) -> List[str]:
    """
    Normalize a list of addresses.

    Accepts a list or a comma/semicolon separated string.

    Raises:
        InvalidRequestError: Any address is malformed
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = re.split(r"[,;]", value)

    addresses = []
    for item in value:
        address = str(item).strip()
        if not address:
            continue
        if not EMAIL_PATTERN.match(address):
            raise InvalidRequestError(f"Malformed email address '{address}'", details={"field": field})
        addresses.append(address)
    return addresses


def parse_datetime(value: str, field: str) -> datetime:
    """
    Parse an ISO 8601 date or date-time. Naive values are taken as UTC.

    Raises:
        InvalidRequestError: Not ISO 8601
    """
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        raise InvalidRequestError(f"'{field}' must be an ISO 8601 date-time", details={"field": field})
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def as_bool(value) -> bool:
    """Truthiness that reads "false"/"no"/"0" strings as False."""
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "y"}
    return bool(value)
