"""Parsing helpers for form-post intents. Every failure is a ValidationError."""

from datetime import date, time
from typing import Mapping, Optional

from calendar_sync.errors import ValidationError

TRUE_VALUES = {"1", "true", "yes", "on"}


def get_str(form: Mapping, name: str) -> Optional[str]:
    value = form.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def require_str(form: Mapping, name: str) -> str:
    value = get_str(form, name)
    if value is None:
        raise ValidationError(f"Missing required field: {name}")
    return value


def get_bool(form: Mapping, name: str, default: bool = False) -> bool:
    value = get_str(form, name)
    if value is None:
        return default
    return value.lower() in TRUE_VALUES


def parse_date(value: str, name: str = "date") -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r} (expected YYYY-MM-DD)")


def parse_time(value: str, name: str = "time") -> time:
    """Accepts HH:MM and the HH:MM:SS form PostgreSQL TIME columns round-trip as."""
    try:
        parsed = time.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r} (expected HH:MM)")
    return parsed.replace(second=0, microsecond=0)


def parse_minutes(value: str, name: str = "durationMinutes") -> int:
    try:
        minutes = int(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r}")
    if minutes < 1:
        raise ValidationError(f"{name} must be positive")
    return minutes


def get_date(form: Mapping, name: str) -> Optional[date]:
    value = get_str(form, name)
    return parse_date(value, name) if value is not None else None


def get_time(form: Mapping, name: str) -> Optional[time]:
    value = get_str(form, name)
    return parse_time(value, name) if value is not None else None


def get_minutes(form: Mapping, name: str) -> Optional[int]:
    value = get_str(form, name)
    return parse_minutes(value, name) if value is not None else None
