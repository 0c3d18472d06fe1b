"""Shared utility functions used by blueprints and services."""
import logging
from datetime import date, datetime, timezone

from flask import has_request_context, request

logger = logging.getLogger(__name__)


def get_client_ip() -> str | None:
    """Return the real client IP, honouring X-Forwarded-For from load balancers.

    Falls back to X-Real-IP and then ``remote_addr``. Outside a request
    context there is no client, so None is returned.
    """
    if not has_request_context():
        return None
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        # First entry in the comma-delimited list is the client
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr


def parse_datetime(value):
    """Parse an ISO date or datetime string to an aware UTC datetime.

    Returns None for empty input; raises ValueError for anything that is
    not ISO-8601 so blueprints can answer 400.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid date '{value}'. Use ISO-8601 (YYYY-MM-DD).") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def word_count(text: str | None) -> int:
    return len((text or "").split())


def as_int(value):
    """Coerce request values to int, returning None for blanks and junk."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
