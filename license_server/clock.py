import datetime
from typing import Optional


def utcnow() -> datetime.datetime:
    # Timestamps are stored as naive UTC so SQLite and Postgres compare the same way
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def to_naive_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is not None:
        return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value


def parse_iso(value: str) -> datetime.datetime:
    """
    Parse an ISO-8601 date or timestamp into naive UTC.
    Accepts a trailing "Z" and explicit offsets; bare dates mean midnight UTC.
    Raises ValueError on anything else.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("timestamp must be a non-empty string")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.datetime.fromisoformat(text))
