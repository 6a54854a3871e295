"""UTC clock helpers. All persisted timestamps are naive UTC."""
from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utctoday() -> date:
    return utcnow().date()


def to_naive_utc(timestamp: Optional[datetime]) -> Optional[datetime]:
    """Aware timestamps are converted to UTC; naive ones are taken as UTC already."""
    if timestamp is None or timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(timezone.utc).replace(tzinfo=None)
