from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, truncated to the second."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def as_utc(value: datetime | None) -> datetime | None:
    """Reads naive values as UTC; aware values are converted."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
