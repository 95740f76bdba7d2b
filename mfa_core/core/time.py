from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def epoch_seconds(moment: datetime) -> int:
    return int(ensure_aware(moment).timestamp())
