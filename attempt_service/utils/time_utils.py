from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
