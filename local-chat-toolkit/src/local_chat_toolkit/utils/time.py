from datetime import datetime, timezone


def get_current_timestamp() -> str:
    """Current UTC time as an ISO-8601 string, e.g. '2026-10-19T08:15:02.118000+00:00'."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing 'Z' (as written by JavaScript's 'toISOString') and any UTC
    offset. Timestamps without an offset are taken to be UTC.

    Raises:
        ValueError: If 'value' is not an ISO-8601 timestamp.
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
