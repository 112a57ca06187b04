from datetime import datetime, timezone


def get_current_timestamp_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def format_duration_ms(duration_ms: int) -> str:
    """Render a millisecond duration as `<h>h <m>min`."""
    total_minutes = max(0, int(duration_ms)) // 60_000
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}min"


def iso_from_ms(ts_ms: int) -> str:
    """Return an ISO-8601 UTC string for a millisecond timestamp."""
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()
