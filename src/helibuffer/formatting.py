"""Formatting utilities for consistent output across CLI and logs."""

from datetime import datetime, timezone


def format_epoch_ms(time_ms: float) -> str:
    """Format absolute epoch milliseconds as a UTC ISO timestamp.

    Returns:
        "2024-01-23T08:53:20.250Z" style string (millisecond precision)
    """
    moment = datetime.fromtimestamp(time_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def format_span(start_ms: float, end_ms: float) -> str:
    """Format the duration between two epoch-millisecond times (compact).

    Returns:
        "250ms" below one second, "1.5s" below one minute, "2m05s" otherwise
    """
    duration = max(end_ms - start_ms, 0.0)
    if duration < 1000:
        return f"{duration:.0f}ms"
    seconds = duration / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    return f"{minutes}m{secs:02d}s"


def format_statistic(value: float | int | None) -> str:
    """Format a statistic value for table views.

    Undefined statistics (empty window) render as "-".
    """
    if value is None:
        return "-"
    if isinstance(value, float) and not value.is_integer():
        return f"{value:.2f}"
    return str(int(value))
