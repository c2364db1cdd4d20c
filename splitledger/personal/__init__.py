"""Personal finance: summaries and the spending alert rule."""

from splitledger.personal.summary import (
    build_alert_message,
    crossed_alert_threshold,
    summarize,
    top_category,
)

__all__ = [
    "build_alert_message",
    "crossed_alert_threshold",
    "summarize",
    "top_category",
]
