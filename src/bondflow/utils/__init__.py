from .json import load_json_file
from .timestamps import monotonic_ms, now_iso, today_iso, unix_seconds, utc_now
from .logging import configure_logging

__all__ = [
    "load_json_file",
    "monotonic_ms",
    "now_iso",
    "today_iso",
    "unix_seconds",
    "utc_now",
    "configure_logging",
]
