"""Small helpers shared across stepflow modules."""

from .paths import get_nested_value, nest_value
from .retry import compute_backoff, schedule_retry

__all__ = ["compute_backoff", "get_nested_value", "nest_value", "schedule_retry"]
