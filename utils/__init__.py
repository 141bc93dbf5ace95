"""Utility modules for cross-cutting concerns."""

from utils.clock import Clock, FixedClock, SystemClock, now_utc, to_utc
from utils.actor_context import (
    get_current_actor_id,
    require_actor_id,
    set_current_actor_id,
    clear_current_actor_id,
    acting_as,
)
