"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_local, today_local
from utils.dates import add_months, months_between, is_last_day_of_month
from utils.actor_context import (
    get_actor_id,
    set_actor_id,
    clear_actor_id,
    actor_context,
)
