"""
Pure presentation helpers: status text and colors, step badge colors,
the default order sort and the cancelled-order visibility policy.
"""
import zlib
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from .schemas import Order, OrderItem, Product, StatusValue

STATUS_TEXT = {
    StatusValue.WAITING: "Waiting",
    StatusValue.IN_PROGRESS: "In progress",
    StatusValue.POSTPONED: "Postponed",
    StatusValue.CANCELLED: "Cancelled",
    StatusValue.DONE: "Done",
}

STATUS_COLOR = {
    StatusValue.WAITING: "yellow",
    StatusValue.IN_PROGRESS: "blue",
    StatusValue.POSTPONED: "orange",
    StatusValue.CANCELLED: "red",
    StatusValue.DONE: "green",
}

# Lower rank sorts first
STATUS_RANK = {
    StatusValue.IN_PROGRESS: 0,
    StatusValue.WAITING: 1,
    StatusValue.POSTPONED: 2,
    StatusValue.DONE: 3,
    StatusValue.CANCELLED: 4,
}

STEP_PALETTE = (
    "sky", "violet", "amber", "emerald", "rose",
    "indigo", "teal", "fuchsia", "lime", "cyan",
)

CANCELLED_VISIBLE_FOR = timedelta(hours=48)


def _known(status) -> Optional[StatusValue]:
    try:
        return StatusValue(status)
    except ValueError:
        return None


def status_text(status: StatusValue) -> str:
    return STATUS_TEXT.get(_known(status), "Unknown")


def status_color(status: StatusValue) -> str:
    return STATUS_COLOR.get(_known(status), "gray")


def step_color(step_name: str) -> str:
    """Map a step name to a palette color; the same name always gets the same color."""
    return STEP_PALETTE[zlib.crc32(step_name.encode("utf-8")) % len(STEP_PALETTE)]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def order_sort_key(order: Order) -> Tuple[int, int, float]:
    """
    Default dashboard ordering.

    Keys, in tie-break order:
        1. priority orders first
        2. status rank (in_progress, waiting, postponed, done, cancelled)
        3. most recent order_date first
    """
    placed = _aware(order.order_date)
    recency = -placed.timestamp() if placed is not None else 0.0
    return (0 if order.is_priority else 1, STATUS_RANK[order.status], recency)


def cancelled_at(order: Order) -> Optional[datetime]:
    """When the order was last cancelled, from its history, else its last update."""
    for entry in reversed(order.history):
        if entry.status == StatusValue.CANCELLED:
            return _aware(entry.timestamp)
    return _aware(order.updated_at)


def is_hidden(order: Order, now: Optional[datetime] = None) -> bool:
    """Cancelled orders drop out of active views 48 hours after cancellation."""
    if order.status != StatusValue.CANCELLED:
        return False
    when = cancelled_at(order)
    if when is None:
        return False
    now = _aware(now) or datetime.now(timezone.utc)
    return now - when >= CANCELLED_VISIBLE_FOR


def visible_orders(orders: Iterable[Order], now: Optional[datetime] = None, include_hidden: bool = False) -> List[Order]:
    """Filter out expired cancelled orders and apply the default sort."""
    kept = [o for o in orders if include_hidden or not is_hidden(o, now)]
    return sorted(kept, key=order_sort_key)


def current_step_label(item: OrderItem, product: Optional[Product]) -> str:
    """Describe where an item stands in its product's process."""
    if item.status == StatusValue.DONE:
        return "Done"
    if product is None:
        return "Product details missing"
    if not product.process_steps:
        return "Steps not defined"
    index = item.current_step_index
    if index is None or index < 0:
        return "Ready to start" if item.status == StatusValue.WAITING else "Undefined"
    if index >= len(product.process_steps):
        return "Done"
    return product.process_steps[index]
