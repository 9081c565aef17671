"""
Validation utilities for the print-shop service.

Provides business-rule validation beyond schema validation. Each check
returns an (is_valid, error_message) tuple.
"""
from typing import List, Optional, Sequence, Tuple
from . import schemas

FINAL_STEP = "Packaging"
MAX_ITEMS = 100
MAX_QUANTITY = 10000


def validate_order_items(items: List[schemas.OrderItemCreate]) -> Tuple[bool, str]:
    """
    Validate order items for business rules.

    Args:
        items: List of order items

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not items:
        return False, "Order must contain at least one item"

    if len(items) > MAX_ITEMS:
        return False, f"Order cannot contain more than {MAX_ITEMS} items"

    for item in items:
        if item.quantity <= 0:
            return False, f"Item {item.product_id}: quantity must be positive"

        if item.quantity > MAX_QUANTITY:
            return False, f"Item {item.product_id}: quantity exceeds maximum ({MAX_QUANTITY})"

    return True, ""


def validate_process_steps(steps: Sequence[str]) -> Tuple[bool, str]:
    """
    Validate a product's process steps: names must be non-blank and unique.

    Args:
        steps: Ordered step names

    Returns:
        Tuple of (is_valid, error_message)
    """
    seen = set()
    for position, step in enumerate(steps, start=1):
        if not step or not step.strip():
            return False, f"Step {position} has an empty name"
        if step in seen:
            return False, f"Duplicate step '{step}'"
        seen.add(step)
    return True, ""


def normalize_process_steps(steps: Sequence[str], final_step: str = FINAL_STEP) -> List[str]:
    """
    Prepare authored steps for storage.

    Names are stripped and blanks dropped. A non-empty list always ends with
    final_step, moved there if the author placed it elsewhere.
    """
    cleaned = [s.strip() for s in steps if s and s.strip()]
    if not cleaned:
        return []
    cleaned = [s for s in cleaned if s != final_step]
    cleaned.append(final_step)
    return cleaned


def validate_step_target(steps: Sequence[str], current: Optional[int], target: int) -> Tuple[bool, str]:
    """
    Validate a step rollback target.

    Args:
        steps: Process steps of the item's product
        current: Item's current step index (None when not started)
        target: Requested step index

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not steps:
        return False, "Product has no process steps"

    if target < 0 or target >= len(steps):
        return False, f"Step index {target} out of range (0-{len(steps) - 1})"

    position = -1 if current is None else current
    if target > position:
        return False, f"Cannot jump forward from step {position} to step {target}"

    return True, ""
