"""
History labeling and append helpers.

An order's history is an append-only list of HistoryEntry records. The
helpers here never mutate an existing list; they return a new one with
the entry at the end so a failed write leaves the caller's copy intact.
"""
from typing import Any, Dict, List, Optional, Sequence

from .schemas import HistoryEntry, StatusValue
from .display import status_text

FINALIZED_NO_STEPS = "Finalized (no steps defined)"
PROCESSING_STARTED = "Processing started"
COMPLETION = "Completion"
COMPLETION_NO_PRODUCT = "Completion (product not specified)"
CREATED = "Created"
CREATED_CLONE = "Created (clone)"


def transition_label(
    new_status: StatusValue,
    old_status: StatusValue,
    steps: Optional[Sequence[str]],
    step_index: Optional[int],
    has_product: bool = True,
) -> str:
    """
    Label a status transition for the history log.

    Args:
        new_status: Status being entered
        old_status: Status being left
        steps: Process steps of the product the label is evaluated against
        step_index: Step pointer of the item (or legacy order pointer)
        has_product: False for orders with no item to take a product from

    Returns:
        Human-readable label for HistoryEntry.step
    """
    if not has_product:
        if new_status == StatusValue.DONE:
            return COMPLETION_NO_PRODUCT
        return f"Changed to {status_text(new_status)}"

    if not steps:
        if new_status == StatusValue.DONE:
            return FINALIZED_NO_STEPS
        if old_status == StatusValue.WAITING and new_status == StatusValue.IN_PROGRESS:
            return PROCESSING_STARTED
    elif step_index is not None and 0 <= step_index < len(steps):
        return steps[step_index]

    if new_status == StatusValue.DONE:
        return COMPLETION
    return f"Changed to {status_text(new_status)}"


def rollback_label(step_name: str) -> str:
    return f"Back to {step_name}"


def appended(raw: Optional[Sequence[Any]], entry: HistoryEntry) -> List[Dict[str, Any]]:
    """Return the stored history with entry appended, in JSON-ready form."""
    existing = list(raw) if isinstance(raw, (list, tuple)) else []
    return existing + [entry.model_dump(mode="json")]


def new_entry(step: str, status: StatusValue, notes: Optional[str] = None) -> HistoryEntry:
    return HistoryEntry(step=step, status=status, notes=notes)
