"""
Exception hierarchy for the print-shop service.

Every engine and store failure is raised as one of these types so the API
layer can register a handler per type and map it to a consistent HTTP
status code.

Usage:
    from printshop.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError("advance_item_step", "order_items", item_id)
    raise InvalidStateError("advance_item_step", item_id, "no steps to advance")
"""
from typing import Any, Optional


class ProgressError(Exception):
    """Base class carrying the failing operation, entity id and reason."""

    def __init__(self, operation: str, entity_id: Optional[str] = None, reason: str = "") -> None:
        self.operation = operation
        self.entity_id = entity_id
        self.reason = reason
        msg = f"{operation} failed"
        if entity_id is not None:
            msg += f" for {entity_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotFoundError(ProgressError):
    """Raised when a referenced client, product, order or item is absent.

    Args:
        operation: Name of the operation or store call that looked it up.
        table: Table the record was expected in (e.g. "orders").
        entity_id: The id that was looked up.
    """

    def __init__(self, operation: str, table: str, entity_id: Optional[str] = None) -> None:
        self.table = table
        super().__init__(operation, entity_id, f"{table} record not found")


class InvalidStateError(ProgressError):
    """Raised when an operation's precondition does not hold."""


class ReferentialConflictError(ProgressError):
    """Raised when the store refuses a write because of a foreign-key or policy conflict."""


class StoreUnavailableError(ProgressError):
    """Raised when the record store cannot be reached or fails internally."""


class CascadeError(ProgressError):
    """Raised when an aggregation cascade fails after its triggering write committed.

    Attributes:
        committed: The record whose mutation was persisted before the cascade.
        cause: The error raised by the cascade step.
    """

    def __init__(self, operation: str, entity_id: Optional[str], committed: Any, cause: Exception) -> None:
        self.committed = committed
        self.cause = cause
        super().__init__(operation, entity_id, f"order status cascade failed after item update: {cause}")
