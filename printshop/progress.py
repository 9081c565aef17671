"""
Order progress engine.

Validates and applies every status or step transition of an order or one
of its items, appends the matching entry to the order's history and keeps
the order status in line with its items:

    - an item set to done when every other item is done completes the order
    - an item leaving done (or rolled back) reopens a done order

The engine reads and writes through a RecordStore and never holds state
of its own. Each public call is a read-modify-write sequence with no
version check; concurrent writers to the same order can lose updates.

Usage:
    from printshop.progress import OrderProgressEngine
    from printshop.store import SqlRecordStore

    engine = OrderProgressEngine(SqlRecordStore(db))
    item = engine.advance_item_step(order_id, item_id)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from . import history, schemas, validators
from .exceptions import CascadeError, InvalidStateError, NotFoundError, ProgressError
from .schemas import StatusValue
from .store import Record, RecordStore

logger = logging.getLogger(__name__)


def _status(operation: str, entity_id: str, value) -> StatusValue:
    try:
        return StatusValue(value)
    except ValueError:
        raise InvalidStateError(operation, entity_id, f"unknown status '{value}'") from None


class OrderProgressEngine:
    """State machine over orders and order items, backed by a RecordStore."""

    def __init__(self, store: RecordStore):
        self.store = store

    # ── Loading ──────────────────────────────────────────────────────────

    def _fetch(self, operation: str, table: str, record_id: str) -> Record:
        try:
            return self.store.get(table, record_id)
        except NotFoundError:
            raise NotFoundError(operation, table, record_id) from None

    def _order(self, operation: str, order_id: str) -> Record:
        return self._fetch(operation, "orders", order_id)

    def _item(self, operation: str, order_id: str, item_id: str) -> Record:
        record = self._fetch(operation, "order_items", item_id)
        if record.get("order_id") != order_id:
            raise NotFoundError(operation, "order_items", item_id)
        return record

    def _product(self, operation: str, product_id: str) -> schemas.Product:
        return schemas.Product.model_validate(self._fetch(operation, "products", product_id))

    def _load(self, operation: str, order_id: str, item_id: str) -> Tuple[Record, Record, schemas.Product]:
        order = self._order(operation, order_id)
        item = self._item(operation, order_id, item_id)
        product = self._product(operation, item["product_id"])
        return order, item, product

    def get_order(self, order_id: str) -> schemas.Order:
        return schemas.Order.model_validate(self._order("get_order", order_id))

    def list_orders(self, filters: Optional[Dict[str, Any]] = None) -> List[schemas.Order]:
        return [schemas.Order.model_validate(r) for r in self.store.list("orders", filters)]

    def list_items(self, order_id: str) -> List[schemas.OrderItem]:
        self._order("list_items", order_id)
        return [
            schemas.OrderItem.model_validate(r)
            for r in self.store.list("order_items", {"order_id": order_id})
        ]

    # ── Writing ──────────────────────────────────────────────────────────

    def _commit_item(
        self,
        operation: str,
        order: Record,
        item: Record,
        fields: Dict[str, Any],
        entry: schemas.HistoryEntry,
    ) -> schemas.OrderItem:
        """
        Persist an item change and its history entry on the parent order.

        The two writes hit different records. When the history write fails
        the item is restored to its previous fields before the error is
        re-raised, so neither change survives.
        """
        updated = self.store.update("order_items", item["id"], fields)
        try:
            self.store.update("orders", order["id"], {"history": history.appended(order.get("history"), entry)})
        except ProgressError as e:
            logger.error(f"{operation}: history write failed for order {order['id']}, restoring item {item['id']}: {e}")
            previous = {key: item.get(key) for key in fields}
            try:
                self.store.update("order_items", item["id"], previous)
            except ProgressError as restore_error:
                logger.error(f"{operation}: could not restore item {item['id']}: {restore_error}")
            raise
        return schemas.OrderItem.model_validate(updated)

    def _aggregate(self, operation: str, order_id: str, item: schemas.OrderItem, reopen: bool) -> None:
        """
        Derive the order status from its items after an item changed.

        A done item completes the order once every item is done. With reopen
        set (the item left done, was rolled back or was added) a done order
        goes back to in_progress.

        Runs as separate store calls after the item write has committed;
        any failure here is reported as CascadeError.
        """
        try:
            order = schemas.Order.model_validate(self._order(operation, order_id))
            if item.status == StatusValue.DONE:
                items = self.store.list("order_items", {"order_id": order_id})
                if order.status != StatusValue.DONE and all(
                    StatusValue(i["status"]) == StatusValue.DONE for i in items
                ):
                    logger.info(f"All items of order {order_id} done, completing order")
                    self.set_order_status(order_id, StatusValue.DONE)
            elif reopen and order.status == StatusValue.DONE:
                logger.info(f"Item {item.id} reopens order {order_id}")
                self.set_order_status(order_id, StatusValue.IN_PROGRESS)
        except ProgressError as e:
            logger.error(f"{operation}: cascade to order {order_id} failed: {e}")
            raise CascadeError(operation, order_id, item, e) from e

    # ── Item transitions ─────────────────────────────────────────────────

    def advance_item_step(self, order_id: str, item_id: str) -> schemas.OrderItem:
        """
        Move an item to its product's next step.

        An unstarted item enters step 0. A waiting item becomes in_progress.
        On the last step the item is completed instead, exactly as
        set_item_status(order_id, item_id, done) would.

        Raises:
            NotFoundError: order, item or product missing
            InvalidStateError: the product has no process steps, or the item is
                done and not on its last step
        """
        operation = "advance_item_step"
        order, item, product = self._load(operation, order_id, item_id)
        steps = product.process_steps
        if not steps:
            raise InvalidStateError(operation, item_id, "no steps to advance")

        index = item.get("current_step_index")
        if index is not None and index >= len(steps) - 1:
            return self.set_item_status(order_id, item_id, StatusValue.DONE)

        old_status = StatusValue(item["status"])
        if old_status == StatusValue.DONE:
            raise InvalidStateError(operation, item_id, "item is done")

        new_index = 0 if index is None else index + 1
        new_status = StatusValue.IN_PROGRESS if old_status == StatusValue.WAITING else old_status

        entry = history.new_entry(steps[new_index], new_status)
        updated = self._commit_item(
            operation, order, item,
            {"current_step_index": new_index, "status": new_status.value},
            entry,
        )
        logger.info(f"Item {item_id} of order {order_id} advanced to step {new_index} '{steps[new_index]}'")
        return updated

    def set_item_status(self, order_id: str, item_id: str, new_status) -> schemas.OrderItem:
        """
        Set an item's status and run the aggregation rule.

        Setting the status the item already has is a no-op: nothing is
        written and no history entry is added.

        Raises:
            NotFoundError: order, item or product missing
            InvalidStateError: unknown status value
            CascadeError: the item was saved but the order status update failed
        """
        operation = "set_item_status"
        new_status = _status(operation, item_id, new_status)
        order, item, product = self._load(operation, order_id, item_id)
        old_status = StatusValue(item["status"])
        current = schemas.OrderItem.model_validate(item)
        if old_status == new_status:
            return current

        steps = product.process_steps
        index = item.get("current_step_index")
        if new_status == StatusValue.IN_PROGRESS and index is None and steps:
            index = 0

        label = history.transition_label(new_status, old_status, steps, index)
        updated = self._commit_item(
            operation, order, item,
            {"status": new_status.value, "current_step_index": index},
            history.new_entry(label, new_status),
        )
        logger.info(f"Item {item_id} of order {order_id}: {old_status.value} -> {new_status.value}")

        self._aggregate(operation, order_id, updated, reopen=old_status == StatusValue.DONE)
        return updated

    def go_to_item_step(self, order_id: str, item_id: str, target_step_index: int) -> schemas.OrderItem:
        """
        Roll an item back to an earlier (or its current) step.

        The item is forced to in_progress and a done order is reopened.
        Forward jumps are rejected since they would skip history entries.

        Raises:
            NotFoundError: order, item or product missing
            InvalidStateError: no steps, index out of range or a forward jump
            CascadeError: the item was saved but reopening the order failed
        """
        operation = "go_to_item_step"
        order, item, product = self._load(operation, order_id, item_id)
        steps = product.process_steps
        is_valid, error = validators.validate_step_target(steps, item.get("current_step_index"), target_step_index)
        if not is_valid:
            raise InvalidStateError(operation, item_id, error)

        entry = history.new_entry(history.rollback_label(steps[target_step_index]), StatusValue.IN_PROGRESS)
        updated = self._commit_item(
            operation, order, item,
            {"current_step_index": target_step_index, "status": StatusValue.IN_PROGRESS.value},
            entry,
        )
        logger.info(f"Item {item_id} of order {order_id} moved back to step {target_step_index}")

        self._aggregate(operation, order_id, updated, reopen=True)
        return updated

    # ── Order transitions ────────────────────────────────────────────────

    def legacy_view(self, order_id: str) -> schemas.LegacyOrderView:
        """Expose the order's first item as the old one-product-per-order fields."""
        operation = "legacy_view"
        order = self._order(operation, order_id)
        items = self.store.list("order_items", {"order_id": order_id})
        if not items:
            return schemas.LegacyOrderView(order_id=order_id, current_step_index=order.get("current_step_index"))

        first = items[0]
        try:
            steps = self._product(operation, first["product_id"]).process_steps
        except NotFoundError:
            logger.warning(f"Product {first['product_id']} of order {order_id} no longer exists")
            steps = []
        return schemas.LegacyOrderView(
            order_id=order_id,
            product_id=first["product_id"],
            quantity=first["quantity"],
            current_step_index=first.get("current_step_index"),
            process_steps=steps,
        )

    def set_order_status(self, order_id: str, new_status) -> schemas.Order:
        """
        Set an order's status directly. Item statuses are left untouched.

        The history label is computed against the legacy single-product view
        (the first item and its product). Setting the current status again is
        a no-op.

        Raises:
            NotFoundError: order missing
            InvalidStateError: unknown status value
        """
        operation = "set_order_status"
        new_status = _status(operation, order_id, new_status)
        order = self._order(operation, order_id)
        old_status = StatusValue(order["status"])
        if old_status == new_status:
            return schemas.Order.model_validate(order)

        view = self.legacy_view(order_id)
        label = history.transition_label(
            new_status, old_status, view.process_steps, view.current_step_index,
            has_product=view.product_id is not None,
        )
        entry = history.new_entry(label, new_status)
        updated = self.store.update("orders", order_id, {
            "status": new_status.value,
            "history": history.appended(order.get("history"), entry),
        })
        logger.info(f"Order {order_id}: {old_status.value} -> {new_status.value}")
        return schemas.Order.model_validate(updated)

    def update_order(self, order_id: str, changes: schemas.OrderUpdate) -> schemas.Order:
        """Edit an order's notes or priority flag. No history entry is written."""
        self._order("update_order", order_id)
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return self.get_order(order_id)
        return schemas.Order.model_validate(self.store.update("orders", order_id, fields))

    # ── Creation, cloning, deletion ──────────────────────────────────────

    def _insert_with_items(self, operation: str, order_fields: Dict[str, Any], items: List[Dict[str, Any]]) -> Record:
        """
        Insert an order and its items. If any item insert fails the new
        order is deleted again (taking already inserted items with it).
        """
        new_order = self.store.insert("orders", order_fields)
        try:
            for fields in items:
                self.store.insert("order_items", {**fields, "order_id": new_order["id"]})
        except ProgressError as e:
            logger.error(f"{operation}: item insert failed, removing order {new_order['id']}: {e}")
            try:
                self.store.delete("orders", new_order["id"])
            except ProgressError as cleanup_error:
                logger.error(f"{operation}: could not remove order {new_order['id']}: {cleanup_error}")
            raise
        return new_order

    def create_order(self, data: schemas.OrderCreate) -> schemas.Order:
        """
        Create a waiting order with its items and a seeded history entry.

        Raises:
            NotFoundError: client or a product missing
            InvalidStateError: item list fails validation
        """
        operation = "create_order"
        is_valid, error = validators.validate_order_items(data.items)
        if not is_valid:
            raise InvalidStateError(operation, None, error)

        self._fetch(operation, "clients", data.client_id)
        for line in data.items:
            self._fetch(operation, "products", line.product_id)

        entry = history.new_entry(history.CREATED, StatusValue.WAITING)
        order = self._insert_with_items(
            operation,
            {
                "client_id": data.client_id,
                "order_date": data.order_date or datetime.now(timezone.utc),
                "status": StatusValue.WAITING.value,
                "current_step_index": 0,
                "is_priority": data.is_priority,
                "notes": data.notes,
                "history": history.appended([], entry),
            },
            [
                {
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "item_notes": line.item_notes,
                    "status": StatusValue.WAITING.value,
                    "current_step_index": None,
                }
                for line in data.items
            ],
        )
        logger.info(f"Created order {order['id']} with {len(data.items)} item(s)")
        return schemas.Order.model_validate(order)

    def clone_order(self, order_id: str) -> schemas.Order:
        """
        Duplicate an order for the same client with every item reset.

        The copy is waiting, points at step 0, keeps the priority flag and
        starts with a single "Created (clone)" history entry.

        Raises:
            NotFoundError: source order missing
        """
        operation = "clone_order"
        source = self._order(operation, order_id)
        items = self.store.list("order_items", {"order_id": order_id})

        entry = history.new_entry(history.CREATED_CLONE, StatusValue.WAITING)
        clone = self._insert_with_items(
            operation,
            {
                "client_id": source["client_id"],
                "order_date": datetime.now(timezone.utc),
                "status": StatusValue.WAITING.value,
                "current_step_index": 0,
                "is_priority": bool(source.get("is_priority")),
                "notes": source.get("notes"),
                "history": history.appended([], entry),
            },
            [
                {
                    "product_id": item["product_id"],
                    "quantity": item["quantity"],
                    "item_notes": item.get("item_notes"),
                    "status": StatusValue.WAITING.value,
                    "current_step_index": None,
                }
                for item in items
            ],
        )
        logger.info(f"Cloned order {order_id} into {clone['id']} ({len(items)} item(s))")
        return schemas.Order.model_validate(clone)

    def delete_order(self, order_id: str) -> None:
        """
        Delete an order; the store removes its items with it.

        Raises:
            NotFoundError: order missing
            ReferentialConflictError: the store refused the delete
        """
        self._order("delete_order", order_id)
        self.store.delete("orders", order_id)
        logger.info(f"Deleted order {order_id}")

    # ── Item management ──────────────────────────────────────────────────

    def add_item(self, order_id: str, line: schemas.OrderItemCreate) -> schemas.OrderItem:
        """Add a waiting item to an existing order, reopening it if it was done."""
        operation = "add_item"
        self._order(operation, order_id)
        self._fetch(operation, "products", line.product_id)
        record = self.store.insert("order_items", {
            "order_id": order_id,
            "product_id": line.product_id,
            "quantity": line.quantity,
            "item_notes": line.item_notes,
            "status": StatusValue.WAITING.value,
            "current_step_index": None,
        })
        item = schemas.OrderItem.model_validate(record)
        logger.info(f"Added item {item.id} to order {order_id}")
        self._aggregate(operation, order_id, item, reopen=True)
        return item

    def remove_item(self, order_id: str, item_id: str) -> None:
        """Remove one item; if every remaining item is done the order completes."""
        operation = "remove_item"
        order = self._order(operation, order_id)
        self._item(operation, order_id, item_id)
        self.store.delete("order_items", item_id)
        logger.info(f"Removed item {item_id} from order {order_id}")

        remaining = self.store.list("order_items", {"order_id": order_id})
        if (
            remaining
            and StatusValue(order["status"]) != StatusValue.DONE
            and all(StatusValue(i["status"]) == StatusValue.DONE for i in remaining)
        ):
            try:
                self.set_order_status(order_id, StatusValue.DONE)
            except ProgressError as e:
                raise CascadeError(operation, order_id, None, e) from e
