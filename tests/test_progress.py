"""
Tests for the order progress engine: step advance, status changes,
rollback, order status aggregation, history and failure handling.
"""
import pytest

from printshop import schemas
from printshop.exceptions import (
    CascadeError,
    InvalidStateError,
    NotFoundError,
    ReferentialConflictError,
    StoreUnavailableError,
)
from printshop.progress import OrderProgressEngine
from printshop.schemas import StatusValue
from printshop.store import RecordStore, SqlRecordStore

STEPS = ["Design", "Print", "Cut"]


def steps_of(progress, order_id):
    return [(e.step, e.status) for e in progress.get_order(order_id).history]


# ── advance_item_step ───────────────────────────────────────────────────


def test_advance_walks_every_step_then_completes(progress, make_product, make_order):
    product = make_product(STEPS)
    order, [item] = make_order(product)
    assert item.current_step_index is None
    assert item.status == StatusValue.WAITING

    item = progress.advance_item_step(order.id, item.id)
    assert item.current_step_index == 0
    assert item.status == StatusValue.IN_PROGRESS
    last = progress.get_order(order.id).history[-1]
    assert (last.step, last.status) == ("Design", StatusValue.IN_PROGRESS)

    progress.advance_item_step(order.id, item.id)
    item = progress.advance_item_step(order.id, item.id)
    assert item.current_step_index == 2

    item = progress.advance_item_step(order.id, item.id)
    assert item.status == StatusValue.DONE
    assert item.current_step_index == 2
    assert progress.get_order(order.id).status == StatusValue.DONE


def test_done_item_does_not_advance(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    progress.set_item_status(order.id, item.id, StatusValue.DONE)
    before = progress.get_order(order.id).history

    with pytest.raises(InvalidStateError) as exc_info:
        progress.advance_item_step(order.id, item.id)

    assert exc_info.value.entity_id == item.id
    assert progress.list_items(order.id)[0].current_step_index is None
    assert progress.get_order(order.id).history == before


def test_done_item_on_a_middle_step_does_not_advance(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    progress.advance_item_step(order.id, item.id)
    progress.set_item_status(order.id, item.id, StatusValue.DONE)

    with pytest.raises(InvalidStateError):
        progress.advance_item_step(order.id, item.id)
    assert progress.list_items(order.id)[0].current_step_index == 0


def test_advance_adds_exactly_one_history_entry_per_step(progress, make_product, make_order):
    product = make_product(STEPS)
    order, [item] = make_order(product)

    for expected_index in range(len(STEPS)):
        before = len(progress.get_order(order.id).history)
        item = progress.advance_item_step(order.id, item.id)
        assert item.current_step_index == expected_index
        assert len(progress.get_order(order.id).history) == before + 1

    assert steps_of(progress, order.id) == [
        ("Created", StatusValue.WAITING),
        ("Design", StatusValue.IN_PROGRESS),
        ("Print", StatusValue.IN_PROGRESS),
        ("Cut", StatusValue.IN_PROGRESS),
    ]


def test_advance_keeps_postponed_status(progress, make_product, make_order):
    product = make_product(STEPS)
    order, [item] = make_order(product)
    progress.advance_item_step(order.id, item.id)
    progress.set_item_status(order.id, item.id, StatusValue.POSTPONED)

    item = progress.advance_item_step(order.id, item.id)
    assert item.current_step_index == 1
    assert item.status == StatusValue.POSTPONED


def test_advance_without_steps_fails_and_status_finalizes(progress, make_product, make_order):
    product = make_product([])
    order, [item] = make_order(product)

    with pytest.raises(InvalidStateError) as exc_info:
        progress.advance_item_step(order.id, item.id)
    assert exc_info.value.operation == "advance_item_step"
    assert exc_info.value.entity_id == item.id

    item = progress.set_item_status(order.id, item.id, StatusValue.DONE)
    assert item.status == StatusValue.DONE
    assert item.current_step_index is None
    entries = progress.get_order(order.id).history
    assert entries[1].step == "Finalized (no steps defined)"
    assert entries[1].status == StatusValue.DONE


def test_item_of_another_order_is_not_found(progress, make_product, make_order):
    product = make_product(STEPS)
    order_a, _ = make_order(product)
    _, [item_b] = make_order(product)

    with pytest.raises(NotFoundError):
        progress.advance_item_step(order_a.id, item_b.id)


def test_missing_order_is_not_found(progress):
    with pytest.raises(NotFoundError) as exc_info:
        progress.set_order_status("nope", StatusValue.DONE)
    assert exc_info.value.operation == "set_order_status"
    assert exc_info.value.table == "orders"


# ── set_item_status ─────────────────────────────────────────────────────


def test_same_status_is_a_no_op(progress, store, make_product, make_order):
    product = make_product(STEPS)
    order, [item] = make_order(product)
    before = progress.get_order(order.id).history

    result = progress.set_item_status(order.id, item.id, StatusValue.WAITING)

    assert result.status == StatusValue.WAITING
    assert progress.get_order(order.id).history == before
    assert store.get("order_items", item.id)["updated_at"] is None


def test_starting_an_item_points_it_at_the_first_step(progress, make_product, make_order):
    product = make_product(STEPS)
    order, [item] = make_order(product)

    item = progress.set_item_status(order.id, item.id, "in_progress")

    assert item.current_step_index == 0
    assert steps_of(progress, order.id)[-1] == ("Design", StatusValue.IN_PROGRESS)


def test_starting_an_item_without_steps_is_labeled_processing_started(progress, make_product, make_order):
    product = make_product([])
    order, [item] = make_order(product)

    item = progress.set_item_status(order.id, item.id, StatusValue.IN_PROGRESS)

    assert item.current_step_index is None
    assert steps_of(progress, order.id)[-1] == ("Processing started", StatusValue.IN_PROGRESS)


def test_unknown_status_is_rejected(progress, make_product, make_order):
    product = make_product(STEPS)
    order, [item] = make_order(product)

    with pytest.raises(InvalidStateError):
        progress.set_item_status(order.id, item.id, "shipped")


def test_order_completes_only_when_every_item_is_done(progress, make_product, make_order):
    order, [first, second] = make_order(make_product(STEPS), make_product([], name="Flyers"))

    progress.set_item_status(order.id, first.id, StatusValue.DONE)
    assert progress.get_order(order.id).status == StatusValue.WAITING

    progress.set_item_status(order.id, second.id, StatusValue.DONE)
    assert progress.get_order(order.id).status == StatusValue.DONE


def test_item_leaving_done_reopens_the_order(progress, make_product, make_order):
    order, [first, second] = make_order(make_product(STEPS), make_product(STEPS, name="Labels"))
    progress.set_item_status(order.id, first.id, StatusValue.DONE)
    progress.set_item_status(order.id, second.id, StatusValue.DONE)
    assert progress.get_order(order.id).status == StatusValue.DONE

    progress.set_item_status(order.id, second.id, StatusValue.POSTPONED)

    reopened = progress.get_order(order.id)
    assert reopened.status == StatusValue.IN_PROGRESS
    assert reopened.history[-1].status == StatusValue.IN_PROGRESS


def test_postponing_an_unfinished_item_keeps_a_done_order_done(progress, make_product, make_order):
    order, [first, _] = make_order(make_product(STEPS), make_product(STEPS, name="Labels"))
    progress.set_order_status(order.id, StatusValue.DONE)
    before = progress.get_order(order.id).history

    progress.set_item_status(order.id, first.id, StatusValue.POSTPONED)

    after = progress.get_order(order.id)
    assert after.status == StatusValue.DONE
    assert len(after.history) == len(before) + 1
    assert after.history[-1].status == StatusValue.POSTPONED


def test_cancelling_an_item_does_not_touch_an_open_order(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    progress.set_item_status(order.id, item.id, StatusValue.CANCELLED)
    assert progress.get_order(order.id).status == StatusValue.WAITING


# ── go_to_item_step ─────────────────────────────────────────────────────


def test_rollback_forces_in_progress_and_reopens_order(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    for _ in range(4):
        item = progress.advance_item_step(order.id, item.id)
    assert item.status == StatusValue.DONE
    assert progress.get_order(order.id).status == StatusValue.DONE

    item = progress.go_to_item_step(order.id, item.id, 0)

    assert item.current_step_index == 0
    assert item.status == StatusValue.IN_PROGRESS
    history = steps_of(progress, order.id)
    assert ("Back to Design", StatusValue.IN_PROGRESS) in history
    assert progress.get_order(order.id).status == StatusValue.IN_PROGRESS


def test_rollback_rejects_forward_jumps(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    progress.advance_item_step(order.id, item.id)

    with pytest.raises(InvalidStateError):
        progress.go_to_item_step(order.id, item.id, 2)


def test_rollback_rejects_unstarted_items_and_bad_indexes(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    with pytest.raises(InvalidStateError):
        progress.go_to_item_step(order.id, item.id, 0)

    progress.advance_item_step(order.id, item.id)
    with pytest.raises(InvalidStateError):
        progress.go_to_item_step(order.id, item.id, -1)
    with pytest.raises(InvalidStateError):
        progress.go_to_item_step(order.id, item.id, 3)


def test_rollback_needs_steps(progress, make_product, make_order):
    order, [item] = make_order(make_product([]))
    with pytest.raises(InvalidStateError):
        progress.go_to_item_step(order.id, item.id, 0)


# ── set_order_status ────────────────────────────────────────────────────


def test_order_status_does_not_cascade_to_items(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))

    updated = progress.set_order_status(order.id, StatusValue.CANCELLED)

    assert updated.status == StatusValue.CANCELLED
    assert progress.list_items(order.id)[0].status == StatusValue.WAITING


def test_order_status_label_follows_first_item(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    progress.advance_item_step(order.id, item.id)
    progress.advance_item_step(order.id, item.id)

    progress.set_order_status(order.id, StatusValue.POSTPONED)

    assert steps_of(progress, order.id)[-1] == ("Print", StatusValue.POSTPONED)


def test_order_without_items_gets_generic_labels(progress, store, shop_client):
    order = store.insert("orders", {"client_id": shop_client["id"], "status": "waiting", "history": []})

    progress.set_order_status(order["id"], StatusValue.POSTPONED)
    progress.set_order_status(order["id"], StatusValue.DONE)

    assert steps_of(progress, order["id"]) == [
        ("Changed to Postponed", StatusValue.POSTPONED),
        ("Completion (product not specified)", StatusValue.DONE),
    ]


def test_history_is_append_only(progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    snapshots = [progress.get_order(order.id).history]

    progress.advance_item_step(order.id, item.id)
    snapshots.append(progress.get_order(order.id).history)
    progress.set_order_status(order.id, StatusValue.POSTPONED)
    snapshots.append(progress.get_order(order.id).history)

    for before, after in zip(snapshots, snapshots[1:]):
        assert len(after) == len(before) + 1
        assert after[:len(before)] == before


def test_legacy_view_exposes_first_item(progress, make_product, make_order):
    order, [first, _] = make_order(make_product(STEPS), make_product([], name="Flyers"), quantity=250)
    progress.advance_item_step(order.id, first.id)

    view = progress.legacy_view(order.id)

    assert view.product_id == first.product_id
    assert view.quantity == 250
    assert view.current_step_index == 0
    assert view.process_steps == STEPS


# ── create / clone / delete ─────────────────────────────────────────────


def test_create_order_seeds_history(progress, make_product, make_order):
    order, items = make_order(make_product(STEPS), is_priority=True)

    assert order.status == StatusValue.WAITING
    assert order.is_priority is True
    assert [(e.step, e.status) for e in order.history] == [("Created", StatusValue.WAITING)]
    assert len(items) == 1


def test_create_order_validates_input(progress, shop_client, make_product):
    with pytest.raises(InvalidStateError):
        progress.create_order(schemas.OrderCreate(client_id=shop_client["id"], items=[]))

    with pytest.raises(NotFoundError):
        progress.create_order(schemas.OrderCreate(
            client_id="missing",
            items=[schemas.OrderItemCreate(product_id=make_product(STEPS)["id"], quantity=1)],
        ))


def test_clone_resets_progress(progress, make_product, make_order):
    order, [first, second] = make_order(make_product(STEPS), make_product([], name="Flyers"), is_priority=True)
    progress.advance_item_step(order.id, first.id)
    progress.set_item_status(order.id, second.id, StatusValue.DONE)

    clone = progress.clone_order(order.id)
    fetched = progress.get_order(clone.id)

    assert fetched.id != order.id
    assert fetched.client_id == order.client_id
    assert fetched.status == StatusValue.WAITING
    assert fetched.current_step_index == 0
    assert fetched.is_priority is True
    assert [e.step for e in fetched.history] == ["Created (clone)"]

    source_items = progress.list_items(order.id)
    cloned_items = progress.list_items(clone.id)
    assert [(i.product_id, i.quantity, i.item_notes) for i in cloned_items] == \
        [(i.product_id, i.quantity, i.item_notes) for i in source_items]
    assert all(i.status == StatusValue.WAITING for i in cloned_items)
    assert all(i.current_step_index is None for i in cloned_items)


class FailingItemInsertStore(SqlRecordStore):
    """Lets the first item insert through, then fails."""

    def __init__(self, db):
        super().__init__(db)
        self.item_inserts = 0

    def insert(self, table, fields):
        if table == "order_items":
            self.item_inserts += 1
            if self.item_inserts > 1:
                raise StoreUnavailableError("insert order_items", None, "connection reset")
        return super().insert(table, fields)


def test_clone_removes_new_order_when_an_item_fails(db, make_product, make_order):
    order, _ = make_order(make_product(STEPS), make_product(STEPS, name="Labels"))
    failing = FailingItemInsertStore(db)

    with pytest.raises(StoreUnavailableError):
        OrderProgressEngine(failing).clone_order(order.id)

    assert [o["id"] for o in failing.list("orders")] == [order.id]
    assert {i["order_id"] for i in failing.list("order_items")} == {order.id}


def test_delete_order_cascades_to_items(progress, store, make_product, make_order):
    order, items = make_order(make_product(STEPS), make_product([], name="Flyers"))
    assert len(items) == 2

    progress.delete_order(order.id)

    assert store.list("order_items", {"order_id": order.id}) == []
    with pytest.raises(NotFoundError):
        progress.get_order(order.id)


def test_delete_missing_order(progress):
    with pytest.raises(NotFoundError):
        progress.delete_order("missing")


class RefusingDeleteStore(SqlRecordStore):
    def delete(self, table, record_id):
        raise ReferentialConflictError(f"delete {table}", record_id, "referenced by payments")


def test_refused_delete_leaves_order_intact(db, progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    progress.advance_item_step(order.id, item.id)
    before = progress.get_order(order.id)

    with pytest.raises(ReferentialConflictError):
        OrderProgressEngine(RefusingDeleteStore(db)).delete_order(order.id)

    after = progress.get_order(order.id)
    assert after.history == before.history
    assert len(progress.list_items(order.id)) == 1


# ── failure handling ────────────────────────────────────────────────────


class FailingOrderUpdateStore(SqlRecordStore):
    """Fails order updates; with status_only, only those that change status."""

    def __init__(self, db, status_only=False):
        super().__init__(db)
        self.status_only = status_only

    def update(self, table, record_id, fields):
        if table == "orders" and (not self.status_only or "status" in fields):
            raise StoreUnavailableError(f"update {table}", record_id, "timeout")
        return super().update(table, record_id, fields)


def test_failed_history_write_restores_the_item(db, progress, make_product, make_order):
    order, [item] = make_order(make_product(STEPS))
    failing = OrderProgressEngine(FailingOrderUpdateStore(db))

    with pytest.raises(StoreUnavailableError):
        failing.advance_item_step(order.id, item.id)

    restored = progress.list_items(order.id)[0]
    assert restored.current_step_index is None
    assert restored.status == StatusValue.WAITING
    assert len(progress.get_order(order.id).history) == 1


def test_failed_cascade_reports_committed_item(db, progress, make_product, make_order):
    order, [item] = make_order(make_product([]))
    failing = OrderProgressEngine(FailingOrderUpdateStore(db, status_only=True))

    with pytest.raises(CascadeError) as exc_info:
        failing.set_item_status(order.id, item.id, StatusValue.DONE)

    assert exc_info.value.committed.status == StatusValue.DONE
    assert isinstance(exc_info.value.cause, StoreUnavailableError)
    assert progress.list_items(order.id)[0].status == StatusValue.DONE
    assert progress.get_order(order.id).status == StatusValue.WAITING


# ── item management ─────────────────────────────────────────────────────


def test_adding_an_item_reopens_a_done_order(progress, make_product, make_order):
    product = make_product([])
    order, [item] = make_order(product)
    progress.set_item_status(order.id, item.id, StatusValue.DONE)

    progress.add_item(order.id, schemas.OrderItemCreate(product_id=product["id"], quantity=5))

    assert progress.get_order(order.id).status == StatusValue.IN_PROGRESS
    assert len(progress.list_items(order.id)) == 2


def test_removing_the_last_open_item_completes_the_order(progress, make_product, make_order):
    order, [first, second] = make_order(make_product([]), make_product(STEPS, name="Labels"))
    progress.set_item_status(order.id, first.id, StatusValue.DONE)

    progress.remove_item(order.id, second.id)

    assert progress.get_order(order.id).status == StatusValue.DONE


def test_partial_store_cannot_be_instantiated():
    class ReadOnlyStore(RecordStore):
        def get(self, table, record_id):
            return {}

        def list(self, table, filters=None):
            return []

    with pytest.raises(TypeError):
        ReadOnlyStore()
