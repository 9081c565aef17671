"""Tests for history labels and append helpers."""
from printshop import history
from printshop.schemas import StatusValue

STEPS = ["Design", "Print", "Cut"]


def test_done_without_steps_is_finalized():
    label = history.transition_label(StatusValue.DONE, StatusValue.IN_PROGRESS, [], None)
    assert label == "Finalized (no steps defined)"


def test_start_without_steps_is_processing_started():
    label = history.transition_label(StatusValue.IN_PROGRESS, StatusValue.WAITING, [], None)
    assert label == "Processing started"


def test_forced_in_progress_without_steps_is_a_generic_change():
    label = history.transition_label(StatusValue.IN_PROGRESS, StatusValue.POSTPONED, [], None)
    assert label == "Changed to In progress"


def test_valid_step_index_names_the_step():
    assert history.transition_label(StatusValue.POSTPONED, StatusValue.IN_PROGRESS, STEPS, 1) == "Print"
    assert history.transition_label(StatusValue.DONE, StatusValue.IN_PROGRESS, STEPS, 2) == "Cut"


def test_fallback_labels():
    assert history.transition_label(StatusValue.DONE, StatusValue.WAITING, STEPS, None) == "Completion"
    assert history.transition_label(StatusValue.CANCELLED, StatusValue.WAITING, STEPS, 7) == "Changed to Cancelled"


def test_orders_without_product():
    assert history.transition_label(
        StatusValue.DONE, StatusValue.WAITING, [], None, has_product=False
    ) == "Completion (product not specified)"
    assert history.transition_label(
        StatusValue.WAITING, StatusValue.CANCELLED, [], None, has_product=False
    ) == "Changed to Waiting"


def test_appended_returns_a_new_list():
    stored = [{"step": "Created", "status": "waiting", "timestamp": "2024-05-12T14:45:00Z", "notes": None}]
    entry = history.new_entry("Design", StatusValue.IN_PROGRESS)

    result = history.appended(stored, entry)

    assert len(stored) == 1
    assert result[0] is stored[0]
    assert result[-1]["step"] == "Design"
    assert result[-1]["status"] == "in_progress"
    assert isinstance(result[-1]["timestamp"], str)


def test_appended_treats_garbage_as_empty():
    entry = history.new_entry("Created", StatusValue.WAITING)
    assert len(history.appended(None, entry)) == 1
    assert len(history.appended("oops", entry)) == 1

