"""Tests for VisibleWindow ordering and reconciliation."""
from datetime import datetime, timedelta

from app.models.message import ChatMessageRead, MessageRole, OptimisticMessage
from app.services.visible_window import VisibleWindow

T0 = datetime(2024, 1, 1, 12, 0, 0)


def confirmed(message_id, seconds, content="text"):
    return ChatMessageRead(
        id=message_id,
        user_id="user-1",
        role=MessageRole.USER,
        content=content,
        created_at=T0 + timedelta(seconds=seconds),
    )


def optimistic(temp_id, seconds):
    return OptimisticMessage(
        id=temp_id,
        temp_id=temp_id,
        user_id="user-1",
        role=MessageRole.USER,
        content="pending",
        created_at=T0 + timedelta(seconds=seconds),
    )


def ids(window):
    return [entry.id for entry in window.entries()]


def test_insert_keeps_timeline_order():
    window = VisibleWindow()
    window.insert(confirmed("b", 2))
    window.insert(confirmed("d", 4))
    window.insert(confirmed("a", 1))
    window.insert(confirmed("c", 2))

    assert ids(window) == ["a", "b", "c", "d"]
    assert window.get("c").id == "c"
    assert "d" in window


def test_prepend_skips_known_entries():
    window = VisibleWindow()
    window.replace_all([confirmed("c", 3), confirmed("d", 4)])

    added = window.prepend([confirmed("b", 2), confirmed("c", 3), confirmed("a", 1)])

    assert added == 2
    assert ids(window) == ["a", "b", "c", "d"]
    assert window.get("d") is window.entries()[3]


def test_replace_in_place():
    window = VisibleWindow()
    window.replace_all([confirmed("a", 1), optimistic("temp_1", 2), confirmed("z", 3)])

    assert window.replace("temp_1", confirmed("m", 2))

    assert ids(window) == ["a", "m", "z"]
    assert "temp_1" not in window


def test_replace_moves_out_of_order_confirmation():
    window = VisibleWindow()
    window.replace_all([optimistic("temp_1", 1), optimistic("temp_2", 2), confirmed("c", 3)])

    window.replace("temp_1", confirmed("late", 5))

    assert ids(window) == ["temp_2", "c", "late"]
    assert window.get("late") is window.entries()[2]
    assert window.get("temp_2") is window.entries()[0]


def test_replace_with_existing_id_drops_stale_entry():
    window = VisibleWindow()
    window.replace_all([confirmed("a", 1), optimistic("temp_1", 2)])

    window.replace("temp_1", confirmed("a", 1))

    assert ids(window) == ["a"]


def test_replace_unknown_id():
    window = VisibleWindow()

    assert window.replace("temp_missing", confirmed("a", 1)) is False
    assert len(window) == 0


def test_oldest_confirmed_skips_optimistic_entries():
    window = VisibleWindow()
    window.replace_all([optimistic("temp_1", 1), confirmed("b", 2), optimistic("temp_2", 3)])

    assert window.oldest_confirmed().id == "b"
    assert [entry.id for entry in window.optimistic()] == ["temp_1", "temp_2"]

    window.clear()
    assert window.oldest_confirmed() is None
