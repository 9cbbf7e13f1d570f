"""Tests for conversation context assembly."""

from relay.context import Turn, assemble_context


def test_maps_roles_and_drops_system_rows(store):
    store.get_or_create_user(1, "Anna")
    store.append_message(1, "system", "internal note")
    store.append_message(1, "user", "Hi")
    store.append_message(1, "assistant", "Hello!")
    store.append_message(1, "user", "Where is my order?")

    turns = assemble_context(store, 1, 10)

    assert turns == [
        Turn(role="user", content="Hi"),
        Turn(role="model", content="Hello!"),
        Turn(role="user", content="Where is my order?"),
    ]


def test_window_counts_stored_rows(store):
    store.get_or_create_user(2, "Anna")
    for i in range(8):
        store.append_message(2, "user", f"q{i}")

    turns = assemble_context(store, 2, 6)

    assert [t.content for t in turns] == ["q2", "q3", "q4", "q5", "q6", "q7"]


def test_empty_history_is_an_empty_list(store):
    assert assemble_context(store, 3, 6) == []


def test_system_row_inside_window_is_skipped_not_replaced(store):
    store.get_or_create_user(4, "Anna")
    store.append_message(4, "user", "old")
    store.append_message(4, "system", "note")
    store.append_message(4, "user", "new")

    turns = assemble_context(store, 4, 2)

    assert turns == [Turn(role="user", content="new")]
