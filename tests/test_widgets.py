import sqlite3
from unittest import mock

import pytest

from lifehub.domain import NotFoundError, StorageError, ValidationError, Widget, WidgetType


def make_widget(widget_id="w1", **overrides):
    fields = dict(
        id=widget_id,
        type=WidgetType.TODO,
        title="Groceries",
        cols=2,
        position=0,
        is_active=True,
        content={"items": [{"text": "milk", "done": False}]},
    )
    fields.update(overrides)
    return Widget(**fields)


def test_upsert_then_get_returns_same_fields(widgets, alice):
    widgets.upsert(alice.id, make_widget())

    stored = widgets.get_by_id(alice.id, "w1")

    assert stored is not None
    assert stored.id == "w1"
    assert stored.type == WidgetType.TODO
    assert stored.title == "Groceries"
    assert stored.cols == 2
    assert stored.position == 0
    assert stored.is_active is True
    assert stored.content == {"items": [{"text": "milk", "done": False}]}
    assert stored.owner_id == alice.id
    assert stored.updated_at >= stored.created_at


def test_upsert_overwrites_mutable_fields_and_keeps_creation(widgets, alice):
    with mock.patch("lifehub.storage.time_now", side_effect=[
        "2026-01-01T00:00:00+00:00",
        "2026-01-02T00:00:00+00:00",
    ]):
        widgets.upsert(alice.id, make_widget())
        widgets.upsert(alice.id, make_widget(
            type=WidgetType.NOTE, title="Notes", cols=3, position=5, is_active=False, content={"text": "hi"},
        ))

    stored = widgets.get_by_id(alice.id, "w1")

    assert stored.type == WidgetType.NOTE
    assert stored.title == "Notes"
    assert stored.cols == 3
    assert stored.position == 5
    assert stored.is_active is False
    assert stored.content == {"text": "hi"}
    assert stored.created_at == "2026-01-01T00:00:00+00:00"
    assert stored.updated_at == "2026-01-02T00:00:00+00:00"


def test_upsert_returns_stored_widget(widgets, alice):
    saved = widgets.upsert(alice.id, make_widget(content=None))

    assert saved.id == "w1"
    assert saved.content is None
    assert saved.created_at is not None


def test_upsert_requires_id(widgets, alice):
    with pytest.raises(ValidationError):
        widgets.upsert(alice.id, make_widget(widget_id=""))


def test_list_active_orders_by_position(widgets, alice):
    widgets.upsert(alice.id, make_widget("c", position=3))
    widgets.upsert(alice.id, make_widget("a", position=1))
    widgets.upsert(alice.id, make_widget("b", position=2))

    assert [w.id for w in widgets.list_active(alice.id)] == ["a", "b", "c"]


def test_list_active_is_empty_list_when_nothing_stored(widgets, alice):
    assert widgets.list_active(alice.id) == []


def test_soft_delete_hides_from_list_but_keeps_record(widgets, alice):
    widgets.upsert(alice.id, make_widget("keep", position=0))
    widgets.upsert(alice.id, make_widget("drop", position=1))

    widgets.soft_delete(alice.id, "drop")

    assert [w.id for w in widgets.list_active(alice.id)] == ["keep"]
    deleted = widgets.get_by_id(alice.id, "drop")
    assert deleted is not None
    assert deleted.is_active is False
    assert deleted.title == "Groceries"


def test_soft_delete_refreshes_updated_at(widgets, alice):
    with mock.patch("lifehub.storage.time_now", side_effect=[
        "2026-01-01T00:00:00+00:00",
        "2026-03-01T00:00:00+00:00",
    ]):
        widgets.upsert(alice.id, make_widget())
        widgets.soft_delete(alice.id, "w1")

    assert widgets.get_by_id(alice.id, "w1").updated_at == "2026-03-01T00:00:00+00:00"


def test_soft_delete_unknown_id_raises_not_found(widgets, alice):
    with pytest.raises(NotFoundError):
        widgets.soft_delete(alice.id, "missing")


def test_soft_delete_of_other_owners_widget_looks_like_unknown_id(widgets, alice, bob):
    widgets.upsert(alice.id, make_widget())

    with pytest.raises(NotFoundError) as excinfo:
        widgets.soft_delete(bob.id, "w1")

    assert str(excinfo.value) == "Widget not found"
    assert widgets.get_by_id(alice.id, "w1").is_active is True


def test_widgets_are_scoped_by_owner(widgets, alice, bob):
    widgets.upsert(alice.id, make_widget("alice-widget"))
    widgets.upsert(bob.id, make_widget("bob-widget"))

    assert [w.id for w in widgets.list_active(alice.id)] == ["alice-widget"]
    assert widgets.get_by_id(alice.id, "bob-widget") is None


def test_upsert_never_transfers_ownership(widgets, alice, bob):
    widgets.upsert(alice.id, make_widget(title="Alice's list"))

    with pytest.raises(NotFoundError):
        widgets.upsert(bob.id, make_widget(title="Bob's takeover"))

    stored = widgets.get_by_id(None, "w1")
    assert stored.owner_id == alice.id
    assert stored.title == "Alice's list"


def test_global_scope_sees_every_widget(widgets, alice):
    widgets.upsert(None, make_widget("shared", position=1))
    widgets.upsert(alice.id, make_widget("owned", position=0))

    assert [w.id for w in widgets.list_active(None)] == ["owned", "shared"]
    assert widgets.get_by_id(None, "shared").owner_id is None


def test_storage_failure_is_wrapped(widgets, db, alice):
    with db.connect() as conn:
        conn.execute("DROP TABLE widgets")
        conn.commit()

    with pytest.raises(StorageError):
        widgets.upsert(alice.id, make_widget())
    with pytest.raises(StorageError):
        widgets.list_active(alice.id)


def test_unparseable_content_is_returned_as_text(widgets, db, alice):
    widgets.upsert(alice.id, make_widget())
    with db.connect() as conn:
        conn.execute("UPDATE widgets SET content = ? WHERE id = ?", ("{broken", "w1"))
        conn.commit()

    assert widgets.get_by_id(alice.id, "w1").content == "{broken"


def test_positions_beyond_sqlite_integers_are_rejected(widgets, alice):
    with pytest.raises(ValidationError):
        widgets.upsert(alice.id, make_widget(position=2 ** 70))

    assert widgets.get_by_id(alice.id, "w1") is None


def test_connection_is_closed_when_setup_fails(db):
    conn = mock.Mock()
    conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")

    with mock.patch("lifehub.database.sqlite3.connect", return_value=conn):
        with pytest.raises(StorageError):
            with db.connect():
                pass

    conn.close.assert_called_once()
