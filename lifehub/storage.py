"""
Persistence for widgets and push subscriptions.

Widgets are stored one row per widget with ``content`` kept as JSON text.
The store never interprets ``content``; only the public page resolver looks
inside it, and only for WIKI widgets.
"""

import json
import logging
import sqlite3
from typing import Any, Iterator, List, Optional, Tuple

from .database import Database
from .domain import NotFoundError, PushSubscription, StorageError, ValidationError, Widget, WidgetType, WikiPage
from .utils import json_dumps, time_now

logger = logging.getLogger(__name__)

WIDGET_COLUMNS = "id, owner_id, type, title, cols, position, is_active, content, created_at, updated_at"


def _owner_clause(owner_id: Optional[int]):
    """SQL fragment and params restricting a query to one owner, or nothing for global scope."""
    if owner_id is None:
        return "", ()
    return " AND owner_id = ?", (owner_id,)


def _row_to_widget(row: sqlite3.Row) -> Widget:
    raw = row["content"]
    try:
        content = json.loads(raw) if raw else None
    except ValueError:
        # hand-edited rows must not break the whole dashboard
        logger.warning("Widget %s has unparseable content; returning it as text", row["id"])
        content = raw
    return Widget(
        id=row["id"],
        type=row["type"],
        title=row["title"],
        cols=row["cols"],
        position=row["position"],
        is_active=bool(row["is_active"]),
        content=content,
        owner_id=row["owner_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class WidgetStore:
    """Stores dashboard widgets, scoped by owner."""

    def __init__(self, db: Database):
        self.db = db

    def list_active(self, owner_id: Optional[int]) -> List[Widget]:
        """Return active widgets ordered by ascending position."""
        clause, params = _owner_clause(owner_id)
        with self.db.connect() as conn:
            try:
                rows = conn.execute(
                    f"SELECT {WIDGET_COLUMNS} FROM widgets WHERE is_active = 1{clause} "
                    "ORDER BY position ASC, created_at ASC",
                    params,
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to list widgets: {e}") from e
        return [_row_to_widget(row) for row in rows]

    def get_by_id(self, owner_id: Optional[int], widget_id: str) -> Optional[Widget]:
        """Return a widget whether or not it is active; None if the id/owner pair doesn't exist."""
        clause, params = _owner_clause(owner_id)
        with self.db.connect() as conn:
            try:
                row = conn.execute(
                    f"SELECT {WIDGET_COLUMNS} FROM widgets WHERE id = ?{clause}",
                    (widget_id,) + params,
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to fetch widget: {e}") from e
        return _row_to_widget(row) if row else None

    def upsert(self, owner_id: Optional[int], widget: Widget) -> Widget:
        """
        Insert a widget, or overwrite every mutable field of an existing one.

        The owner and creation time recorded on insert are never changed by a
        later save. Concurrent saves of the same id are last-write-wins.

        Raises:
            ValidationError: If the id is empty or cols/position overflow SQLite
            NotFoundError: If the id is already taken by another owner's widget
            StorageError: If the write fails
        """
        if not widget.id:
            raise ValidationError("Widget ID required")
        now = time_now()
        with self.db.connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO widgets (id, owner_id, type, title, cols, position, is_active, content,
                                         created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        type = excluded.type,
                        title = excluded.title,
                        cols = excluded.cols,
                        position = excluded.position,
                        is_active = excluded.is_active,
                        content = excluded.content,
                        updated_at = excluded.updated_at
                    WHERE excluded.owner_id IS NULL OR widgets.owner_id IS excluded.owner_id
                    """,
                    (
                        widget.id, owner_id, widget.type.value, widget.title, widget.cols,
                        widget.position, int(widget.is_active), json_dumps(widget.content), now, now,
                    ),
                )
                saved = cursor.rowcount
                conn.commit()
            except OverflowError as e:
                raise ValidationError("cols and position must fit a 64-bit integer") from e
            except sqlite3.Error as e:
                conn.rollback()
                logger.error("Database error saving widget %s: %s", widget.id, e)
                raise StorageError(f"Failed to save widget: {e}") from e
        if not saved:
            # the id exists but belongs to another owner
            raise NotFoundError("Widget not found")
        logger.debug("Widget saved: %s", widget.id)
        stored = self.get_by_id(None, widget.id)
        if stored is None:
            raise StorageError(f"Widget {widget.id} vanished after save")
        return stored

    def soft_delete(self, owner_id: Optional[int], widget_id: str):
        """
        Mark a widget inactive.

        Raises:
            NotFoundError: If no widget with this id belongs to the owner.
                Unknown ids and other owners' widgets are reported the same way.
        """
        clause, params = _owner_clause(owner_id)
        with self.db.connect() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE widgets SET is_active = 0, updated_at = ? WHERE id = ?{clause}",
                    (time_now(), widget_id) + params,
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Failed to delete widget: {e}") from e
        if cursor.rowcount == 0:
            raise NotFoundError("Widget not found")
        logger.debug("Widget soft-deleted: %s", widget_id)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def wiki_pages(content: Any) -> List[Any]:
    """
    Return the raw page list of a WIKI widget's content.

    The browser client nests pages under ``content.wiki.pages``; a bare
    ``content.pages`` list is accepted as well.
    """
    if not isinstance(content, dict):
        raise ValueError("wiki content must be a JSON object")
    wiki = content.get("wiki")
    if isinstance(wiki, dict) and "pages" in wiki:
        pages = wiki["pages"]
    else:
        pages = content.get("pages")
    if not isinstance(pages, list):
        raise ValueError("wiki content has no pages list")
    return pages


class PublicPageResolver:
    """Finds a publicly shared wiki page by its public id, across all owners."""

    def __init__(self, db: Database):
        self.db = db

    def _candidate_contents(self, public_id: str) -> Iterator[Tuple[str, str]]:
        query = "SELECT id, content FROM widgets WHERE type = ?"
        params = (WidgetType.WIKI.value,)
        # The LIKE filter only holds when the id appears verbatim in stored JSON.
        if json_dumps(public_id)[1:-1] == public_id:
            query += " AND content LIKE ? ESCAPE '\\'"
            params += (f"%{_escape_like(public_id)}%",)
        query += " ORDER BY rowid"
        with self.db.connect() as conn:
            try:
                rows = conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to query widgets: {e}") from e
        for row in rows:
            if row["content"]:
                yield row["id"], row["content"]

    def resolve(self, public_id: str) -> WikiPage:
        """
        Return the first public page whose ``publicId`` equals ``public_id``.

        Raises:
            ValidationError: If ``public_id`` is empty
            NotFoundError: If no public page has this id
        """
        if not public_id:
            raise ValidationError("Missing public ID")
        for widget_id, raw in self._candidate_contents(public_id):
            try:
                pages = wiki_pages(json.loads(raw))
            except ValueError as e:
                logger.debug("Skipping wiki widget %s: %s", widget_id, e)
                continue
            for item in pages:
                if not isinstance(item, dict):
                    continue
                if item.get("isPublic") is True and item.get("publicId") == public_id:
                    try:
                        return WikiPage.from_dict(item)
                    except ValueError as e:
                        logger.debug("Skipping malformed page in wiki widget %s: %s", widget_id, e)
        raise NotFoundError("Page not found")


class SubscriptionStore:
    """Stores browser push subscriptions, unique by endpoint."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, owner_id: Optional[int], endpoint: str, p256dh: str, auth: str) -> PushSubscription:
        """Save a subscription. Re-subscribing an endpoint replaces its keys and owner."""
        if not endpoint or not p256dh or not auth:
            raise ValidationError("endpoint, p256dh and auth are required")
        with self.db.connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO push_subscriptions (endpoint, p256dh, auth, owner_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(endpoint) DO UPDATE SET
                        p256dh = excluded.p256dh,
                        auth = excluded.auth,
                        owner_id = excluded.owner_id
                    """,
                    (endpoint, p256dh, auth, owner_id, time_now()),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT id, endpoint, p256dh, auth, owner_id, created_at FROM push_subscriptions "
                    "WHERE endpoint = ?",
                    (endpoint,),
                ).fetchone()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error("Database error saving subscription: %s", e)
                raise StorageError(f"Failed to save subscription: {e}") from e
        return self._row_to_subscription(row)

    def list_by_owner(self, owner_id: int) -> List[PushSubscription]:
        return self._select("WHERE owner_id = ?", (owner_id,))

    def list_all(self) -> List[PushSubscription]:
        return self._select("", ())

    def _select(self, where: str, params) -> List[PushSubscription]:
        with self.db.connect() as conn:
            try:
                rows = conn.execute(
                    "SELECT id, endpoint, p256dh, auth, owner_id, created_at FROM push_subscriptions "
                    f"{where} ORDER BY id",
                    params,
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to list subscriptions: {e}") from e
        return [self._row_to_subscription(row) for row in rows]

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> PushSubscription:
        return PushSubscription(
            id=row["id"],
            endpoint=row["endpoint"],
            p256dh=row["p256dh"],
            auth=row["auth"],
            owner_id=row["owner_id"],
            created_at=row["created_at"],
        )
