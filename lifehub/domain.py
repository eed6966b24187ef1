from enum import Enum
from typing import Any, Dict, Optional


class WidgetType(str, Enum):
    """Kinds of dashboard widget. The type decides the shape of ``content``."""
    TODO = "TODO"
    NOTE = "NOTE"
    WELLNESS = "WELLNESS"
    AI_ASSISTANT = "AI_ASSISTANT"
    KANBAN = "KANBAN"
    REMINDER = "REMINDER"
    GYM = "GYM"
    LINKS = "LINKS"
    POMODORO = "POMODORO"
    DIET = "DIET"
    WIKI = "WIKI"


class Widget:
    """A single dashboard widget with an opaque JSON payload."""

    def __init__(self, id: str, type: WidgetType, title: str, cols: int = 1,
                 position: int = 0, is_active: bool = True, content: Any = None,
                 owner_id: Optional[int] = None, created_at: Optional[str] = None,
                 updated_at: Optional[str] = None):
        self.id = id
        self.type = WidgetType(type)
        self.title = title
        self.cols = cols
        self.position = position
        self.is_active = is_active
        self.content = content
        self.owner_id = owner_id
        self.created_at = created_at
        self.updated_at = updated_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert widget to the JSON shape the browser client uses."""
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "cols": self.cols,
            "position": self.position,
            "isActive": self.is_active,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"Widget(id={self.id!r}, type={self.type.value}, owner_id={self.owner_id})"


class WikiPage:
    """One page inside a WIKI widget's ``content``."""

    TEXT_FIELDS = ("id", "title", "content", "publicId", "author", "date")

    def __init__(self, id: str, title: str = "", content: str = "", is_public: bool = False,
                 public_id: Optional[str] = None, author: Optional[str] = None,
                 date: Optional[str] = None):
        self.id = id
        self.title = title
        self.content = content
        self.is_public = is_public
        self.public_id = public_id
        self.author = author
        self.date = date

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WikiPage":
        """
        Build a page from its stored JSON form.

        Raises ValueError on a non-object, or when a text field holds
        anything other than a string or null.
        """
        if not isinstance(data, dict):
            raise ValueError("wiki page must be a JSON object")
        for key in WikiPage.TEXT_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"wiki page field {key!r} must be a string")
        return cls(
            id=data.get("id") or "",
            title=data.get("title") or "",
            content=data.get("content") or "",
            is_public=data.get("isPublic") is True,
            public_id=data.get("publicId"),
            author=data.get("author"),
            date=data.get("date"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "isPublic": self.is_public,
        }
        # optional fields are omitted rather than sent as null
        for key, value in (("publicId", self.public_id), ("author", self.author), ("date", self.date)):
            if value:
                data[key] = value
        return data


class Account:
    """A registered user. The password hash never leaves the credential store."""

    def __init__(self, id: int, username: str, created_at: Optional[str] = None):
        self.id = id
        self.username = username
        self.created_at = created_at


class Identity:
    """The authenticated caller recovered from a session token."""

    def __init__(self, account_id: int, username: str):
        self.account_id = account_id
        self.username = username

    def __eq__(self, other):
        if not isinstance(other, Identity):
            return NotImplemented
        return (self.account_id, self.username) == (other.account_id, other.username)

    def __repr__(self):
        return f"Identity(account_id={self.account_id}, username={self.username!r})"


class PushSubscription:
    """A browser push endpoint with its encryption keys."""

    def __init__(self, endpoint: str, p256dh: str, auth: str, owner_id: Optional[int] = None,
                 id: Optional[int] = None, created_at: Optional[str] = None):
        self.id = id
        self.endpoint = endpoint
        self.p256dh = p256dh
        self.auth = auth
        self.owner_id = owner_id
        self.created_at = created_at

    def subscription_info(self) -> Dict[str, Any]:
        """Return the dict shape expected by the web-push transport."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


# -------------------------------
# Errors
# -------------------------------

class LifeHubError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500


class ValidationError(LifeHubError):
    """Malformed request body or missing required field."""
    status_code = 400


class AuthError(LifeHubError):
    """Missing, invalid or expired token, or bad credentials."""
    status_code = 401


class ConflictError(LifeHubError):
    """Duplicate username."""
    status_code = 409


class RegistrationClosedError(ConflictError):
    """An account already exists and registration is closed."""
    status_code = 403


class NotFoundError(LifeHubError):
    """Unknown widget, page or account. Also used for records owned by someone else."""
    status_code = 404


class StorageError(LifeHubError):
    """The database could not complete an operation."""
    status_code = 500
