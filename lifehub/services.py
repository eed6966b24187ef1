import logging
import sqlite3
from datetime import datetime, timedelta, UTC
from typing import List, Optional, Tuple

import bcrypt
import jwt

from .config import SessionSecret, VapidKeys
from .database import Database
from .domain import (
    Account, AuthError, ConflictError, Identity, NotFoundError, RegistrationClosedError,
    StorageError, ValidationError, Widget, WikiPage,
)
from .push import DeliveryReport, NotificationRelay
from .storage import PublicPageResolver, SubscriptionStore, WidgetStore
from .utils import time_now

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72
TOKEN_ALGORITHM = "HS256"
DEFAULT_TEST_MESSAGE = "Hello from LifeHub! This is a test notification."


class AccountStore:
    """
    Stores accounts and checks credentials.

    Passwords are hashed with bcrypt; the raw password is never stored or
    returned. Failed logins cost the same whether the username exists or not.
    """

    def __init__(self, db: Database, rounds: int = 12):
        self.db = db
        self.rounds = rounds
        # compared against when the username is unknown
        self._dummy_hash = bcrypt.hashpw(b"lifehub-dummy-password", bcrypt.gensalt(rounds))

    def has_any_account(self) -> bool:
        with self.db.connect() as conn:
            try:
                row = conn.execute("SELECT EXISTS (SELECT 1 FROM accounts)").fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to count accounts: {e}") from e
        return bool(row[0])

    def create_account(self, username: str, raw_password: str, only_if_empty: bool = False) -> Account:
        """
        Create an account with a bcrypt-hashed password.

        Args:
            username (str): Unique login name
            raw_password (str): Plain text password (hashed before storage)
            only_if_empty (bool): Refuse atomically when any account exists

        Returns:
            Account: The new account

        Raises:
            ValidationError: If username or password is empty, or the password is too long
            ConflictError: If the username is taken
            RegistrationClosedError: If ``only_if_empty`` and an account exists
        """
        username = (username or "").strip()
        if not username or not raw_password:
            raise ValidationError("Username and password required")
        password_bytes = raw_password.encode("utf-8")
        if len(password_bytes) > BCRYPT_MAX_BYTES:
            raise ValidationError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")

        password_hash = bcrypt.hashpw(password_bytes, bcrypt.gensalt(self.rounds)).decode("ascii")
        created_at = time_now()
        query = "INSERT INTO accounts (username, password_hash, created_at) SELECT ?, ?, ?"
        if only_if_empty:
            query += " WHERE NOT EXISTS (SELECT 1 FROM accounts)"

        with self.db.connect() as conn:
            try:
                cursor = conn.execute(query, (username, password_hash, created_at))
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError("Username already exists") from e
            except sqlite3.Error as e:
                conn.rollback()
                logger.error("Database error creating account: %s", e)
                raise StorageError(f"Failed to create account: {e}") from e
        if cursor.rowcount == 0:
            raise RegistrationClosedError("Registration is closed")
        logger.info("Account created: %s", username)
        return Account(cursor.lastrowid, username, created_at)

    def get(self, account_id: int) -> Optional[Account]:
        with self.db.connect() as conn:
            try:
                row = conn.execute(
                    "SELECT id, username, created_at FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to fetch account: {e}") from e
        return Account(row["id"], row["username"], row["created_at"]) if row else None

    def authenticate(self, username: str, raw_password: str) -> Optional[Account]:
        """Return the account if the credentials match, None otherwise."""
        with self.db.connect() as conn:
            try:
                row = conn.execute(
                    "SELECT id, username, password_hash, created_at FROM accounts WHERE username = ?",
                    ((username or "").strip(),),
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to fetch account: {e}") from e

        candidate = (raw_password or "").encode("utf-8")
        too_long = len(candidate) > BCRYPT_MAX_BYTES
        stored = row["password_hash"].encode("ascii") if row else self._dummy_hash
        # always run one bcrypt comparison so both failure paths take the same time
        matches = bcrypt.checkpw(candidate[:BCRYPT_MAX_BYTES], stored)
        if row is None or too_long or not matches:
            return None
        return Account(row["id"], row["username"], row["created_at"])

    def validate(self, username: str, raw_password: str) -> bool:
        return self.authenticate(username, raw_password) is not None


class SessionIssuer:
    """Issues and verifies signed, expiring session tokens (HS256 JWT)."""

    def __init__(self, secret: SessionSecret, ttl: timedelta = timedelta(hours=24)):
        self.secret = secret
        self.ttl = ttl

    def issue(self, account_id: int, username: str, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(UTC)
        claims = {
            "user_id": account_id,
            "username": username,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(claims, self.secret.value, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str) -> Identity:
        """
        Recover the identity embedded in ``token``.

        Raises:
            AuthError: If the token is missing, malformed, tampered with or expired
        """
        if not token:
            raise AuthError("Authorization token is required")
        if token.startswith("Bearer "):
            token = token[7:]
        try:
            claims = jwt.decode(
                token,
                self.secret.value,
                algorithms=[TOKEN_ALGORITHM],
                options={"require": ["exp", "user_id", "username"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthError("Session expired") from e
        except jwt.PyJWTError as e:
            raise AuthError("Invalid session token") from e

        account_id = claims["user_id"]
        username = claims["username"]
        if isinstance(account_id, bool) or not isinstance(account_id, int) or not isinstance(username, str):
            raise AuthError("Invalid session token")
        return Identity(account_id, username)


class LifeHub:
    """
    Main app logic: ties authentication to the widget, page and push stores.

    Every widget and subscription operation is scoped to the caller's
    account id.
    """

    def __init__(self, accounts: AccountStore, sessions: SessionIssuer, widgets: WidgetStore,
                 pages: PublicPageResolver, subscriptions: SubscriptionStore,
                 relay: NotificationRelay, vapid: VapidKeys, single_user: bool = True):
        self.accounts = accounts
        self.sessions = sessions
        self.widgets = widgets
        self.pages = pages
        self.subscriptions = subscriptions
        self.relay = relay
        self.vapid = vapid
        self.single_user = single_user

    # -- auth --

    def auth_status(self) -> bool:
        return self.accounts.has_any_account()

    def register(self, username: str, password: str) -> Account:
        """Create an account. In single-user mode only the first registration succeeds."""
        try:
            return self.accounts.create_account(username, password, only_if_empty=self.single_user)
        except RegistrationClosedError:
            logger.warning("Rejected registration attempt for %r: registration is closed", username)
            raise

    def login(self, username: str, password: str) -> Tuple[Account, str]:
        account = self.accounts.authenticate(username, password)
        if account is None:
            raise AuthError("Invalid credentials")
        return account, self.sessions.issue(account.id, account.username)

    def authenticate(self, token: str) -> Identity:
        """Verify a token and check that its account still exists."""
        identity = self.sessions.verify(token)
        if self.accounts.get(identity.account_id) is None:
            raise AuthError("Invalid session token")
        return identity

    # -- widgets --

    def list_widgets(self, identity: Identity) -> List[Widget]:
        return self.widgets.list_active(identity.account_id)

    def get_widget(self, identity: Identity, widget_id: str) -> Widget:
        widget = self.widgets.get_by_id(identity.account_id, widget_id)
        if widget is None:
            raise NotFoundError("Widget not found")
        return widget

    def save_widget(self, identity: Identity, widget: Widget) -> Widget:
        return self.widgets.upsert(identity.account_id, widget)

    def delete_widget(self, identity: Identity, widget_id: str):
        if not widget_id:
            raise ValidationError("Widget ID required")
        self.widgets.soft_delete(identity.account_id, widget_id)

    def public_page(self, public_id: str) -> WikiPage:
        return self.pages.resolve(public_id)

    # -- push --

    def subscribe(self, identity: Identity, endpoint: str, p256dh: str, auth: str):
        return self.subscriptions.save(identity.account_id, endpoint, p256dh, auth)

    def send_test_notification(self, identity: Identity, message: Optional[str] = None) -> DeliveryReport:
        """Send a test notification to the caller's own subscriptions."""
        subscriptions = self.subscriptions.list_by_owner(identity.account_id)
        report = self.relay.broadcast(subscriptions, message or DEFAULT_TEST_MESSAGE)
        logger.info("Test notification for account %s: %d sent, %d failed",
                    identity.account_id, report.sent, report.failed)
        return report
