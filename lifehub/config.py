"""
Runtime configuration and persisted key material.

Settings are read once from ``LIFEHUB_*`` environment variables and passed
explicitly into the application factory. The session signing secret and the
VAPID key pair live as files inside the data directory so that they survive
restarts; both are generated on first start.
"""

import json
import logging
import os
import secrets
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]

SECRET_FILENAME = "jwt_secret"
VAPID_FILENAME = "vapid_keys.json"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def resolve_path(path: str) -> Path:
    """
    Resolve a configured directory.

    Relative paths are anchored at the project root when running from a
    checkout (so ``data/`` is shared no matter which directory the server is
    started from), otherwise at the current working directory.
    """
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    if (PROJECT_ROOT / "pyproject.toml").exists():
        return PROJECT_ROOT / candidate
    return Path.cwd() / candidate


class Settings:
    """Application settings. Use ``Settings.from_env()`` in production code."""

    def __init__(self, data_dir: Path, db_path: Optional[Path] = None, single_user: bool = True,
                 token_ttl: timedelta = timedelta(hours=24), bcrypt_rounds: int = 12,
                 vapid_subject: str = "mailto:admin@lifehub.com", push_ttl: int = 30,
                 cookie_secure: bool = False, cors_origins: Optional[List[str]] = None,
                 static_dir: Optional[Path] = None, log_level: str = "INFO",
                 host: str = "0.0.0.0", port: int = 8080):
        self.data_dir = Path(data_dir)
        self.db_path = Path(db_path) if db_path else self.data_dir / "lifehub.db"
        self.single_user = single_user
        self.token_ttl = token_ttl
        self.bcrypt_rounds = bcrypt_rounds
        self.vapid_subject = vapid_subject
        self.push_ttl = push_ttl
        self.cookie_secure = cookie_secure
        self.cors_origins = list(cors_origins) if cors_origins is not None else list(DEFAULT_CORS_ORIGINS)
        self.static_dir = Path(static_dir) if static_dir else None
        self.log_level = log_level
        self.host = host
        self.port = port

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = resolve_path(os.environ.get("LIFEHUB_DATA_DIR", "data"))
        db_path = os.environ.get("LIFEHUB_DB_PATH")
        origins = os.environ.get("LIFEHUB_CORS_ORIGINS")
        return cls(
            data_dir=data_dir,
            db_path=Path(db_path) if db_path else None,
            single_user=_env_bool("LIFEHUB_SINGLE_USER", True),
            token_ttl=timedelta(hours=_env_int("LIFEHUB_TOKEN_TTL_HOURS", 24)),
            bcrypt_rounds=_env_int("LIFEHUB_BCRYPT_ROUNDS", 12),
            vapid_subject=os.environ.get("LIFEHUB_VAPID_SUBJECT", "mailto:admin@lifehub.com"),
            push_ttl=_env_int("LIFEHUB_PUSH_TTL", 30),
            cookie_secure=_env_bool("LIFEHUB_COOKIE_SECURE", False),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else None,
            static_dir=resolve_path(os.environ.get("LIFEHUB_STATIC_DIR", "dist")),
            log_level=os.environ.get("LIFEHUB_LOG_LEVEL", "INFO").upper(),
            host=os.environ.get("LIFEHUB_HOST", "0.0.0.0"),
            port=_env_int("LIFEHUB_PORT", 8080),
        )

    def ensure_data_dir(self):
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)


def _write_private(path: Path, data: bytes):
    """Write a file readable only by its owner."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)


class SessionSecret:
    """The HMAC key used to sign session tokens."""

    def __init__(self, value: bytes):
        if not value:
            raise ValueError("session secret must not be empty")
        self.value = value

    @classmethod
    def generate(cls) -> "SessionSecret":
        # 256-bit key, hex-encoded so the file stays printable
        return cls(secrets.token_hex(32).encode("ascii"))

    @classmethod
    def load_or_create(cls, data_dir: Path) -> "SessionSecret":
        """
        Load the secret from ``data_dir``, or generate and save a new one.

        Losing the file invalidates every issued token; users log in again.
        """
        path = Path(data_dir) / SECRET_FILENAME
        try:
            data = path.read_bytes().strip()
        except FileNotFoundError:
            data = b""
        if data:
            logger.info("Loaded session secret from %s", path)
            return cls(data)

        logger.info("Generating new session secret")
        secret = cls.generate()
        try:
            _write_private(path, secret.value)
        except OSError as e:
            logger.warning("Failed to save session secret to %s: %s", path, e)
        else:
            logger.info("New session secret saved to %s", path)
        return secret


class VapidKeys:
    """
    The VAPID key pair identifying this server to push services.

    Both keys are base64url strings without padding: the public key is the
    uncompressed P-256 point browsers expect as ``applicationServerKey``; the
    private key is the raw 32-byte scalar.
    """

    def __init__(self, public_key: str, private_key: str):
        self.public_key = public_key
        self.private_key = private_key

    @classmethod
    def generate(cls) -> "VapidKeys":
        from .push import generate_vapid_keys

        public_key, private_key = generate_vapid_keys()
        return cls(public_key, private_key)

    @classmethod
    def load_or_create(cls, data_dir: Path) -> "VapidKeys":
        path = Path(data_dir) / VAPID_FILENAME
        try:
            stored = json.loads(path.read_text(encoding="utf-8"))
            keys = cls(stored["publicKey"], stored["privateKey"])
        except FileNotFoundError:
            pass
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable VAPID key file %s: %s", path, e)
        else:
            logger.info("Loaded VAPID keys from %s", path)
            return keys

        logger.info("Generating new VAPID keys")
        keys = cls.generate()
        try:
            _write_private(path, json.dumps(keys.to_dict(), indent=2).encode("utf-8"))
        except OSError as e:
            logger.warning("Failed to save VAPID keys to %s: %s", path, e)
        else:
            logger.info("New VAPID keys saved to %s", path)
        return keys

    def to_dict(self):
        return {"publicKey": self.public_key, "privateKey": self.private_key}
