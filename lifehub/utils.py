import json
from datetime import datetime, UTC
from typing import Any


def time_now() -> str:
    """Return the current time in ISO format (UTC, microsecond precision)."""
    return datetime.now(UTC).isoformat()


def json_dumps(value: Any) -> str:
    """Serialize a JSON document the way it is stored in the database."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
