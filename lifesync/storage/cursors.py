from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Tuple


def encode_time_id_cursor(logged_at: datetime, identifier: str) -> str:
    """Encode an opaque keyset cursor from a timestamp and identifier."""

    ts = logged_at if logged_at.tzinfo else logged_at.replace(tzinfo=timezone.utc)
    payload = json.dumps({"loggedAt": ts.isoformat(), "id": identifier})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_time_id_cursor(cursor: str) -> Tuple[datetime, str]:
    """Decode a cursor produced by :func:`encode_time_id_cursor`.

    Raises ``ValueError`` for anything that is not a well-formed cursor.
    """

    try:
        raw = base64.b64decode(cursor.encode("ascii"), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, json.JSONDecodeError) as exc:
        raise ValueError("invalid time/id cursor") from exc
    if not isinstance(data, dict):
        raise ValueError("invalid time/id cursor")
    logged_at = data.get("loggedAt")
    identifier = data.get("id")
    if not isinstance(logged_at, str) or not isinstance(identifier, str) or not identifier:
        raise ValueError("invalid time/id cursor")
    ts = datetime.fromisoformat(logged_at)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts, identifier
