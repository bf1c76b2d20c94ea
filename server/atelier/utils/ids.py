from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_id(value: Any) -> str:
    """Canonical string form of an id, lowercase hex for ObjectIds."""
    oid = parse_object_id(value)
    return str(oid) if oid is not None else str(value)


def pair_key(user_a: str, user_b: str) -> str:
    first, second = sorted([str(user_a), str(user_b)])
    return f"{first}:{second}"


def utc_now() -> datetime:
    # BSON dates keep milliseconds only
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def as_utc(ts: datetime) -> datetime:
    # pymongo hands back naive UTC datetimes unless the client is tz_aware
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def make_cursor(ts: datetime, oid: str) -> str:
    return f"{int(as_utc(ts).timestamp() * 1000)}:{oid}"


def parse_cursor(cursor: str) -> Optional[Tuple[datetime, ObjectId]]:
    # Cursor format: timestamp_ms:object_id_hex
    ts_str, _, oid_hex = cursor.partition(":")
    oid = parse_object_id(oid_hex)
    if oid is None or not ts_str.isdigit():
        return None
    return datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc), oid
