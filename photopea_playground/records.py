from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, TypedDict

Direction = Literal["sent", "received"]

_DIRECTIONS = {"sent", "received"}
_SAFE_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class SessionRecordError(ValueError):
    """Raised when a session document does not have the persisted shape."""


class MessageLogEntry(TypedDict):
    id: int
    direction: Direction
    content: str
    rawString: str
    dataType: str


class SessionMetadata(TypedDict, total=False):
    imageUrls: List[str]
    photopeaSrc: str


class _SessionRecordBase(TypedDict):
    id: str
    createdAt: str
    updatedAt: str
    messages: List[MessageLogEntry]


class SessionRecord(_SessionRecordBase, total=False):
    metadata: SessionMetadata


class SessionSummary(TypedDict):
    id: str
    createdAt: str
    updatedAt: str
    messageCount: int


def is_safe_session_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_SAFE_SESSION_ID_RE.fullmatch(value))


def coerce_session_id(value: Any) -> str:
    """Return the trimmed id when it is usable as a file name, otherwise ""."""
    if not isinstance(value, str):
        return ""
    normalized = value.strip()
    if not is_safe_session_id(normalized):
        return ""
    return normalized


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso_datetime(raw_value: Any) -> datetime | None:
    if not isinstance(raw_value, str) or not raw_value:
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_message_entry(raw: Any) -> MessageLogEntry:
    if not isinstance(raw, dict):
        raise SessionRecordError("Message entry must be an object")

    entry_id = raw.get("id")
    if isinstance(entry_id, bool) or not isinstance(entry_id, int):
        raise SessionRecordError("Message id must be an integer")

    # Older documents stored the direction under "type".
    direction = raw.get("direction", raw.get("type"))
    if direction not in _DIRECTIONS:
        raise SessionRecordError(f"Invalid message direction: {direction!r}")

    content = raw.get("content", "")
    raw_string = raw.get("rawString", content)
    data_type = raw.get("dataType", "")
    if not isinstance(content, str) or not isinstance(raw_string, str) or not isinstance(data_type, str):
        raise SessionRecordError("Message content, rawString and dataType must be strings")

    return {
        "id": entry_id,
        "direction": direction,
        "content": content,
        "rawString": raw_string,
        "dataType": data_type,
    }


def normalize_metadata(raw: Any) -> SessionMetadata:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SessionRecordError("Session metadata must be an object")

    metadata: SessionMetadata = {}
    image_urls = raw.get("imageUrls")
    if image_urls is not None:
        if not isinstance(image_urls, list) or not all(isinstance(url, str) for url in image_urls):
            raise SessionRecordError("metadata.imageUrls must be a list of strings")
        metadata["imageUrls"] = list(image_urls)

    photopea_src = raw.get("photopeaSrc")
    if photopea_src is not None:
        if not isinstance(photopea_src, str):
            raise SessionRecordError("metadata.photopeaSrc must be a string")
        metadata["photopeaSrc"] = photopea_src
    return metadata


def normalize_session_record(raw: Any) -> SessionRecord:
    """
    Validate a session document and return a copy with only the persisted fields.

    Message ids must increase strictly in log order. Missing timestamps are left
    empty for the store to stamp.
    """
    if not isinstance(raw, dict):
        raise SessionRecordError("Session must be an object")

    session_id = coerce_session_id(raw.get("id"))
    if not session_id:
        raise SessionRecordError("Session id must be a non-empty string of [A-Za-z0-9_-]")

    raw_messages = raw.get("messages", [])
    if not isinstance(raw_messages, list):
        raise SessionRecordError("Session messages must be a list")

    messages: List[MessageLogEntry] = []
    previous_id: int | None = None
    for item in raw_messages:
        entry = normalize_message_entry(item)
        if previous_id is not None and entry["id"] <= previous_id:
            raise SessionRecordError("Message ids must be strictly increasing")
        previous_id = entry["id"]
        messages.append(entry)

    created_at = raw.get("createdAt") or ""
    updated_at = raw.get("updatedAt") or ""
    if not isinstance(created_at, str) or not isinstance(updated_at, str):
        raise SessionRecordError("Session timestamps must be strings")

    record: SessionRecord = {
        "id": session_id,
        "createdAt": created_at,
        "updatedAt": updated_at,
        "messages": messages,
    }
    if "metadata" in raw and raw["metadata"] is not None:
        record["metadata"] = normalize_metadata(raw["metadata"])
    return record


def summarize_session(record: SessionRecord) -> SessionSummary:
    return {
        "id": record["id"],
        "createdAt": record.get("createdAt", ""),
        "updatedAt": record.get("updatedAt", ""),
        "messageCount": len(record.get("messages", [])),
    }


def updated_at_sort_key(record: Dict[str, Any]) -> datetime:
    parsed = parse_iso_datetime(record.get("updatedAt"))
    if parsed is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    return parsed
