from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Literal, Tuple

from .classifier import BinaryBuffer, Blob

ProtocolVersion = Literal["1.0.0"]

PROTOCOL_VERSION: ProtocolVersion = "1.0.0"


class ProtocolParseError(ValueError):
    """Raised when an incoming client payload cannot be interpreted."""


def _coerce_string(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def _coerce_int(value: Any, default: int = -1) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def parse_client_message(raw: Any) -> Tuple[str, Dict[str, Any]]:
    """
    Parse and normalize incoming websocket payloads.

    Returns (msg_type, payload) with normalized string/int fields. Editor
    payload envelopes are passed through untouched; see `decode_editor_payload`.
    """
    if not isinstance(raw, dict):
        raise ProtocolParseError("Invalid message payload")

    msg_type = raw.get("type")
    if msg_type == "start_session":
        return ("start_session", {"sessionId": _coerce_string(raw.get("sessionId"))})

    if msg_type == "new_session":
        return ("new_session", {})

    if msg_type == "switch_session":
        return ("switch_session", {"sessionId": _coerce_string(raw.get("sessionId"))})

    if msg_type == "send":
        # Scripts keep inner whitespace; only the edges are trimmed.
        content = raw.get("content")
        return ("send", {"content": content.strip() if isinstance(content, str) else ""})

    if msg_type == "editor_message":
        if "payload" not in raw:
            raise ProtocolParseError("Missing editor payload")
        return (
            "editor_message",
            {"origin": _coerce_string(raw.get("origin")), "payload": raw.get("payload")},
        )

    if msg_type == "clear_messages":
        return ("clear_messages", {})

    if msg_type == "add_image_url":
        return ("add_image_url", {"url": _coerce_string(raw.get("url"))})

    if msg_type == "remove_image_url":
        return ("remove_image_url", {"index": _coerce_int(raw.get("index"))})

    if msg_type == "add_sample_image":
        return ("add_sample_image", {"index": _coerce_int(raw.get("index"))})

    if msg_type == "load_editor":
        return ("load_editor", {})

    if msg_type == "list_sessions":
        return ("list_sessions", {})

    if msg_type == "delete_session":
        return ("delete_session", {"sessionId": _coerce_string(raw.get("sessionId"))})

    if msg_type == "describe_message":
        return ("describe_message", {"messageId": _coerce_int(raw.get("messageId"))})

    raise ProtocolParseError("Unknown message type")


def decode_editor_payload(envelope: Any) -> Any:
    """
    Turn a payload relayed by the browser into the value the editor posted.

    The browser cannot put ArrayBuffers or Blobs into a JSON frame, so it wraps
    every editor payload as `{"kind": ..., ...}`:

    - `{"kind": "string", "value": "..."}`
    - `{"kind": "json", "value": <any JSON value>}`
    - `{"kind": "binary", "bufferType": "ArrayBuffer", "data": "<base64>"}`
    - `{"kind": "blob", "mimeType": "image/png", "data": "<base64>"}`
    """
    if not isinstance(envelope, dict):
        raise ProtocolParseError("Invalid editor payload")

    kind = envelope.get("kind")
    if kind == "string":
        value = envelope.get("value")
        if not isinstance(value, str):
            raise ProtocolParseError("String payload must carry a string value")
        return value

    if kind == "json":
        return envelope.get("value")

    if kind == "binary":
        buffer_type = _coerce_string(envelope.get("bufferType")) or "ArrayBuffer"
        return BinaryBuffer(kind=buffer_type, data=_decode_base64(envelope.get("data")))

    if kind == "blob":
        return Blob(data=_decode_base64(envelope.get("data")), mime_type=_coerce_string(envelope.get("mimeType")))

    raise ProtocolParseError("Unknown editor payload kind")


def _decode_base64(value: Any) -> bytes:
    if value is None or value == "":
        return b""
    if not isinstance(value, str):
        raise ProtocolParseError("Binary payload data must be base64 text")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolParseError("Invalid base64 data") from exc


def _build_base_message(msg_type: str) -> Dict[str, Any]:
    return {"type": msg_type, "protocolVersion": PROTOCOL_VERSION}


def build_status_payload(
    *,
    state: str,
    session_id: str | None = None,
    session_resolution: str | None = None,
    history: list[dict[str, Any]] | None = None,
    image_urls: list[str] | None = None,
    photopea_src: str | None = None,
    sessions: list[dict[str, Any]] | None = None,
    example_scripts: list[dict[str, str]] | None = None,
    sample_images: list[str] | None = None,
) -> Dict[str, Any]:
    payload = _build_base_message("status")
    payload["state"] = state

    if session_id:
        payload["sessionId"] = session_id
    if session_resolution is not None:
        payload["sessionResolution"] = session_resolution
    if history is not None:
        payload["history"] = history
    if image_urls is not None:
        payload["imageUrls"] = image_urls
    if photopea_src:
        payload["photopeaSrc"] = photopea_src
    if sessions is not None:
        payload["sessions"] = sessions
    if example_scripts is not None:
        payload["exampleScripts"] = example_scripts
    if sample_images is not None:
        payload["sampleImages"] = sample_images
    return payload


def build_message_payload(*, session_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
    return _build_base_message("message") | {"sessionId": session_id, "message": message}


def build_post_script_payload(*, session_id: str, message_id: int, script: str) -> Dict[str, Any]:
    return _build_base_message("post_script") | {
        "sessionId": session_id,
        "messageId": message_id,
        "script": script,
    }


def build_image_urls_payload(*, session_id: str, image_urls: List[str]) -> Dict[str, Any]:
    return _build_base_message("image_urls") | {"sessionId": session_id, "imageUrls": image_urls}


def build_editor_src_payload(*, session_id: str, photopea_src: str) -> Dict[str, Any]:
    return _build_base_message("editor_src") | {"sessionId": session_id, "photopeaSrc": photopea_src}


def build_cleared_payload(*, session_id: str, released_previews: int) -> Dict[str, Any]:
    return _build_base_message("cleared") | {
        "sessionId": session_id,
        "releasedPreviews": released_previews,
    }


def build_sessions_payload(sessions: list[dict[str, Any]]) -> Dict[str, Any]:
    return _build_base_message("sessions") | {"sessions": sessions}


def build_saved_payload(*, session_id: str, updated_at: str, message_count: int) -> Dict[str, Any]:
    return _build_base_message("saved") | {
        "sessionId": session_id,
        "updatedAt": updated_at,
        "messageCount": message_count,
    }


def build_session_deleted_payload(*, session_id: str, deleted: bool) -> Dict[str, Any]:
    return _build_base_message("session_deleted") | {"sessionId": session_id, "deleted": deleted}


def build_detail_payload(
    *,
    session_id: str,
    message: Dict[str, Any],
    formatted: Any,
    formatted_text: str,
) -> Dict[str, Any]:
    return _build_base_message("message_detail") | {
        "sessionId": session_id,
        "message": message,
        "formatted": formatted,
        "formattedText": formatted_text,
    }


def build_error_payload(
    *,
    message: str,
    session_id: str | None = None,
) -> Dict[str, Any]:
    payload = _build_base_message("error")
    if session_id:
        payload["sessionId"] = session_id
    payload["message"] = message
    return payload
