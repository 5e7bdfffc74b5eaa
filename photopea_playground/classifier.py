"""
Turn payloads received from the editor into log-friendly previews.

Payloads belong to a closed set of kinds (done sentinel, text, binary buffer,
blob, structured value, number/boolean, anything else); each kind has one
classification function and the first matching kind wins.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

from .previews import PreviewHandle, PreviewRegistry

DONE_SENTINEL = "done"
DONE_CONTENT = "✓ done"

_CONTENT_HEX_BYTES = 20
_RAW_HEX_BYTES = 50
_DETAIL_HEX_BYTES = 100


@dataclass(frozen=True)
class BinaryBuffer:
    """Fixed-size binary data relayed from the browser with its buffer kind (e.g. "ArrayBuffer")."""

    kind: str
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Blob:
    data: bytes
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Classification:
    content: str
    data_type: str
    raw_string: str
    preview: PreviewHandle | None = None


_NATIVE_BUFFER_TYPES = (bytes, bytearray, memoryview)


def hex_preview(data: bytes, limit: int) -> Tuple[str, bool]:
    """Space separated hex of the first `limit` bytes and whether bytes were cut."""
    head = bytes(data[:limit])
    return " ".join(f"{byte:02x}" for byte in head), len(data) > limit


def _buffer_kind_and_bytes(data: Any) -> Tuple[str, bytes]:
    if isinstance(data, BinaryBuffer):
        return data.kind, bytes(data.data)
    if isinstance(data, memoryview):
        return type(data).__name__, data.tobytes()
    return type(data).__name__, bytes(data)


def _is_done(data: Any) -> bool:
    return isinstance(data, str) and data == DONE_SENTINEL


def _is_text(data: Any) -> bool:
    return isinstance(data, str)


def _is_buffer(data: Any) -> bool:
    return isinstance(data, (BinaryBuffer, *_NATIVE_BUFFER_TYPES))


def _is_blob(data: Any) -> bool:
    return isinstance(data, Blob)


def _is_primitive(data: Any) -> bool:
    return isinstance(data, (bool, int, float))


def _is_structured(data: Any) -> bool:
    return data is not None and not _is_primitive(data)


def _classify_done(data: Any, previews: PreviewRegistry | None) -> Classification:
    return Classification(content=DONE_CONTENT, data_type="done", raw_string=DONE_SENTINEL)


def _classify_text(data: str, previews: PreviewRegistry | None) -> Classification:
    return Classification(content=data, data_type="string", raw_string=data)


def _classify_buffer(data: Any, previews: PreviewRegistry | None) -> Classification:
    kind, payload = _buffer_kind_and_bytes(data)
    size = len(payload)

    preview_text, truncated = hex_preview(payload, _CONTENT_HEX_BYTES)
    content = f"{kind} ({size} bytes)\nHex: {preview_text}{'...' if truncated else ''}"

    raw_text, raw_truncated = hex_preview(payload, _RAW_HEX_BYTES)
    raw_string = f"[{kind}({size})] {raw_text}{'...' if raw_truncated else ''}"

    handle = previews.create(payload) if previews is not None else None
    return Classification(content=content, data_type=kind, raw_string=raw_string, preview=handle)


def _classify_blob(data: Blob, previews: PreviewRegistry | None) -> Classification:
    mime_label = data.mime_type or "unknown"
    handle = previews.create(data.data, data.mime_type) if previews is not None else None
    return Classification(
        content=f"Blob ({data.size} bytes, type: {mime_label})",
        data_type="Blob",
        raw_string=f"[Blob({data.size}, {mime_label})]",
        preview=handle,
    )


def _classify_structured(data: Any, previews: PreviewRegistry | None) -> Classification:
    try:
        rendered = json.dumps(data, indent=2, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError, RecursionError):
        fallback = _coerce_text(data)
        return Classification(content=fallback, data_type="unknown", raw_string=fallback)
    return Classification(content=rendered, data_type="object", raw_string=rendered)


def _classify_primitive(data: Any, previews: PreviewRegistry | None) -> Classification:
    if isinstance(data, bool):
        text = "true" if data else "false"
        return Classification(content=text, data_type="boolean", raw_string=text)
    text = format_number(data)
    return Classification(content=text, data_type="number", raw_string=text)


def _classify_other(data: Any, previews: PreviewRegistry | None) -> Classification:
    if data is None:
        # JSON null, named the way the editor's runtime names it.
        return Classification(content="null", data_type="object", raw_string="null")
    text = _coerce_text(data)
    return Classification(content=text, data_type=type(data).__name__, raw_string=text)


_CLASSIFIERS: List[Tuple[Callable[[Any], bool], Callable[[Any, PreviewRegistry | None], Classification]]] = [
    (_is_done, _classify_done),
    (_is_text, _classify_text),
    (_is_buffer, _classify_buffer),
    (_is_blob, _classify_blob),
    (_is_structured, _classify_structured),
    (_is_primitive, _classify_primitive),
]


def classify_payload(data: Any, previews: PreviewRegistry | None = None) -> Classification:
    """
    Classify one editor payload.

    Binary buffers and blobs register a preview in `previews` (when given); the
    caller owns the returned handle and must release it with the log entry.
    Never raises for unexpected values: they fall back to the generic kinds.
    """
    for matches, classify in _CLASSIFIERS:
        if matches(data):
            return classify(data, previews)
    return _classify_other(data, previews)


def format_number(value: int | float) -> str:
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    return str(value)


def format_raw_data(data: Any) -> Any:
    """Detail view of a payload: binary kinds become a small descriptive dict."""
    if _is_buffer(data):
        kind, payload = _buffer_kind_and_bytes(data)
        preview_text, _ = hex_preview(payload, _DETAIL_HEX_BYTES)
        return {"type": kind, "length": len(payload), "hexPreview": preview_text}
    if _is_blob(data):
        return {"type": "Blob", "size": data.size, "mimeType": data.mime_type}
    return data


def format_raw_text(data: Any) -> str:
    """Copyable text for the detail view: strings as-is, everything else as pretty JSON."""
    if isinstance(data, str):
        return data
    formatted = format_raw_data(data)
    try:
        return json.dumps(formatted, indent=2, ensure_ascii=False)
    except (TypeError, ValueError, RecursionError):
        return _coerce_text(formatted)


def _coerce_text(data: Any) -> str:
    try:
        return str(data)
    except Exception:
        return f"<{type(data).__name__}>"
