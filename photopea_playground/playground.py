import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List
from urllib.parse import quote, urlparse

from .classifier import Classification, classify_payload
from .config import DEFAULT_EDITOR_ORIGIN, DEFAULT_EDITOR_URL
from .previews import PreviewHandle, PreviewRegistry
from .records import (
    Direction,
    MessageLogEntry,
    SessionRecord,
    normalize_session_record,
    now_iso,
)
from .sessions import generate_session_id


SCRIPT_DATA_TYPE = "script"

SAMPLE_IMAGES = (
    "https://www.photopea.com/api/img2/pug.png",
    "https://www.photopea.com/api/img2/lena.png",
)

EXAMPLE_SCRIPTS = (
    {"label": "Get doc name", "script": "app.activeDocument.name"},
    {"label": "List layers", "script": "app.activeDocument.layers.length"},
    {"label": "Move layer", "script": "app.activeDocument.activeLayer.translate(10, 10)"},
    {"label": "New doc", "script": 'app.documents.add(800, 600, 72, "Untitled")'},
    {"label": "Export PNG", "script": 'app.activeDocument.saveToOE("png")'},
)


@dataclass
class LoggedMessage:
    id: int
    direction: Direction
    content: str
    raw_string: str
    data_type: str
    raw_data: Any = None
    preview: PreviewHandle | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_entry(self) -> MessageLogEntry:
        return {
            "id": self.id,
            "direction": self.direction,
            "content": self.content,
            "rawString": self.raw_string,
            "dataType": self.data_type,
        }


def is_editor_origin(origin: Any, editor_origin: str = DEFAULT_EDITOR_ORIGIN) -> bool:
    """True when `origin` is served from the editor host or one of its subdomains."""
    if not isinstance(origin, str) or not origin.strip():
        return False
    host = (urlparse(origin.strip()).hostname or "").lower()
    expected = (editor_origin or "").strip().lower()
    if not host or not expected:
        return False
    return host == expected or host.endswith(f".{expected}")


def build_editor_src(editor_url: str, image_urls: List[str]) -> str:
    """Editor URL with the images to open encoded as JSON in the fragment."""
    if not image_urls:
        return editor_url
    config = {"files": list(image_urls)}
    encoded = quote(json.dumps(config, separators=(",", ":")), safe="")
    return f"{editor_url}#{encoded}"


class PlaygroundState:
    """
    State of one playground: the current session id, its message log and the
    editor configuration.

    Messages hold transient fields (raw payload, preview handle, live timestamp)
    that never reach the store; `to_record()` drops them.
    """

    def __init__(
        self,
        session_id: str | None = None,
        previews: PreviewRegistry | None = None,
        editor_url: str = DEFAULT_EDITOR_URL,
        editor_origin: str = DEFAULT_EDITOR_ORIGIN,
    ):
        self._previews = previews if previews is not None else PreviewRegistry()
        self._editor_url = editor_url
        self._editor_origin = editor_origin
        self.session_id = session_id or generate_session_id()
        self.created_at = ""
        self.messages: List[LoggedMessage] = []
        self.image_urls: List[str] = []
        self.photopea_src = editor_url
        self._last_message_id = 0

    @property
    def previews(self) -> PreviewRegistry:
        return self._previews

    @property
    def last_message_id(self) -> int:
        return self._last_message_id

    def record_sent(self, script: str) -> LoggedMessage | None:
        text = (script or "").strip()
        if not text:
            return None
        return self._append(
            "sent",
            Classification(content=text, data_type=SCRIPT_DATA_TYPE, raw_string=text),
            raw_data=text,
        )

    def record_received(self, data: Any, origin: str) -> LoggedMessage | None:
        if not is_editor_origin(origin, self._editor_origin):
            return None
        result = classify_payload(data, self._previews)
        return self._append("received", result, raw_data=data)

    def find_message(self, message_id: int) -> LoggedMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def clear_messages(self) -> int:
        released = self.release_previews()
        self.messages = []
        return released

    def add_image_url(self, url: str) -> bool:
        normalized = (url or "").strip()
        if not normalized:
            return False
        self.image_urls.append(normalized)
        return True

    def add_sample_image(self, index: int) -> bool:
        if index < 0 or index >= len(SAMPLE_IMAGES):
            return False
        self.image_urls.append(SAMPLE_IMAGES[index])
        return True

    def remove_image_url(self, index: int) -> bool:
        if index < 0 or index >= len(self.image_urls):
            return False
        del self.image_urls[index]
        return True

    def build_editor_src(self) -> str:
        self.photopea_src = build_editor_src(self._editor_url, self.image_urls)
        return self.photopea_src

    def to_record(self) -> SessionRecord:
        if not self.created_at:
            self.created_at = now_iso()
        return {
            "id": self.session_id,
            "createdAt": self.created_at,
            "updatedAt": now_iso(),
            "messages": [message.to_entry() for message in self.messages],
            "metadata": {
                "imageUrls": list(self.image_urls),
                "photopeaSrc": self.photopea_src,
            },
        }

    def load_record(self, raw: Any) -> None:
        record = normalize_session_record(raw)
        self.release_previews()
        self.session_id = record["id"]
        self.created_at = record["createdAt"]
        self.messages = [
            LoggedMessage(
                id=entry["id"],
                direction=entry["direction"],
                content=entry["content"],
                raw_string=entry["rawString"],
                data_type=entry["dataType"],
                raw_data=entry["rawString"],
            )
            for entry in record["messages"]
        ]
        metadata = record.get("metadata") or {}
        self.image_urls = list(metadata.get("imageUrls") or [])
        self.photopea_src = metadata.get("photopeaSrc") or self._editor_url
        self._last_message_id = max((entry["id"] for entry in record["messages"]), default=0)

    def reset(self, session_id: str | None = None) -> None:
        self.release_previews()
        self.session_id = session_id or generate_session_id()
        self.created_at = ""
        self.messages = []
        self.image_urls = []
        self.photopea_src = self._editor_url
        self._last_message_id = 0

    def history(self, base_url: str = "/") -> List[Dict[str, Any]]:
        return [self.describe(message, base_url) for message in self.messages]

    def describe(self, message: LoggedMessage, base_url: str = "/") -> Dict[str, Any]:
        entry: Dict[str, Any] = dict(message.to_entry())
        entry["timestamp"] = message.timestamp.isoformat()
        if message.preview is not None:
            preview_url = message.preview.url(base_url)
            entry["previewUrl"] = preview_url
            entry["downloadUrl"] = f"{preview_url}?download={message.id}"
            entry["previewMimeType"] = message.preview.mime_type
        return entry

    def _append(self, direction: Direction, result: Classification, raw_data: Any) -> LoggedMessage:
        self._last_message_id += 1
        message = LoggedMessage(
            id=self._last_message_id,
            direction=direction,
            content=result.content,
            raw_string=result.raw_string,
            data_type=result.data_type,
            raw_data=raw_data,
            preview=result.preview,
        )
        self.messages.append(message)
        return message

    def release_previews(self) -> int:
        released = 0
        for message in self.messages:
            if message.preview is not None and self._previews.release(message.preview.token):
                released += 1
            message.preview = None
        return released
