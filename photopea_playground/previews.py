import secrets
import threading
from dataclasses import dataclass
from typing import Dict


_DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class PreviewHandle:
    token: str
    mime_type: str
    size: int

    def url(self, base_url: str = "/") -> str:
        return f"{base_url.rstrip('/')}/photopea/previews/{self.token}"


class PreviewRegistry:
    """
    Process-local store of binary payloads that the browser can display or download.

    Handles stay alive until released; whoever owns the message that created a
    handle must release it when the message is discarded.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[str, tuple[PreviewHandle, bytes]] = {}

    def create(self, data: bytes, mime_type: str | None = None) -> PreviewHandle:
        payload = bytes(data)
        handle = PreviewHandle(
            token=secrets.token_urlsafe(16),
            mime_type=(mime_type or "").strip() or _DEFAULT_MIME_TYPE,
            size=len(payload),
        )
        with self._lock:
            self._items[handle.token] = (handle, payload)
        return handle

    def get(self, token: str) -> tuple[PreviewHandle, bytes] | None:
        with self._lock:
            return self._items.get(token)

    def release(self, token: str) -> bool:
        with self._lock:
            return self._items.pop(token, None) is not None

    def release_all(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._items
