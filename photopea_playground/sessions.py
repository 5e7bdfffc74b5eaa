import json
import logging
import secrets
from pathlib import Path
from typing import Any, List

from .config import default_sessions_dir
from .records import (
    SessionRecord,
    SessionRecordError,
    SessionSummary,
    coerce_session_id,
    normalize_session_record,
    now_iso,
    parse_iso_datetime,
    summarize_session,
    updated_at_sort_key,
)


logger = logging.getLogger(__name__)

_SESSION_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
_SESSION_ID_LENGTH = 16


def generate_session_id(length: int = _SESSION_ID_LENGTH) -> str:
    return "".join(secrets.choice(_SESSION_ID_ALPHABET) for _ in range(length))


class SessionStore:
    """One pretty-printed JSON document per session, named `<id>.json`.

    Reads are best-effort: missing, unreadable or malformed documents count as
    absent. Writes overwrite the whole document and are not coordinated between
    writers, so the last completed save wins.
    """

    def __init__(self, base_dir: str | None = None):
        root = base_dir or default_sessions_dir()
        self._base = Path(root)

    @property
    def base_dir(self) -> Path:
        return self._base

    def list_sessions(self) -> List[SessionRecord]:
        sessions: List[SessionRecord] = []
        try:
            paths = sorted(self._base.glob("*.json"))
        except OSError:
            return []

        for path in paths:
            record = self._read_record(path)
            if record is None:
                continue
            sessions.append(record)

        sessions.sort(key=updated_at_sort_key, reverse=True)
        return sessions

    def list_summaries(self) -> List[SessionSummary]:
        return [summarize_session(record) for record in self.list_sessions()]

    def get_session(self, session_id: str) -> SessionRecord | None:
        normalized_session_id = coerce_session_id(session_id)
        if not normalized_session_id:
            return None
        return self._read_record(self._session_path(normalized_session_id))

    def put_session(self, session: Any) -> SessionRecord:
        record = normalize_session_record(session)
        path = self._session_path(record["id"])

        existing = self._read_record(path)
        created_at = (existing or {}).get("createdAt") or record["createdAt"]
        if parse_iso_datetime(created_at) is None:
            created_at = now_iso()

        updated_at = now_iso()
        created_when = parse_iso_datetime(created_at)
        if created_when is not None and created_when > parse_iso_datetime(updated_at):
            updated_at = created_at

        record["createdAt"] = created_at
        record["updatedAt"] = updated_at

        try:
            self._base.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(record, indent=2), encoding="utf-8")
        except OSError:
            logger.exception("Failed to save session %s to %s", record["id"], path)
            raise
        return record

    def delete_session(self, session_id: str) -> bool:
        normalized_session_id = coerce_session_id(session_id)
        if not normalized_session_id:
            return False

        path = self._session_path(normalized_session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.warning("Failed to delete session file %s", path, exc_info=True)
            return False
        return True

    def _session_path(self, session_id: str) -> Path:
        return self._base / f"{session_id}.json"

    def _read_record(self, path: Path) -> SessionRecord | None:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError):
            return None

        try:
            record = normalize_session_record(payload)
        except SessionRecordError:
            logger.debug("Ignoring malformed session file %s", path)
            return None

        if record["id"] != path.stem:
            return None
        return record
