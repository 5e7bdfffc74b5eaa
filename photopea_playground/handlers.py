import asyncio
import json
import logging
from typing import Any, Dict

from jupyter_server.base.handlers import APIHandler, JupyterHandler
from tornado import web
from tornado.websocket import WebSocketClosedError, WebSocketHandler

from .autosave import DebouncedSaver
from .classifier import format_raw_data, format_raw_text
from .config import PlaygroundConfig, load_config
from .playground import EXAMPLE_SCRIPTS, SAMPLE_IMAGES, PlaygroundState, is_editor_origin
from .previews import PreviewRegistry
from .protocol import (
    ProtocolParseError,
    build_cleared_payload,
    build_detail_payload,
    build_editor_src_payload,
    build_error_payload,
    build_image_urls_payload,
    build_message_payload,
    build_post_script_payload,
    build_saved_payload,
    build_session_deleted_payload,
    build_sessions_payload,
    build_status_payload,
    decode_editor_payload,
    parse_client_message,
)
from .records import SessionRecordError, coerce_session_id
from .sessions import SessionStore


logger = logging.getLogger(__name__)

_SESSION_NOT_FOUND = "Session not found"


class SessionsHandler(APIHandler):
    """GET lists session summaries (newest first); POST saves a full session record."""

    def initialize(self, store: SessionStore):
        self._store = store

    @web.authenticated
    def get(self):
        self.finish(json.dumps(self._store.list_summaries()))

    @web.authenticated
    def post(self):
        session = self.get_json_body()
        try:
            self._store.put_session(session)
        except SessionRecordError as exc:
            self.set_status(400)
            self.finish(json.dumps({"error": str(exc)}))
            return
        except OSError as exc:
            logger.error("Failed to save session: %s", exc)
            self.set_status(500)
            self.finish(json.dumps({"error": "Failed to save session"}))
            return
        self.finish(json.dumps({"success": True}))


class SessionHandler(APIHandler):
    def initialize(self, store: SessionStore):
        self._store = store

    @web.authenticated
    def get(self, session_id: str):
        session = self._store.get_session(session_id)
        if session is None:
            self.set_status(404)
            self.finish(json.dumps({"error": _SESSION_NOT_FOUND}))
            return
        self.finish(json.dumps(session))

    @web.authenticated
    def delete(self, session_id: str):
        if not self._store.delete_session(session_id):
            self.set_status(404)
            self.finish(json.dumps({"error": _SESSION_NOT_FOUND}))
            return
        self.finish(json.dumps({"success": True}))


class PreviewHandler(JupyterHandler):
    """Serves binary payloads kept in the preview registry, inline or as a download."""

    def initialize(self, previews: PreviewRegistry):
        self._previews = previews

    @web.authenticated
    def get(self, token: str):
        item = self._previews.get(token)
        if item is None:
            raise web.HTTPError(404, "Preview not found")

        handle, data = item
        self.set_header("Content-Type", handle.mime_type)
        self.set_header("Cache-Control", "no-store")
        download = self.get_argument("download", None)
        if download is not None:
            message_id = download.strip() if download.strip().isdigit() else "file"
            self.set_header(
                "Content-Disposition", f'attachment; filename="photopea-export-{message_id}.png"'
            )
        self.finish(data)


class PlaygroundWSHandler(WebSocketHandler):
    def initialize(
        self,
        store: SessionStore,
        previews: PreviewRegistry,
        config: PlaygroundConfig | None = None,
    ):
        self._config = config or load_config()
        self._store = store
        self._state = PlaygroundState(
            previews=previews,
            editor_url=self._config.editor_url,
            editor_origin=self._config.editor_origin,
        )
        self._saver = DebouncedSaver(
            self._snapshot_session,
            self._store.put_session,
            self._config.save_delay_seconds,
            on_saved=self._on_session_saved,
            on_error=self._on_session_save_failed,
        )

    def open(self):
        self._safe_write_message(
            json.dumps(
                build_status_payload(
                    state="ready",
                    example_scripts=list(EXAMPLE_SCRIPTS),
                    sample_images=list(SAMPLE_IMAGES),
                )
            )
        )

    def on_close(self):
        asyncio.ensure_future(self._close_session())

    async def on_message(self, message: str | bytes):
        if isinstance(message, bytes):
            self._safe_write_message(
                json.dumps(build_error_payload(message="Binary frames are not supported"))
            )
            return

        try:
            payload = json.loads(message)
        except json.JSONDecodeError:
            self._safe_write_message(json.dumps(build_error_payload(message="Invalid JSON")))
            return

        try:
            msg_type, normalized_payload = parse_client_message(payload)
        except ProtocolParseError as exc:
            self._safe_write_message(json.dumps(build_error_payload(message=str(exc))))
            return

        if msg_type == "start_session":
            await self._handle_start_session(normalized_payload)
            return

        if msg_type == "new_session":
            await self._handle_new_session()
            return

        if msg_type == "switch_session":
            await self._handle_switch_session(normalized_payload)
            return

        if msg_type == "send":
            self._handle_send(normalized_payload)
            return

        if msg_type == "editor_message":
            self._handle_editor_message(normalized_payload)
            return

        if msg_type == "clear_messages":
            self._handle_clear_messages()
            return

        if msg_type in {"add_image_url", "remove_image_url", "add_sample_image"}:
            self._handle_image_urls(msg_type, normalized_payload)
            return

        if msg_type == "load_editor":
            self._handle_load_editor()
            return

        if msg_type == "list_sessions":
            self._send_sessions()
            return

        if msg_type == "delete_session":
            self._handle_delete_session(normalized_payload)
            return

        if msg_type == "describe_message":
            self._handle_describe_message(normalized_payload)
            return

        self._safe_write_message(json.dumps(build_error_payload(message="Unknown message type")))

    async def _handle_start_session(self, payload: Dict[str, Any]) -> None:
        await self._saver.flush()
        requested_session_id = coerce_session_id(payload.get("sessionId"))

        stored = self._store.get_session(requested_session_id) if requested_session_id else None
        if stored is not None:
            self._state.load_record(stored)
            session_resolution = "stored"
        elif requested_session_id:
            # Known to the client but never saved (nothing was logged yet).
            self._state.reset(requested_session_id)
            session_resolution = "client"
        else:
            self._state.reset()
            session_resolution = "new"

        self._send_status(session_resolution)

    async def _handle_new_session(self) -> None:
        await self._saver.flush()
        self._state.reset()
        self._send_status("new")

    async def _handle_switch_session(self, payload: Dict[str, Any]) -> None:
        await self._saver.flush()
        session_id = coerce_session_id(payload.get("sessionId"))
        if session_id and session_id == self._state.session_id:
            # Already open; the in-memory log is never older than the stored copy.
            stored = self._store.get_session(session_id)
            self._send_status("stored" if stored is not None else "client")
            return

        stored = self._store.get_session(session_id) if session_id else None
        if stored is None:
            self._safe_write_message(
                json.dumps(build_error_payload(message=_SESSION_NOT_FOUND, session_id=session_id))
            )
            return

        self._state.load_record(stored)
        self._send_status("stored")

    def _handle_send(self, payload: Dict[str, Any]) -> None:
        message = self._state.record_sent(payload.get("content", ""))
        if message is None:
            self._safe_write_message(
                json.dumps(build_error_payload(message="Empty content", session_id=self._state.session_id))
            )
            return

        self._safe_write_message(
            json.dumps(
                build_post_script_payload(
                    session_id=self._state.session_id,
                    message_id=message.id,
                    script=message.content,
                )
            )
        )
        self._send_message(message)
        self._schedule_save()

    def _handle_editor_message(self, payload: Dict[str, Any]) -> None:
        origin = payload.get("origin", "")
        if not is_editor_origin(origin, self._config.editor_origin):
            # Not from the editor; dropped without a reply.
            return

        try:
            data = decode_editor_payload(payload.get("payload"))
        except ProtocolParseError as exc:
            self._safe_write_message(
                json.dumps(build_error_payload(message=str(exc), session_id=self._state.session_id))
            )
            return

        message = self._state.record_received(data, origin)
        if message is None:
            return

        self._send_message(message)
        self._schedule_save()

    def _handle_clear_messages(self) -> None:
        released = self._state.clear_messages()
        self._safe_write_message(
            json.dumps(build_cleared_payload(session_id=self._state.session_id, released_previews=released))
        )
        self._schedule_save()

    def _handle_image_urls(self, msg_type: str, payload: Dict[str, Any]) -> None:
        if msg_type == "add_image_url":
            changed = self._state.add_image_url(payload.get("url", ""))
            error_message = "Empty image URL"
        elif msg_type == "add_sample_image":
            changed = self._state.add_sample_image(payload.get("index", -1))
            error_message = "Unknown sample image"
        else:
            changed = self._state.remove_image_url(payload.get("index", -1))
            error_message = "Image index out of range"

        if not changed:
            self._safe_write_message(
                json.dumps(build_error_payload(message=error_message, session_id=self._state.session_id))
            )
            return

        self._safe_write_message(
            json.dumps(
                build_image_urls_payload(
                    session_id=self._state.session_id,
                    image_urls=list(self._state.image_urls),
                )
            )
        )
        self._schedule_save()

    def _handle_load_editor(self) -> None:
        photopea_src = self._state.build_editor_src()
        self._safe_write_message(
            json.dumps(build_editor_src_payload(session_id=self._state.session_id, photopea_src=photopea_src))
        )
        self._schedule_save()

    def _handle_delete_session(self, payload: Dict[str, Any]) -> None:
        session_id = payload.get("sessionId") or ""
        deleted = self._store.delete_session(session_id)
        self._safe_write_message(
            json.dumps(build_session_deleted_payload(session_id=session_id, deleted=deleted))
        )
        self._send_sessions()

        if session_id and session_id == self._state.session_id:
            self._saver.cancel()
            self._state.reset()
            self._send_status("new")

    def _handle_describe_message(self, payload: Dict[str, Any]) -> None:
        message = self._state.find_message(payload.get("messageId", -1))
        if message is None:
            self._safe_write_message(
                json.dumps(build_error_payload(message="Message not found", session_id=self._state.session_id))
            )
            return

        self._safe_write_message(
            json.dumps(
                build_detail_payload(
                    session_id=self._state.session_id,
                    message=self._state.describe(message, self._base_url()),
                    formatted=format_raw_data(message.raw_data),
                    formatted_text=format_raw_text(message.raw_data),
                )
            )
        )

    def _send_status(self, session_resolution: str) -> None:
        self._safe_write_message(
            json.dumps(
                build_status_payload(
                    state="ready",
                    session_id=self._state.session_id,
                    session_resolution=session_resolution,
                    history=self._state.history(self._base_url()),
                    image_urls=list(self._state.image_urls),
                    photopea_src=self._state.photopea_src,
                    sessions=self._store.list_summaries(),
                )
            )
        )

    def _send_message(self, message) -> None:
        self._safe_write_message(
            json.dumps(
                build_message_payload(
                    session_id=self._state.session_id,
                    message=self._state.describe(message, self._base_url()),
                )
            )
        )

    def _send_sessions(self) -> None:
        self._safe_write_message(json.dumps(build_sessions_payload(self._store.list_summaries())))

    def _schedule_save(self) -> None:
        if not self._config.autosave:
            return
        self._saver.schedule()

    def _snapshot_session(self) -> Dict[str, Any] | None:
        if not self._state.messages:
            return None
        return self._state.to_record()

    def _on_session_saved(self, record: Dict[str, Any]) -> None:
        if record.get("id") == self._state.session_id:
            self._state.created_at = record.get("createdAt") or self._state.created_at
        self._safe_write_message(
            json.dumps(
                build_saved_payload(
                    session_id=record["id"],
                    updated_at=record.get("updatedAt", ""),
                    message_count=len(record.get("messages", [])),
                )
            )
        )
        self._send_sessions()

    def _on_session_save_failed(self, exc: BaseException) -> None:
        logger.error("Failed to save session %s: %s", self._state.session_id, exc)
        self._safe_write_message(
            json.dumps(
                build_error_payload(
                    message=f"Failed to save session: {exc}",
                    session_id=self._state.session_id,
                )
            )
        )

    async def _close_session(self) -> None:
        try:
            await self._saver.flush()
        finally:
            self._state.release_previews()

    def _base_url(self) -> str:
        settings = getattr(getattr(self, "application", None), "settings", None) or {}
        return settings.get("base_url", "/")

    def _safe_write_message(self, message: str) -> None:
        try:
            self.write_message(message)
        except WebSocketClosedError:
            # Socket may already be closed; ignore.
            return
