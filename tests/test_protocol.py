import base64
import unittest

from photopea_playground.classifier import BinaryBuffer, Blob
from photopea_playground.protocol import (
    PROTOCOL_VERSION,
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


class TestParseClientMessage(unittest.TestCase):
    def test_parse_start_session_trims_fields(self):
        msg_type, payload = parse_client_message({"type": "start_session", "sessionId": "  abc123  "})
        self.assertEqual(msg_type, "start_session")
        self.assertEqual(payload, {"sessionId": "abc123"})

    def test_parse_send_keeps_inner_whitespace(self):
        msg_type, payload = parse_client_message(
            {"type": "send", "content": "  app.documents.add(800, 600)\n  .name  "}
        )
        self.assertEqual(msg_type, "send")
        self.assertEqual(payload["content"], "app.documents.add(800, 600)\n  .name")

    def test_parse_normalizes_non_string_fields(self):
        self.assertEqual(parse_client_message({"type": "send", "content": 42})[1], {"content": ""})
        self.assertEqual(
            parse_client_message({"type": "switch_session", "sessionId": None})[1], {"sessionId": ""}
        )
        self.assertEqual(parse_client_message({"type": "remove_image_url", "index": "2"})[1], {"index": 2})
        self.assertEqual(parse_client_message({"type": "remove_image_url", "index": True})[1], {"index": -1})
        self.assertEqual(
            parse_client_message({"type": "describe_message", "messageId": "x"})[1], {"messageId": -1}
        )

    def test_parse_editor_message_passes_envelope_through(self):
        envelope = {"kind": "string", "value": "done"}
        msg_type, payload = parse_client_message(
            {"type": "editor_message", "origin": " https://www.photopea.com ", "payload": envelope}
        )
        self.assertEqual(msg_type, "editor_message")
        self.assertEqual(payload["origin"], "https://www.photopea.com")
        self.assertIs(payload["payload"], envelope)

    def test_parse_editor_message_requires_payload(self):
        with self.assertRaises(ProtocolParseError):
            parse_client_message({"type": "editor_message", "origin": "https://www.photopea.com"})

    def test_parse_simple_messages(self):
        for msg_type in ("new_session", "clear_messages", "load_editor", "list_sessions"):
            with self.subTest(msg_type=msg_type):
                self.assertEqual(parse_client_message({"type": msg_type}), (msg_type, {}))

    def test_parse_invalid_messages(self):
        with self.assertRaises(ProtocolParseError):
            parse_client_message({"type": "unknown"})
        with self.assertRaises(ProtocolParseError):
            parse_client_message(["send"])


class TestDecodeEditorPayload(unittest.TestCase):
    def test_string_and_json(self):
        self.assertEqual(decode_editor_payload({"kind": "string", "value": "done"}), "done")
        self.assertEqual(decode_editor_payload({"kind": "json", "value": {"a": [1]}}), {"a": [1]})
        self.assertIsNone(decode_editor_payload({"kind": "json", "value": None}))
        self.assertEqual(decode_editor_payload({"kind": "json", "value": 3}), 3)

    def test_binary_buffer(self):
        encoded = base64.b64encode(b"\x89PNG").decode("ascii")
        decoded = decode_editor_payload({"kind": "binary", "bufferType": "Uint8Array", "data": encoded})
        self.assertEqual(decoded, BinaryBuffer("Uint8Array", b"\x89PNG"))

    def test_binary_defaults_to_array_buffer_and_empty_data(self):
        self.assertEqual(decode_editor_payload({"kind": "binary"}), BinaryBuffer("ArrayBuffer", b""))

    def test_blob(self):
        encoded = base64.b64encode(b"abc").decode("ascii")
        decoded = decode_editor_payload({"kind": "blob", "mimeType": "image/png", "data": encoded})
        self.assertEqual(decoded, Blob(b"abc", "image/png"))

    def test_invalid_envelopes(self):
        for envelope in (
            "done",
            {"kind": "string", "value": 1},
            {"kind": "binary", "data": "***not base64***"},
            {"kind": "binary", "data": 12},
            {"kind": "mystery"},
        ):
            with self.subTest(envelope=envelope):
                with self.assertRaises(ProtocolParseError):
                    decode_editor_payload(envelope)


class TestProtocolBuilders(unittest.TestCase):
    def test_every_payload_carries_type_and_version(self):
        payloads = [
            build_status_payload(state="ready"),
            build_message_payload(session_id="s", message={"id": 1}),
            build_post_script_payload(session_id="s", message_id=1, script="app.activeDocument.name"),
            build_image_urls_payload(session_id="s", image_urls=[]),
            build_editor_src_payload(session_id="s", photopea_src="https://www.photopea.com"),
            build_cleared_payload(session_id="s", released_previews=0),
            build_sessions_payload([]),
            build_saved_payload(session_id="s", updated_at="t", message_count=1),
            build_session_deleted_payload(session_id="s", deleted=True),
            build_detail_payload(session_id="s", message={}, formatted=None, formatted_text=""),
            build_error_payload(message="bad"),
        ]
        for payload in payloads:
            with self.subTest(payload_type=payload["type"]):
                self.assertEqual(payload["protocolVersion"], PROTOCOL_VERSION)

    def test_status_payload_omits_unset_fields(self):
        status = build_status_payload(state="ready")
        self.assertEqual(status, {"type": "status", "protocolVersion": PROTOCOL_VERSION, "state": "ready"})

        full = build_status_payload(
            state="ready",
            session_id="abc123",
            session_resolution="stored",
            history=[],
            image_urls=["https://example.com/a.png"],
            photopea_src="https://www.photopea.com",
            sessions=[],
        )
        self.assertEqual(full["sessionId"], "abc123")
        self.assertEqual(full["sessionResolution"], "stored")
        self.assertEqual(full["history"], [])
        self.assertEqual(full["imageUrls"], ["https://example.com/a.png"])

    def test_error_payload(self):
        error = build_error_payload(message="bad", session_id="abc123")
        self.assertEqual(error["message"], "bad")
        self.assertEqual(error["sessionId"], "abc123")
        self.assertNotIn("sessionId", build_error_payload(message="bad"))


if __name__ == "__main__":
    unittest.main()
