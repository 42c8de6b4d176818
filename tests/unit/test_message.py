"""Unit tests for the Message envelope."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from envelope_runtime.errors import PROTOCOL_ERROR_MARKER, ErrorRegistry, ProtocolError
from envelope_runtime.message import ExportedMessage, Message, new_message


class TestMessageCreation:
    """Test Message construction and basic properties."""

    def test_default_is_successful_and_empty(self) -> None:
        message = Message()

        assert message.is_successful() is True
        assert message.get_payload() is None
        assert message.get_errors() == []
        assert message.get_context() == {}

    def test_set_payload_is_chainable(self) -> None:
        message = Message().set_payload({"sum": 3})

        assert message.get_payload() == {"sum": 3}
        assert message.is_successful() is True

    def test_set_error_makes_message_failed(self, registry: ErrorRegistry) -> None:
        message = Message().set_error(registry.make_error("UPSTREAM_DOWN"))

        assert message.is_successful() is False
        assert [e.code for e in message.get_errors()] == ["UPSTREAM_DOWN"]

    def test_errors_append_in_order(self, registry: ErrorRegistry) -> None:
        message = (
            Message()
            .set_error(registry.make_error("UPSTREAM_DOWN"))
            .set_error(registry.make_error("NEGATIVE_INPUT", {"value": -2}))
        )

        assert [e.code for e in message.get_errors()] == ["UPSTREAM_DOWN", "NEGATIVE_INPUT"]

    def test_payload_after_error_keeps_message_failed(self, registry: ErrorRegistry) -> None:
        """There is no way back to successful once an error is set."""
        message = Message().set_error(registry.make_error("UPSTREAM_DOWN")).set_payload({"x": 1})

        assert message.is_successful() is False

    def test_set_error_accepts_record(self) -> None:
        message = Message().set_error({"code": "REMOTE", "message": "from elsewhere"})

        error = message.get_errors()[0]
        assert isinstance(error, ProtocolError)
        assert error.marker == PROTOCOL_ERROR_MARKER

    def test_set_error_rejects_non_errors(self) -> None:
        with pytest.raises(TypeError):
            Message().set_error(42)

    def test_get_errors_returns_copy(self, registry: ErrorRegistry) -> None:
        message = Message().set_error(registry.make_error("UPSTREAM_DOWN"))
        message.get_errors().clear()

        assert len(message.get_errors()) == 1

    def test_successful_matches_error_count(self, registry: ErrorRegistry) -> None:
        """successful is true exactly when there are no errors."""
        messages = [
            Message(),
            Message(payload=[1, 2]),
            Message(errors=[registry.make_error("UPSTREAM_DOWN")]),
        ]
        for message in messages:
            assert message.is_successful() == (len(message.get_errors()) == 0)


class TestMessageExport:
    """Test the wire shape produced by export()."""

    def test_export_successful(self) -> None:
        exported = Message().set_payload({"sum": 3}).export()

        assert exported == {"successful": True, "payload": {"sum": 3}, "errors": []}

    def test_export_failed_omits_payload(self, registry: ErrorRegistry) -> None:
        exported = Message().set_error(registry.make_error("NEGATIVE_INPUT", {"value": -1})).export()

        assert exported == {
            "successful": False,
            "errors": [
                {
                    "code": "NEGATIVE_INPUT",
                    "message": "Value -1 must not be negative.",
                    "marker": PROTOCOL_ERROR_MARKER,
                }
            ],
        }

    def test_export_includes_context_when_present(self) -> None:
        exported = Message(context={"trace_id": "t-1"}).export()

        assert exported["context"] == {"trace_id": "t-1"}

    def test_export_is_json_serializable(self, registry: ErrorRegistry) -> None:
        message = Message(errors=[registry.make_error("UPSTREAM_DOWN")], context={"user": "u1"})

        assert json.loads(json.dumps(message.export())) == message.export()


class TestMessageImport:
    """Test new_message() and import from the wire shape."""

    def test_new_message_without_source(self) -> None:
        message = new_message()

        assert message.is_successful() is True
        assert message.get_payload() is None

    def test_new_message_returns_same_instance(self) -> None:
        message = Message().set_payload(1)

        assert new_message(message) is message

    def test_round_trip_successful(self) -> None:
        message = Message(payload={"items": [1, 2, 3]}, context={"session": "s"})

        assert Message.from_export(message.export()) == message

    def test_round_trip_failed(self, registry: ErrorRegistry) -> None:
        message = Message(
            errors=[
                registry.make_error("NOT_FOUND", {"kind": "Order", "id": 1}),
                registry.make_error("UPSTREAM_DOWN"),
            ]
        )

        imported = new_message(message.export())

        assert imported.is_successful() is False
        assert imported.get_errors() == message.get_errors()

    def test_import_derives_successful(self) -> None:
        assert new_message({"payload": 5}).is_successful() is True
        assert new_message({"errors": [{"code": "E", "message": "e"}]}).is_successful() is False

    def test_import_stamps_marker(self) -> None:
        imported = new_message({"successful": False, "errors": [{"code": "E", "message": "e"}]})

        assert imported.get_errors()[0].marker == PROTOCOL_ERROR_MARKER

    def test_import_rejects_inconsistent_shape(self) -> None:
        with pytest.raises(ValidationError):
            new_message({"successful": True, "errors": [{"code": "E", "message": "e"}]})
        with pytest.raises(ValidationError):
            new_message({"successful": False, "errors": []})

    def test_import_rejects_non_mapping(self) -> None:
        with pytest.raises(ValidationError):
            new_message([1, 2, 3])  # type: ignore[arg-type]

    def test_import_accepts_exported_model(self) -> None:
        record = ExportedMessage(payload="hi")

        assert new_message(record).get_payload() == "hi"


class TestMessageSummary:
    """summary() is what gets logged instead of the payload."""

    def test_summary_hides_payload(self) -> None:
        summary = Message().set_payload({"secret": "x" * 5000}).summary()

        assert "secret" not in summary
        assert summary == "successful payload=dict"

    def test_summary_lists_error_codes(self, registry: ErrorRegistry) -> None:
        message = Message(errors=[registry.make_error("UPSTREAM_DOWN")])

        assert message.summary() == "failed errors=[UPSTREAM_DOWN]"
