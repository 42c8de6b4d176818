"""Message envelope exchanged between handlers.

A Message is either successful (carrying a payload) or failed (carrying
one or more ProtocolErrors), plus an opaque context mapping that is
carried but never interpreted.

Wire shape (what export() produces and import accepts):
    {
        "successful": false,
        "errors": [
            {"code": "NEGATIVE_INPUT", "message": "...", "marker": "protocol-error"}
        ]
    }

Invariant: ``successful`` is true exactly when ``errors`` is empty.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .errors import PROTOCOL_ERROR_MARKER, ProtocolError


class ErrorRecord(BaseModel):
    """Wire form of a ProtocolError."""

    code: str
    message: str
    marker: str = PROTOCOL_ERROR_MARKER

    def to_error(self) -> ProtocolError:
        # Records are re-stamped: anything in an envelope is a protocol error
        return ProtocolError(self.code, self.message)


class ExportedMessage(BaseModel):
    """Transport-safe projection of a Message."""

    successful: bool = True
    payload: Any = None
    errors: list[ErrorRecord] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _derive_successful(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "successful" not in data:
            data = dict(data)
            data["successful"] = not data.get("errors")
        return data

    @model_validator(mode="after")
    def _check_consistency(self) -> ExportedMessage:
        if self.successful != (len(self.errors) == 0):
            raise ValueError("successful must be true exactly when errors is empty")
        return self

    def to_wire(self) -> dict[str, Any]:
        """Plain dict for the dispatcher, omitting inactive fields."""
        data = self.model_dump()
        if not self.successful:
            data.pop("payload", None)
        if not self.context:
            data.pop("context", None)
        return data


def as_protocol_error(value: Any) -> ProtocolError:
    """Accept a ProtocolError or an error record and stamp the marker."""
    if isinstance(value, ProtocolError):
        value.marker = PROTOCOL_ERROR_MARKER
        return value
    if isinstance(value, ErrorRecord):
        return value.to_error()
    if isinstance(value, Mapping):
        return ErrorRecord.model_validate(value).to_error()
    code = getattr(value, "code", None)
    message = getattr(value, "message", None)
    if isinstance(code, str) and isinstance(message, str):
        return ProtocolError(code, message)
    raise TypeError(f"Cannot use {type(value).__name__} as a protocol error")


class Message:
    """Builder-style envelope.

    Usage:
        message = Message().set_payload({"sum": 3})
        failed = Message().set_error(registry.make_error("NEGATIVE_INPUT", {"value": -1}))
    """

    def __init__(
        self,
        payload: Any = None,
        errors: Iterable[Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self._payload = payload
        self._errors: list[ProtocolError] = []
        self._context: dict[str, Any] = dict(context or {})
        for error in errors or ():
            self.set_error(error)

    @classmethod
    def from_export(cls, data: Mapping[str, Any] | ExportedMessage) -> Message:
        """Import a message from its exported shape.

        Raises:
            pydantic.ValidationError: If data is not a valid exported message
        """
        record = data if isinstance(data, ExportedMessage) else ExportedMessage.model_validate(data)
        return cls(
            payload=record.payload if record.successful else None,
            errors=[error.to_error() for error in record.errors],
            context=record.context,
        )

    def set_payload(self, payload: Any) -> Message:
        self._payload = payload
        return self

    def set_error(self, error: Any) -> Message:
        """Append an error. The message stays failed for the rest of its life."""
        self._errors.append(as_protocol_error(error))
        return self

    def set_context(self, context: Mapping[str, Any] | None) -> Message:
        self._context = dict(context or {})
        return self

    def is_successful(self) -> bool:
        return not self._errors

    @property
    def successful(self) -> bool:
        return self.is_successful()

    def get_payload(self) -> Any:
        return self._payload

    def get_errors(self) -> list[ProtocolError]:
        return list(self._errors)

    def get_context(self) -> dict[str, Any]:
        return dict(self._context)

    def to_record(self) -> ExportedMessage:
        return ExportedMessage(
            successful=self.is_successful(),
            payload=self._payload if self.is_successful() else None,
            errors=[ErrorRecord(**error.to_record()) for error in self._errors],
            context=self._context,
        )

    def export(self) -> dict[str, Any]:
        """Wire-shape dict, safe to hand to the dispatcher."""
        return self.to_record().to_wire()

    def summary(self) -> str:
        """Short description for logs that never includes the payload itself."""
        if self.is_successful():
            return f"successful payload={type(self._payload).__name__}"
        codes = ", ".join(error.code for error in self._errors)
        return f"failed errors=[{codes}]"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return self.export() == other.export()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Message({self.summary()})"


def new_message(source: Message | Mapping[str, Any] | ExportedMessage | None = None) -> Message:
    """Wrap a dispatcher result as a Message.

    An existing Message is returned unchanged, an exported shape is
    imported, and no source gives an empty successful message.
    """
    if isinstance(source, Message):
        return source
    if source is None:
        return Message()
    return Message.from_export(source)
