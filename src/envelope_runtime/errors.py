"""Error model for the envelope protocol.

Two families of errors cross a handler boundary:
- ProtocolError: registry-backed business errors that travel as data
  inside a failed Message
- FatalError: the uniform shape every unexpected failure is normalized to
  before it is handed to the dispatcher

The registry is loaded once at process start and passed explicitly to
whatever needs to construct errors.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

PROTOCOL_ERROR_MARKER = "protocol-error"
UNKNOWN_CODE = "UNKNOWN CODE"
UNKNOWN_MESSAGE = "UNKNOWN MESSAGE"

# Attribute names the dispatcher uses when it re-wraps a foreign error.
WRAPPED_FLAG_ATTRS = ("from_dispatcher", "seneca")
WRAPPED_CAUSE_ATTRS = ("original", "orig")

MessageTemplate = Callable[[Mapping[str, Any]], str]


class ErrorKind(str, Enum):
    """Discriminant for anything that can end a handler invocation."""

    PROTOCOL = "protocol"
    BREAKOUT = "breakout"
    FATAL = "fatal"


class ProtocolError(Exception):
    """A classified business error with a stable code.

    Build these through ErrorRegistry.make_error() so the code is
    guaranteed to exist in the registry.
    """

    kind = ErrorKind.PROTOCOL

    def __init__(self, code: str, message: str, marker: str = PROTOCOL_ERROR_MARKER) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.marker = marker

    def to_record(self) -> dict[str, str]:
        """Wire representation of this error."""
        return {"code": self.code, "message": self.message, "marker": self.marker}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProtocolError):
            return NotImplemented
        return (self.code, self.message, self.marker) == (other.code, other.message, other.marker)

    def __hash__(self) -> int:
        return hash((self.code, self.message, self.marker))

    def __repr__(self) -> str:
        return f"ProtocolError(code={self.code!r}, message={self.message!r})"

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class FatalError(Exception):
    """An unexpected failure, normalized to carry a code and a message."""

    kind = ErrorKind.FATAL

    def __init__(self, message: str = UNKNOWN_MESSAGE, code: str = UNKNOWN_CODE) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class SchemaValidationFailed(FatalError):
    """A payload did not conform to the schema registered for a pattern."""

    def __init__(self, direction: str, pattern: str, errors: list[str] | None = None) -> None:
        label = "Input arguments" if direction == "input" else "Returned payload"
        super().__init__(f"{label} failed schema validation.", code="SCHEMA_VALIDATION_FAILED")
        self.direction = direction
        self.pattern = pattern
        self.errors = errors or []


class UnknownErrorCode(LookupError):
    """Raised when an error code is not present in the registry."""

    code = "UNKNOWN_ERROR_CODE"

    def __init__(self, error_code: Any) -> None:
        super().__init__(f"Unknown message code '{error_code}'.")
        self.error_code = error_code


class InvalidArgumentShape(TypeError):
    """Raised when request arguments are not a non-sequence mapping."""

    code = "INVALID_ARGUMENT_SHAPE"


class HandlerNotAsynchronous(TypeError):
    """Raised at registration when a handler is not a coroutine function."""

    code = "HANDLER_NOT_ASYNCHRONOUS"


@dataclass(frozen=True)
class ErrorDefinition:
    """Static description of one registry entry."""

    code: str
    template: MessageTemplate

    def render(self, params: Mapping[str, Any]) -> str:
        return self.template(params)

    @classmethod
    def from_source(cls, code: str, source: Any) -> ErrorDefinition:
        """Build a definition from a registry file or mapping entry.

        Accepts an ErrorDefinition, a bare template (string or callable),
        or a mapping with ``message`` and an optional ``code``.
        """
        if isinstance(source, ErrorDefinition):
            return source
        if isinstance(source, Mapping):
            return cls(code=str(source.get("code", code)), template=_as_template(source.get("message")))
        return cls(code=code, template=_as_template(source))


def _as_template(message: Any) -> MessageTemplate:
    if callable(message):
        return message
    if isinstance(message, str):
        return lambda params: message.format_map(dict(params))
    raise ValueError(f"Error message must be a string or callable, got {type(message).__name__}")


class ErrorRegistry(Mapping[str, ErrorDefinition]):
    """Read-only mapping of error code to definition.

    Example:
        registry = ErrorRegistry({
            "NEGATIVE_INPUT": "Value {value} must not be negative.",
        })
        error = registry.make_error("NEGATIVE_INPUT", {"value": -1})
    """

    def __init__(self, definitions: Mapping[str, Any] | None = None) -> None:
        entries = {
            code: ErrorDefinition.from_source(code, source)
            for code, source in (definitions or {}).items()
        }
        self._definitions = MappingProxyType(entries)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ErrorRegistry:
        """Build a registry from loaded config, tolerating an ``errors`` wrapper key."""
        if "errors" in data and isinstance(data["errors"], Mapping):
            data = data["errors"]
        return cls(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ErrorRegistry:
        """Load a registry from a YAML file.

        The file maps codes to either a template string or a mapping
        with a ``message`` template:

            NEGATIVE_INPUT: "Value {value} must not be negative."
            NOT_FOUND:
              message: "{kind} {id} not found."
        """
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, Mapping):
            raise ValueError(f"Error registry {path} must contain a mapping")
        registry = cls.from_mapping(data)
        logger.debug(f"Loaded {len(registry)} error definitions from {path}")
        return registry

    def __getitem__(self, code: str) -> ErrorDefinition:
        return self._definitions[code]

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def make_error(self, code_or_error: Any, params: Mapping[str, Any] | None = None) -> ProtocolError:
        """Construct a ProtocolError from a registry code.

        Args:
            code_or_error: A code string, or anything exposing ``code``
            params: Values interpolated into the message template

        Raises:
            UnknownErrorCode: If the code is not in the registry
        """
        code = code_or_error
        if not isinstance(code, str):
            if isinstance(code, Mapping):
                code = code.get("code")
            else:
                code = getattr(code, "code", None)
        if code not in self._definitions:
            raise UnknownErrorCode(code)
        definition = self._definitions[code]
        return ProtocolError(definition.code, definition.render(params or {}))


def is_protocol_error(value: Any) -> bool:
    """Check whether a value is a classified protocol error.

    Works on instances, on look-alikes from another import path, and on
    plain records that crossed a serialization boundary.
    """
    if isinstance(value, ProtocolError):
        return True
    if type(value).__name__ == "ProtocolError":
        return True
    if isinstance(value, Mapping):
        return value.get("marker") == PROTOCOL_ERROR_MARKER
    return getattr(value, "marker", None) == PROTOCOL_ERROR_MARKER


def classify(value: Any) -> ErrorKind:
    """Sort whatever ended an invocation into one of the error kinds."""
    kind = getattr(value, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    if is_protocol_error(value):
        return ErrorKind.PROTOCOL
    return ErrorKind.FATAL


def _field(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


def _is_dispatcher_wrapped(value: Any) -> bool:
    flagged = any(_field(value, attr) for attr in WRAPPED_FLAG_ATTRS)
    return flagged and _unwrap_cause(value) is not None


def _unwrap_cause(value: Any) -> Any:
    for attr in WRAPPED_CAUSE_ATTRS:
        cause = _field(value, attr)
        if cause is not None:
            return cause
    return None


def _coerce(value: Any) -> FatalError:
    if isinstance(value, str):
        return FatalError(value or UNKNOWN_MESSAGE)
    code = _field(value, "code")
    message = _field(value, "message")
    if message is None and isinstance(value, BaseException):
        message = str(value) or None
    fatal = FatalError(
        str(message) if message is not None else UNKNOWN_MESSAGE,
        code=str(code) if code is not None else UNKNOWN_CODE,
    )
    if isinstance(value, BaseException):
        fatal.__cause__ = value
        fatal = fatal.with_traceback(value.__traceback__)
    return fatal


def normalize_fatal(value: Any) -> ProtocolError | FatalError:
    """Turn anything raised or reported as fatal into a uniform error.

    Protocol errors and already normalized fatals pass through unchanged.
    Errors the dispatcher wrapped around a foreign cause are rebuilt from
    that cause, keeping the wrapper's traceback. Everything else is
    coerced into a FatalError with a code and a message.
    """
    if is_protocol_error(value) and isinstance(value, BaseException):
        return value
    if isinstance(value, FatalError):
        return value
    if _is_dispatcher_wrapped(value):
        fatal = _coerce(_unwrap_cause(value))
        if isinstance(value, BaseException):
            fatal = fatal.with_traceback(value.__traceback__)
        return fatal
    return _coerce(value)
