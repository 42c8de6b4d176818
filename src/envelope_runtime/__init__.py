"""Message envelope and handler completion protocol.

Layered over a pattern-addressed, callback-style dispatcher:
- Message: uniform success/failure envelope with an opaque context
- RequestEngine: awaitable requests returning Messages
- Responder: exactly-once completion of one handler invocation
- Registrar: adapts async handlers to the dispatcher's callback shape
- ErrorRegistry: registry-backed construction of classified errors

Failures move through three channels: business failures travel as data
inside a Message, a nested failure raised as Breakout converges to a
business failure at the handler boundary, and everything else is
normalized to a FatalError and reported to the dispatcher.
"""

from .config import ProtocolConfig
from .engine import Dispatcher, RequestEngine
from .errors import (
    PROTOCOL_ERROR_MARKER,
    ErrorDefinition,
    ErrorKind,
    ErrorRegistry,
    FatalError,
    HandlerNotAsynchronous,
    InvalidArgumentShape,
    ProtocolError,
    SchemaValidationFailed,
    UnknownErrorCode,
    classify,
    is_protocol_error,
    normalize_fatal,
)
from .message import ErrorRecord, ExportedMessage, Message, new_message
from .registration import Registrar
from .responder import Breakout, Err, Ok, Responder, ResponderState

__all__ = [
    # Configuration
    "ProtocolConfig",
    # Errors
    "PROTOCOL_ERROR_MARKER",
    "ErrorDefinition",
    "ErrorKind",
    "ErrorRegistry",
    "FatalError",
    "HandlerNotAsynchronous",
    "InvalidArgumentShape",
    "ProtocolError",
    "SchemaValidationFailed",
    "UnknownErrorCode",
    "classify",
    "is_protocol_error",
    "normalize_fatal",
    # Envelope
    "ErrorRecord",
    "ExportedMessage",
    "Message",
    "new_message",
    # Requests and handlers
    "Dispatcher",
    "RequestEngine",
    "Registrar",
    "Responder",
    "ResponderState",
    "Breakout",
    "Ok",
    "Err",
]
