"""Responder - per-invocation completion controller.

Every inbound invocation gets one Responder. The handler finishes the
invocation by calling exactly one of success(), failure() or fatal();
the dispatcher's completion callback fires at most once, with the
content of the first call. Later attempts are logged and ignored.

Nested calls made through inquest() return the nested payload directly.
If the nested reply is a failure, a Breakout is raised instead; the
registration boundary catches it and completes the invocation as a
business failure carrying the nested errors unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .errors import ErrorKind, SchemaValidationFailed, normalize_fatal
from .message import Message

if TYPE_CHECKING:
    from .engine import Completion, RequestEngine
    from .schemas import CompiledSchema

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Breakout(BaseException):
    """Control-flow signal carrying a failed nested Message.

    Derives from BaseException so handler code catching Exception does
    not swallow it; only the registration boundary handles it.
    """

    kind = ErrorKind.BREAKOUT

    def __init__(self, message: Message) -> None:
        super().__init__(message.summary())
        self.message = message


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful nested call."""

    payload: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.payload


@dataclass(frozen=True)
class Err:
    """Failed nested call, holding the failed Message."""

    message: Message

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise Breakout(self.message)


Outcome = Ok[Any] | Err


class ResponderState(str, Enum):
    """Completion state machine."""

    PENDING = "pending"
    COMPLETED = "completed"


class Responder:
    """Completes one dispatcher invocation.

    Usage inside a registered handler:
        async def add(responder, payload, context):
            if payload["a"] < 0:
                return responder.failure(registry.make_error("NEGATIVE_INPUT", {"value": payload["a"]}))
            rate = await responder.inquest("role:fx,cmd:rate", {"currency": "EUR"})
            return responder.success({"sum": (payload["a"] + payload["b"]) * rate})
    """

    def __init__(
        self,
        engine: RequestEngine,
        complete: Completion,
        pattern: str,
        args: Mapping[str, Any] | None = None,
        output_schema: CompiledSchema | None = None,
    ) -> None:
        self.engine = engine
        self.pattern = pattern
        self.args = dict(args or {})
        self.output_schema = output_schema
        self._complete = complete
        self._state = ResponderState.PENDING

    @property
    def state(self) -> ResponderState:
        return self._state

    @property
    def completed(self) -> bool:
        return self._state is ResponderState.COMPLETED

    @property
    def context(self) -> dict[str, Any]:
        """Context carried by the inbound invocation."""
        return dict(self.args.get(self.engine.config.context_key) or {})

    # =========================================================================
    # Nested calls
    # =========================================================================

    async def request(
        self,
        pattern: str,
        args: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Message:
        """Nested request that forwards this invocation's context by default."""
        return await self.engine.request(pattern, args, context or self.context)

    async def attempt(
        self,
        pattern: str,
        args: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Outcome:
        """Nested request returned as Ok(payload) or Err(message)."""
        message = await self.request(pattern, args, context)
        if message.is_successful():
            return Ok(message.get_payload())
        return Err(message)

    async def inquest(
        self,
        pattern: str,
        args: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Any:
        """Nested request returning the payload, or raising Breakout on failure."""
        outcome = await self.attempt(pattern, args, context)
        return outcome.unwrap()

    # =========================================================================
    # Completion
    # =========================================================================

    def success(self, message_or_payload: Any = None) -> None:
        """Complete with a successful Message.

        Raises:
            SchemaValidationFailed: If the payload does not match the output
                schema; the invocation is left pending for fatal()
        """
        if self._reject_if_completed("success"):
            return
        if isinstance(message_or_payload, Message):
            message = message_or_payload
        else:
            message = Message().set_payload(message_or_payload)

        if self.output_schema is not None:
            errors = self.output_schema.errors(message.get_payload())
            if errors:
                logger.error(f"OUTPUT-VALIDATION {self.pattern}: {errors}")
                raise SchemaValidationFailed("output", self.pattern, errors)

        logger.debug(f"RESP {self.pattern} {message.summary()}")
        self._finish(None, message.export())

    def failure(self, message_or_errors: Any) -> None:
        """Complete with a failed Message (a normal completion, not a fatal)."""
        if self._reject_if_completed("failure"):
            return
        if isinstance(message_or_errors, Message):
            message = message_or_errors
        else:
            errors = message_or_errors
            if isinstance(errors, (str, bytes, Mapping)) or not isinstance(errors, Sequence):
                errors = [errors]
            message = Message()
            for error in errors:
                message.set_error(error)
        if message.is_successful():
            raise ValueError(f"failure() for {self.pattern} needs at least one error")

        for error in message.get_errors():
            logger.error(f"ERROR {self.pattern} {error}")
        self._finish(None, message.export())

    def fatal(self, error: Any) -> None:
        """Complete with a fatal error, or as a failure for a Breakout."""
        if isinstance(error, Breakout):
            return self.failure(error.message)
        if self._reject_if_completed("fatal"):
            return
        normalized = normalize_fatal(error)
        logger.error(f"CRASH {self.pattern} {normalized}", exc_info=normalized)
        self._finish(normalized, None)

    def _reject_if_completed(self, operation: str) -> bool:
        if self._state is ResponderState.COMPLETED:
            logger.warning(f"Ignoring {operation}() for {self.pattern}: invocation already completed")
            return True
        return False

    def _finish(self, err: Any, result: Any) -> None:
        self._state = ResponderState.COMPLETED
        if err is not None:
            self._complete(err)
        else:
            self._complete(None, result)
