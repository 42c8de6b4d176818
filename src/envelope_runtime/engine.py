"""Request engine - awaitable calls over a callback-style dispatcher.

The dispatcher is an external collaborator that routes a pattern such as
``role:math,cmd:add`` to whichever handler registered it, and reports the
outcome through a single ``callback(err, result)``. This module turns that
into ``await engine.request(...)`` returning a Message.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from .config import DEFAULT_CONFIG, ProtocolConfig
from .errors import InvalidArgumentShape, normalize_fatal
from .message import ExportedMessage, Message, new_message

logger = logging.getLogger(__name__)

# callback(err, result): err signals a fatal failure, result is the raw reply
Completion = Callable[..., None]

# What the dispatcher invokes for a registered pattern
RawHandler = Callable[[dict[str, Any], Completion], Awaitable[None]]


@runtime_checkable
class Dispatcher(Protocol):
    """Pattern-addressed call substrate this layer sits on.

    Implementations own routing, transport and timeouts. They must call
    the completion callback at most once per ``act``.
    """

    def add(self, pattern: str, handler: RawHandler) -> Any:
        """Register a raw handler for a pattern."""
        ...

    def act(self, pattern: str, args: dict[str, Any], callback: Completion) -> Any:
        """Send a request and report its outcome through callback."""
        ...


class RequestEngine:
    """Issues requests through a dispatcher and wraps replies as Messages.

    Usage:
        engine = RequestEngine(dispatcher)
        message = await engine.request("role:math,cmd:add", {"a": 1, "b": 2})
        if message.is_successful():
            total = message.get_payload()["sum"]
    """

    def __init__(self, dispatcher: Dispatcher, config: ProtocolConfig | None = None) -> None:
        self.dispatcher = dispatcher
        self.config = config or DEFAULT_CONFIG

    def make_message(self, source: Message | Mapping[str, Any] | ExportedMessage | None = None) -> Message:
        return new_message(source)

    async def request(
        self,
        pattern: str,
        args: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Message:
        """Send a request and wait for the reply.

        Args:
            pattern: Dispatcher addressing pattern
            args: Request arguments, must be a mapping
            context: Context to attach unless args already carry one

        Returns:
            The reply as a Message (successful or business failure)

        Raises:
            InvalidArgumentShape: If args is not a mapping (before dispatch)
            Exception: Whatever the dispatcher reports as a hard failure
        """
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise InvalidArgumentShape(
                f"Request arguments for '{pattern}' must be a mapping, got {type(args).__name__}"
            )

        params = dict(args)
        key = self.config.context_key
        if not params.get(key) and context:
            params[key] = dict(context)

        if self.config.log_payloads:
            logger.debug(f"SEND {pattern} {params}")
        else:
            logger.debug(f"SEND {pattern} args={sorted(params)}")

        result = await self._act(pattern, params)

        if self.config.log_payloads:
            logger.debug(f"RECV {pattern} {result}")
        else:
            logger.debug(f"RECV {pattern}")

        return new_message(result)

    async def _act(self, pattern: str, params: dict[str, Any]) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def callback(err: Any = None, result: Any = None) -> None:
            # May be called from the dispatcher's own thread
            loop.call_soon_threadsafe(_settle, future, pattern, err, result)

        self.dispatcher.act(pattern, params, callback)
        return await future


def _settle(future: asyncio.Future[Any], pattern: str, err: Any, result: Any) -> None:
    if future.done():
        logger.warning(f"Ignoring repeated completion for request {pattern}")
        return
    if err is not None:
        future.set_exception(err if isinstance(err, BaseException) else normalize_fatal(err))
        return
    future.set_result(result)
