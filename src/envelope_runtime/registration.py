"""Registration adapter - turns async handlers into dispatcher callbacks.

Handlers have the signature ``async handler(responder, payload, context)``.
The adapter builds the ``(args, complete)`` callback the dispatcher
expects and, per invocation:
- creates a Responder bound to that invocation
- splits the raw arguments into context and business payload
- validates the payload against the input schema, if any
- runs the handler inside a boundary that routes anything escaping it
  (Breakout included) to responder.fatal()
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .config import ProtocolConfig
from .engine import Completion, RawHandler, RequestEngine
from .errors import HandlerNotAsynchronous, SchemaValidationFailed
from .responder import Breakout, Responder
from .schemas import compile_schema

logger = logging.getLogger(__name__)

Handler = Callable[[Responder, dict[str, Any], dict[str, Any]], Awaitable[Any]]
ReadyCallback = Callable[[Callable[..., None], str], Any]


def pattern_fields(pattern: str) -> frozenset[str]:
    """Field names addressed by a pattern like ``role:math,cmd:add``."""
    fields = set()
    for part in pattern.split(","):
        name, sep, _ = part.partition(":")
        if sep and name.strip():
            fields.add(name.strip())
    return frozenset(fields)


def is_async_handler(handler: Any) -> bool:
    """Check that calling handler produces an awaitable coroutine."""
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


class Registrar:
    """Registers handlers with the dispatcher behind a RequestEngine.

    Usage:
        registrar = Registrar(engine)

        async def add(responder, payload, context):
            responder.success({"sum": payload["a"] + payload["b"]})

        registrar.register("role:math,cmd:add", add, input_schema=ADD_SCHEMA)
    """

    def __init__(self, engine: RequestEngine, config: ProtocolConfig | None = None) -> None:
        self.engine = engine
        self.config = config or engine.config

    def extract_context(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return dict(args.get(self.config.context_key) or {})

    def extract_payload(
        self, args: Mapping[str, Any], routing: frozenset[str] = frozenset()
    ) -> dict[str, Any]:
        """Business fields of the raw arguments, routing data stripped."""
        return {
            name: value
            for name, value in args.items()
            if not self.config.is_routing_field(name) and name not in routing
        }

    def register(
        self,
        pattern: str,
        handler: Handler,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> RawHandler:
        """Register an async handler for a pattern.

        Args:
            pattern: Dispatcher addressing pattern
            handler: ``async handler(responder, payload, context)``
            input_schema: Optional schema the payload must satisfy
            output_schema: Optional schema successful payloads must satisfy

        Returns:
            The raw callback handed to the dispatcher

        Raises:
            HandlerNotAsynchronous: If handler is not a coroutine function
        """
        logger.debug(f"REGISTER {pattern}")
        if not is_async_handler(handler):
            raise HandlerNotAsynchronous(f"Handler for '{pattern}' was not declared async.")

        input_validator = compile_schema(input_schema)
        output_validator = compile_schema(output_schema)
        routing = pattern_fields(pattern)

        async def raw_handler(args: dict[str, Any], complete: Completion) -> None:
            responder = Responder(self.engine, complete, pattern, args, output_validator)
            try:
                logger.debug(f"ENTER {pattern}")
                context = self.extract_context(args)
                payload = self.extract_payload(args, routing)
                if input_validator is not None:
                    errors = input_validator.errors(payload)
                    if errors:
                        logger.error(f"INPUT-VALIDATION {pattern}: {errors}")
                        raise SchemaValidationFailed("input", pattern, errors)
                await handler(responder, payload, context)
            except (Breakout, Exception) as e:
                responder.fatal(e)
                return
            if not responder.completed:
                logger.warning(f"Handler for {pattern} returned without completing")

        self.engine.dispatcher.add(pattern, raw_handler)
        return raw_handler

    def plugin_init(self, plugin_name: str, ready_callback: ReadyCallback | None = None) -> RawHandler:
        """Register the ``init:<plugin_name>`` pattern.

        Without a callback the plugin reports ready immediately. With one,
        the callback receives ``(ready, plugin_name)`` and decides when to
        call ``ready()``, or ``ready(error)`` to report a failed start.
        """
        pattern = f"init:{plugin_name}"

        async def raw_handler(args: dict[str, Any], complete: Completion) -> None:
            reported = False

            def ready(*params: Any) -> None:
                nonlocal reported
                if reported:
                    logger.warning(f"PLUGIN {plugin_name} reported readiness twice")
                    return
                reported = True
                if not params or params[0] is None:
                    logger.info(f"PLUGIN {plugin_name} ready")
                    complete()
                else:
                    logger.error(f"PLUGIN {plugin_name} failed: {params[0]}")
                    complete(params[0])

            logger.debug(f"PLUGIN {plugin_name} init")
            if ready_callback is None:
                ready()
                return
            outcome = ready_callback(ready, plugin_name)
            if inspect.isawaitable(outcome):
                await outcome

        self.engine.dispatcher.add(pattern, raw_handler)
        return raw_handler
