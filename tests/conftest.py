"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from envelope_runtime import ErrorRegistry, Registrar, RequestEngine


def parse_pattern(pattern: str) -> dict[str, str]:
    """Split ``role:math,cmd:add`` into its fields."""
    fields = {}
    for part in pattern.split(","):
        name, _, value = part.partition(":")
        fields[name.strip()] = value.strip()
    return fields


class LocalDispatcher:
    """In-process dispatcher for tests.

    Routes by matching every field of a registered pattern against the
    request fields. Raw handlers run as tasks on the current loop, the way
    a real dispatcher runs them concurrently.
    """

    def __init__(self) -> None:
        self.handlers: list[tuple[dict[str, str], Any]] = []
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def add(self, pattern: str, handler: Any) -> None:
        self.handlers.append((parse_pattern(pattern), handler))

    def find(self, fields: dict[str, Any]) -> Any:
        # Most recent registration wins
        for pin, handler in reversed(self.handlers):
            if all(fields.get(name) == value for name, value in pin.items()):
                return handler
        return None

    def act(self, pattern: str, args: dict[str, Any], callback: Any) -> None:
        self.sent.append((pattern, args))
        merged = {**parse_pattern(pattern), **args}
        handler = self.find(merged)
        if handler is None:
            callback(LookupError(f"No handler for {pattern}"))
            return
        task = asyncio.ensure_future(handler(merged, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def invoke(self, pattern: str, args: dict[str, Any] | None = None) -> list[tuple[Any, ...]]:
        """Run the handler for pattern directly and return every completion call."""
        calls: list[tuple[Any, ...]] = []

        def complete(*params: Any) -> None:
            calls.append(params)

        merged = {**parse_pattern(pattern), **(args or {})}
        handler = self.find(merged)
        assert handler is not None, f"nothing registered for {pattern}"
        await handler(merged, complete)
        return calls


@pytest.fixture
def registry() -> ErrorRegistry:
    return ErrorRegistry(
        {
            "NEGATIVE_INPUT": "Value {value} must not be negative.",
            "NOT_FOUND": {"message": lambda params: f"{params['kind']} {params['id']} not found."},
            "UPSTREAM_DOWN": "Upstream service is unavailable.",
        }
    )


@pytest.fixture
def dispatcher() -> LocalDispatcher:
    return LocalDispatcher()


@pytest.fixture
def engine(dispatcher: LocalDispatcher) -> RequestEngine:
    return RequestEngine(dispatcher)


@pytest.fixture
def registrar(engine: RequestEngine) -> Registrar:
    return Registrar(engine)
