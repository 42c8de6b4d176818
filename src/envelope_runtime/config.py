"""Protocol configuration.

Holds the handful of conventions shared by the request engine and the
registration adapter: where context travels inside dispatcher arguments,
which argument fields are routing-only, and whether payloads are logged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ProtocolConfig:
    """Conventions for how envelopes ride on dispatcher arguments."""

    # Reserved argument key carrying the opaque context
    context_key: str = "__"

    # Argument fields that only matter to the dispatcher
    reserved_fields: tuple[str, ...] = ("role", "cmd", "internal")

    # Any argument name containing this marker is dispatcher-internal
    routing_marker: str = "$"

    # Log full payloads at DEBUG instead of a summary
    log_payloads: bool = False

    def is_routing_field(self, name: str) -> bool:
        """Check if an argument name is routing data rather than payload."""
        return (
            self.routing_marker in name
            or name in self.reserved_fields
            or name == self.context_key
        )

    @classmethod
    def from_env(cls) -> ProtocolConfig:
        """Build a config from ENVELOPE_* environment variables."""
        defaults = cls()
        return cls(
            context_key=os.getenv("ENVELOPE_CONTEXT_KEY", defaults.context_key),
            log_payloads=os.getenv("ENVELOPE_LOG_PAYLOADS", "").lower() in ("1", "true", "yes"),
        )


DEFAULT_CONFIG = ProtocolConfig()
