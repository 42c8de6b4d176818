"""Payload schemas for registered handlers.

A schema is either JSON Schema (as text or an already parsed mapping),
checked with jsonschema, or a pydantic model class.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from jsonschema.validators import validator_for
from pydantic import BaseModel, TypeAdapter, ValidationError


class CompiledSchema:
    """A schema compiled once and applied to many payloads."""

    def __init__(self, source: Any) -> None:
        self.source = source
        self._adapter: TypeAdapter[Any] | None = None
        self._validator: Any = None

        if isinstance(source, type) and issubclass(source, BaseModel):
            self._adapter = TypeAdapter(source)
            return

        schema = json.loads(source) if isinstance(source, (str, bytes)) else source
        if not isinstance(schema, Mapping):
            raise TypeError(f"Unsupported schema type: {type(source).__name__}")
        validator_cls = validator_for(schema)
        validator_cls.check_schema(schema)
        self._validator = validator_cls(schema)

    def errors(self, value: Any) -> list[str]:
        """Return human-readable validation errors, empty if value conforms."""
        if self._adapter is not None:
            try:
                self._adapter.validate_python(value)
            except ValidationError as e:
                return [
                    f"{'/'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
                    for err in e.errors()
                ]
            return []

        return [
            f"{'/'.join(str(part) for part in err.absolute_path) or '<root>'}: {err.message}"
            for err in sorted(self._validator.iter_errors(value), key=lambda err: str(list(err.path)))
        ]

    def is_valid(self, value: Any) -> bool:
        return not self.errors(value)


def compile_schema(source: Any) -> CompiledSchema | None:
    """Compile a schema, or return None when no schema was given."""
    if source is None or source == "" or source == {}:
        return None
    if isinstance(source, CompiledSchema):
        return source
    return CompiledSchema(source)
