"""Envelope Runtime CLI.

Offline checks for the files a service ships with.

Usage:
    envelope-runtime registry check errors.yaml            # List error codes
    envelope-runtime registry check errors.yaml -f json    # Same, as JSON
    envelope-runtime message check reply.json              # Validate a wire message
"""

from __future__ import annotations

import json
import sys

import click
from pydantic import ValidationError

from .errors import ErrorRegistry
from .message import Message

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _template_preview(registry: ErrorRegistry, code: str) -> str:
    try:
        return registry[code].render({})
    except (KeyError, IndexError, ValueError):
        # Templates that need parameters cannot be previewed without them
        return "<needs parameters>"


@click.group()
def main() -> None:
    """Envelope Runtime - message envelope protocol tooling."""


# =============================================================================
# Registry Commands
# =============================================================================


@main.group()
def registry() -> None:
    """Inspect error registries."""


@registry.command("check")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def registry_check(path: str, output_format: str) -> None:
    """Load an error registry file and list its codes.

    Examples:

        envelope-runtime registry check config/errors.yaml
    """
    try:
        loaded = ErrorRegistry.from_yaml(path)
    except Exception as e:
        click.echo(f"Error loading registry '{path}': {e}", err=True)
        sys.exit(1)

    entries = [{"code": code, "message": _template_preview(loaded, code)} for code in loaded]

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(entries, indent=2))
        return

    click.echo(f"{'Code':<30} {'Message':<50}")
    click.echo("-" * 82)
    for entry in entries:
        click.echo(f"{entry['code']:<30} {truncate(entry['message'], 50):<50}")
    click.echo(f"\n{len(entries)} error definitions")


# =============================================================================
# Message Commands
# =============================================================================


@main.group()
def message() -> None:
    """Inspect exported messages."""


@message.command("check")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def message_check(path: str) -> None:
    """Validate a JSON file against the exported message shape.

    Examples:

        envelope-runtime message check captured-reply.json
    """
    try:
        with open(path) as f:
            data = json.load(f)
        loaded = Message.from_export(data)
    except (json.JSONDecodeError, ValidationError) as e:
        click.echo(f"Invalid message '{path}': {e}", err=True)
        sys.exit(1)

    click.echo(f"Valid message: {loaded.summary()}")
    for error in loaded.get_errors():
        click.echo(f"  [{error.code}] {error.message}")


if __name__ == "__main__":
    main()
