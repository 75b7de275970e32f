"""lpg: manage local, disposable PostgreSQL instances."""

from .cli import cli

__all__ = ["cli", "main"]


def main() -> None:
    """Entry point for the lpg CLI."""
    cli(prog_name="lpg")
