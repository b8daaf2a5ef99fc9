"""CLI entry points for credbag."""

from credbag.cli import cli


def entrypoint() -> None:
    """Entry point for CLI."""
    cli()
