"""Command-line interface for credbag."""

from .cli import cli

__all__ = ["cli"]
