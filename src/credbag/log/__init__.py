"""Structured logging package."""

from .logger import reset_logging, sanitize_keys, setup_logging

__all__ = ["reset_logging", "sanitize_keys", "setup_logging"]
