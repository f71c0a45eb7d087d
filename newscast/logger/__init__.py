"""Logging helpers for the newscast project."""

from .logging_decorator import setup_logging, log_function, format_fields

__all__ = ["setup_logging", "log_function", "format_fields"]
