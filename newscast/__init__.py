"""Resumable content-to-podcast workflow."""

__version__ = "0.1.0"
