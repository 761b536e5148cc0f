"""Startup idea validation research pipeline."""

__version__ = "0.1.0"
