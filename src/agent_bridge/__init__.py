"""Expose a command-line coding agent as remotely callable operations."""

__version__ = "0.1.0"
