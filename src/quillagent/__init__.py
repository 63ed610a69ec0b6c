"""Streaming tool-calling chat agent for content workspaces."""

__version__ = "0.3.0"

__all__ = ["__version__"]
