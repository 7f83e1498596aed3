"""Helmsman - an interactive console coding agent."""

__version__ = "0.1.0"

from helmsman.config import Config

__all__ = ["Config", "__version__"]
