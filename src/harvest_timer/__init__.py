"""Harvest timer power-up for board cards, served over MCP."""

from .server import main

__all__ = ["main"]
