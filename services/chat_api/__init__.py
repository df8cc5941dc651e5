"""Chat direction HTTP API service."""

from .server import ChatApiServer

__all__ = ["ChatApiServer"]
