"""HTTP middleware."""

from .auth import AuthMiddleware, authenticate_websocket

__all__ = ["AuthMiddleware", "authenticate_websocket"]
