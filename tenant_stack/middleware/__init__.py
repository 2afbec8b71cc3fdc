"""HTTP middleware and exception handlers."""

from .app_middleware import setup_middleware

__all__ = ["setup_middleware"]
