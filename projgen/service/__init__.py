"""Service mode exposing projgen over HTTP."""

from .app import create_app, serve


__all__ = ["create_app", "serve"]
