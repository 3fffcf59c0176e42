# inflight/api/__init__.py
"""HTTP API (Starlette) served by uvicorn."""

from inflight.api.app import create_app

__all__ = ["create_app"]
