"""HTTP surface: FastAPI app, routes and middleware."""

from receiver.api.app import create_app

__all__ = ["create_app"]
