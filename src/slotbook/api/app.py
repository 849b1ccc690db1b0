"""ASGI entrypoint: ``app`` built from environment settings."""

from .factory import create_app

app = create_app()
