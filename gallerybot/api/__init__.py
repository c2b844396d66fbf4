"""HTTP surface of the bot."""

from .app import create_app

__all__ = ["create_app"]
