"""HTTP interface for the quote-to-production engine."""

from .app import create_app

__all__ = ["create_app"]
