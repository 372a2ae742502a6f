"""HTTP surface of the user import pipeline."""

from user_import.api.app import API_PREFIX, create_app

__all__ = ["API_PREFIX", "create_app"]
