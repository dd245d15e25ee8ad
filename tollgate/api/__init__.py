"""HTTP application."""

from tollgate.api.app import create_app

__all__ = ["create_app"]
