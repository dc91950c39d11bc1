"""HTTP API for the Shop4Me order engine."""

from shop4me.api.app import create_app

__all__ = ["create_app"]
