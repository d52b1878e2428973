"""HTTP API: dividend and ICO routers, app factory."""

from backend_tokensale.api_server.server import create_app

__all__ = ["create_app"]
