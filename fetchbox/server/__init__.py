"""
fetchbox HTTP API Server.

Usage:
    # Start server
    uvicorn fetchbox.server:app

    # Or programmatically
    from fetchbox.server import app, create_app

    # Custom runtime (tests, embedding)
    app = create_app(runtime)
"""

from fetchbox.server.app import app, create_app

__all__ = ["app", "create_app"]
