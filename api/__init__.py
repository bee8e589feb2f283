"""API Package.

FastAPI server for the banking services.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
