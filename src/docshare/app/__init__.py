"""docshare FastAPI application."""

from .main import create_app
from .settings import DocShareSettings

__all__ = ["create_app", "DocShareSettings"]
