"""Trade journal FastAPI application."""

from .main import create_app
from .settings import JournalSettings

__all__ = ["create_app", "JournalSettings"]
