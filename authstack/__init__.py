"""authstack: FastAPI + SQLAlchemy backend with database-backed session auth."""

from .api.app import create_app
from .core.settings import Settings

__all__ = ["Settings", "create_app"]

__version__ = "0.1.0"
