"""FastAPI application package for the Stargate gateway."""

from .config import settings
from .logging import setup_logging

setup_logging(level=settings.effective_log_level)

__all__ = ["setup_logging"]
