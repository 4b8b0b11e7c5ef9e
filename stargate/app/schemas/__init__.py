"""Pydantic response models."""
from .system import ComponentHealth, HealthResponse

__all__ = ["ComponentHealth", "HealthResponse"]
