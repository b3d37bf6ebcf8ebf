"""Health check module."""

from posttown.health.router import router


__all__ = ["router"]
