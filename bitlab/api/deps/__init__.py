"""Dependency injection providers."""
from .providers import get_batches, get_history, get_scheduler, get_services, get_settings

__all__ = ["get_batches", "get_history", "get_scheduler", "get_services", "get_settings"]
