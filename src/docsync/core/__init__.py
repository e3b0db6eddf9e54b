"""Core helpers shared by the sync services."""

from .async_utils import run_sync

__all__ = ["run_sync"]
