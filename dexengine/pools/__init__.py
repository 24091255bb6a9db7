"""Pool management package."""

from .registry import PoolRegistry

__all__ = ["PoolRegistry"]
