"""
Persistence package for the Catalog Service.

The item collection is a JSON array on disk, read and written whole.
"""

from .json_store import JsonItemStore

__all__ = ["JsonItemStore"]
