"""
Items package.

Holds the item models, listing query helpers and the catalog that ties
the item store to the cache.

Modules of interest:
- models: Pydantic request/response models.
- query: Cache key derivation, ``limit``/id parsing and search filtering.
- catalog: CRUD operations with read-through listing and purge-on-write.
"""

from .catalog import ItemCatalog, ItemStore

__all__ = ["ItemCatalog", "ItemStore"]
