"""
Item catalog operations with read-through caching of listings.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from shared.errors import DataReadError, ItemNotFoundError, ValidationError
from shared.logging import get_logger
from shared.time_utils import utc_now_iso

from ..cache import CacheService
from .models import ItemCreateRequest, ItemListResponse, ItemUpdateRequest
from .query import (
    LISTING_CACHE_PATTERN,
    filter_items,
    listing_cache_key,
    parse_item_id,
    parse_limit,
)


DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_PRICE = 0


class ItemStore(Protocol):
    """Backing collection the catalog reads from and writes to."""

    async def load_all(self) -> List[Dict[str, Any]]:
        ...

    async def persist_all(self, items: List[Dict[str, Any]]) -> None:
        ...

    async def health_check(self) -> bool:
        ...


class ItemCatalog:
    """CRUD over the item collection.

    Listings are served read-through from the cache under
    ``items::<query string>``. Every successful mutation purges
    ``items::*`` before returning.
    """

    def __init__(self, store: ItemStore, cache: CacheService, cache_ttl: Optional[int] = None):
        self.store = store
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.logger = get_logger("catalog.items")
        # Serializes load-modify-persist cycles within this process
        self._write_lock = asyncio.Lock()

    async def list_items(self, query_string: str, q: Optional[str] = None,
                         limit: Optional[str] = None) -> Dict[str, Any]:
        """Filtered, limited view of the collection."""
        limit_value = parse_limit(limit)
        cache_key = listing_cache_key(query_string)

        cached = await self.cache.get(cache_key)
        if cached is not None:
            self.logger.debug("Listing cache hit", cache_key=cache_key)
            return cached

        items = await self.store.load_all()
        results = filter_items(items, q)
        if limit_value is not None:
            results = results[:limit_value]

        response = {
            "items": results,
            "total": len(results),
            "timestamp": utc_now_iso(),
        }

        # Never cache a listing the response model would reject
        try:
            ItemListResponse.model_validate(response)
        except PydanticValidationError as e:
            self.logger.error("Stored items failed validation", cache_key=cache_key,
                              errors=e.error_count())
            raise DataReadError("Failed to read items data: invalid item record")

        await self.cache.set(cache_key, response, self.cache_ttl)
        self.logger.debug("Listing cached", cache_key=cache_key, total=len(results))
        return response

    async def get_item(self, raw_id: Any) -> Dict[str, Any]:
        item_id = parse_item_id(raw_id)
        items = await self.store.load_all()
        return items[self._index_of(items, item_id)]

    async def create_item(self, payload: Any) -> Dict[str, Any]:
        """Validate and append a new item."""
        if not isinstance(payload, dict) or not payload:
            raise ValidationError("INVALID_ITEM_DATA", "Invalid item data")

        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("MISSING_NAME", "Item name is required")

        try:
            request = ItemCreateRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError("INVALID_ITEM_DATA", "Invalid item data", _validation_details(e))

        async with self._write_lock:
            items = await self.store.load_all()
            new_item = {
                "id": _next_id(items),
                "name": request.name.strip(),
                "category": request.category or DEFAULT_CATEGORY,
                "price": request.price if request.price is not None else DEFAULT_PRICE,
                "createdAt": utc_now_iso(),
                "updatedAt": None,
            }
            items.append(new_item)
            await self.store.persist_all(items)

        await self._invalidate_listings()
        self.logger.info("Item created", item_id=new_item["id"], name=new_item["name"])
        return new_item

    async def update_item(self, raw_id: Any, payload: Any) -> Dict[str, Any]:
        """Apply a partial update; ``id`` and ``createdAt`` never change."""
        item_id = parse_item_id(raw_id)

        if not isinstance(payload, dict) or not payload:
            raise ValidationError("INVALID_UPDATE_DATA", "Invalid update data")

        try:
            request = ItemUpdateRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError("INVALID_UPDATE_DATA", "Invalid update data", _validation_details(e))

        updates = request.model_dump(include=request.model_fields_set)
        if not updates:
            raise ValidationError("INVALID_UPDATE_DATA", "Invalid update data")

        if "name" in updates:
            if updates["name"] is None or not updates["name"].strip():
                raise ValidationError("MISSING_NAME", "Item name is required")
            updates["name"] = updates["name"].strip()

        async with self._write_lock:
            items = await self.store.load_all()
            index = self._index_of(items, item_id)

            updated = {**items[index], **updates, "id": item_id, "updatedAt": utc_now_iso()}
            items[index] = updated
            await self.store.persist_all(items)

        await self._invalidate_listings()
        self.logger.info("Item updated", item_id=item_id, fields=sorted(updates))
        return updated

    async def delete_item(self, raw_id: Any) -> Dict[str, Any]:
        item_id = parse_item_id(raw_id)

        async with self._write_lock:
            items = await self.store.load_all()
            index = self._index_of(items, item_id)
            deleted = items.pop(index)
            await self.store.persist_all(items)

        await self._invalidate_listings()
        self.logger.info("Item deleted", item_id=item_id)
        return {"message": "Item deleted successfully", "deletedItem": deleted}

    async def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts over the whole collection."""
        items = await self.store.load_all()

        prices = [item["price"] for item in items if isinstance(item.get("price"), (int, float))]
        categories: Dict[str, int] = {}
        for item in items:
            category = item.get("category") or DEFAULT_CATEGORY
            categories[category] = categories.get(category, 0) + 1

        return {
            "total": len(items),
            "averagePrice": round(sum(prices) / len(prices), 2) if prices else 0.0,
            "categories": categories,
            "timestamp": utc_now_iso(),
        }

    async def _invalidate_listings(self) -> None:
        await self.cache.invalidate(LISTING_CACHE_PATTERN)

    @staticmethod
    def _index_of(items: List[Dict[str, Any]], item_id: int) -> int:
        for index, item in enumerate(items):
            if item.get("id") == item_id:
                return index
        raise ItemNotFoundError(item_id)


def _next_id(items: List[Dict[str, Any]]) -> int:
    ids = [item["id"] for item in items if isinstance(item.get("id"), int)]
    return max(ids, default=0) + 1


def _validation_details(error: PydanticValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in error.errors()
        ]
    }
