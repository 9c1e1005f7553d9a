"""
Unit tests for ItemCatalog read-through listing and CRUD.
"""

import copy

import pytest
from unittest.mock import AsyncMock

from service_catalog.app.cache import CacheService
from service_catalog.app.items import ItemCatalog
from shared.errors import (
    DataReadError,
    DataWriteError,
    InvalidIdError,
    InvalidLimitError,
    ItemNotFoundError,
    ValidationError,
)


SAMPLE_ITEMS = [
    {"id": 1, "name": "Laptop", "category": "Electronics", "price": 999.99,
     "createdAt": "2024-01-01T00:00:00.000Z", "updatedAt": None},
    {"id": 2, "name": "Desk Lamp", "category": "Furniture", "price": 45,
     "createdAt": "2024-01-02T00:00:00.000Z", "updatedAt": None},
]


class InMemoryItemStore:
    """Item store stub that counts reads and writes."""

    def __init__(self, items=None):
        self.items = copy.deepcopy(items or [])
        self.reads = 0
        self.writes = 0

    async def load_all(self):
        self.reads += 1
        return copy.deepcopy(self.items)

    async def persist_all(self, items):
        self.writes += 1
        self.items = copy.deepcopy(items)

    async def health_check(self):
        return True


class TestListing:
    """Test cases for read-through listing."""

    @pytest.fixture
    def store(self):
        return InMemoryItemStore(SAMPLE_ITEMS)

    @pytest.fixture
    def cache(self):
        return CacheService(None)

    @pytest.fixture
    def catalog(self, store, cache):
        """Create ItemCatalog over the stub store and a memory cache."""
        return ItemCatalog(store, cache, cache_ttl=60)

    @pytest.mark.asyncio
    async def test_list_all(self, catalog):
        result = await catalog.list_items("")

        assert [item["name"] for item in result["items"]] == ["Laptop", "Desk Lamp"]
        assert result["total"] == 2
        assert result["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_read_through(self, catalog, store, cache):
        """The second identical request is served from the cache."""
        first = await catalog.list_items("")
        second = await catalog.list_items("")

        assert first == second
        assert store.reads == 1
        assert await cache.get("items::") == first

    @pytest.mark.asyncio
    async def test_distinct_queries_cached_separately(self, catalog, store):
        await catalog.list_items("q=lamp", q="lamp")
        await catalog.list_items("limit=1", limit="1")
        await catalog.list_items("q=lamp", q="lamp")

        assert store.reads == 2

    @pytest.mark.asyncio
    async def test_search_and_limit(self, catalog):
        result = await catalog.list_items("q=e&limit=1", q="e", limit="1")

        assert result["total"] == 1
        assert result["items"][0]["name"] == "Laptop"

    @pytest.mark.asyncio
    async def test_limit_larger_than_collection(self, catalog):
        result = await catalog.list_items("limit=50", limit="50")

        assert result["total"] == 2

    @pytest.mark.asyncio
    async def test_empty_collection_is_cached(self, cache):
        store = InMemoryItemStore([])
        catalog = ItemCatalog(store, cache)

        assert (await catalog.list_items(""))["total"] == 0
        assert (await catalog.list_items(""))["total"] == 0
        assert store.reads == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", ["0", "-1", "abc", "2.5"])
    async def test_invalid_limit_touches_nothing(self, store, limit):
        """Limit validation happens before the cache or store is consulted."""
        cache = AsyncMock()
        catalog = ItemCatalog(store, cache)

        with pytest.raises(InvalidLimitError):
            await catalog.list_items(f"limit={limit}", limit=limit)

        cache.get.assert_not_called()
        cache.set.assert_not_called()
        assert store.reads == 0

    @pytest.mark.asyncio
    async def test_cache_written_with_configured_ttl(self, store):
        cache = AsyncMock()
        cache.get.return_value = None
        catalog = ItemCatalog(store, cache, cache_ttl=30)

        result = await catalog.list_items("q=lamp", q="lamp")

        cache.get.assert_awaited_once_with("items::q=lamp")
        cache.set.assert_awaited_once_with("items::q=lamp", result, 30)

    @pytest.mark.asyncio
    async def test_invalid_records_are_not_cached(self, cache):
        """A listing that fails item validation is an error every time, never a cache entry."""
        store = InMemoryItemStore(SAMPLE_ITEMS + [{"id": 3, "category": "Tools"}])
        catalog = ItemCatalog(store, cache)

        for _ in range(2):
            with pytest.raises(DataReadError) as exc_info:
                await catalog.list_items("")
            assert exc_info.value.status_code == 500

        assert store.reads == 2
        assert await cache.get("items::") is None

    @pytest.mark.asyncio
    async def test_invalid_records_filtered_out_still_cached(self, cache):
        store = InMemoryItemStore(SAMPLE_ITEMS + [{"id": 3, "category": "Tools"}])
        catalog = ItemCatalog(store, cache)

        result = await catalog.list_items("q=lamp", q="lamp")

        assert result["total"] == 1
        assert await cache.get("items::q=lamp") == result


class TestMutations:
    """Test cases for create, update and delete."""

    @pytest.fixture
    def store(self):
        return InMemoryItemStore(SAMPLE_ITEMS)

    @pytest.fixture
    def cache(self):
        return CacheService(None)

    @pytest.fixture
    def catalog(self, store, cache):
        return ItemCatalog(store, cache)

    @pytest.mark.asyncio
    async def test_create_item(self, catalog, store):
        item = await catalog.create_item({"name": "  Office Chair ", "category": "Furniture", "price": 150})

        assert item["id"] == 3
        assert item["name"] == "Office Chair"
        assert item["category"] == "Furniture"
        assert item["price"] == 150
        assert item["createdAt"].endswith("Z")
        assert item["updatedAt"] is None
        assert store.items[-1] == item
        assert store.writes == 1

    @pytest.mark.asyncio
    async def test_create_defaults(self, catalog):
        item = await catalog.create_item({"name": "Widget"})

        assert item["category"] == "Uncategorized"
        assert item["price"] == 0

    @pytest.mark.asyncio
    async def test_create_in_empty_collection_starts_at_one(self, cache):
        catalog = ItemCatalog(InMemoryItemStore([]), cache)

        assert (await catalog.create_item({"name": "First"}))["id"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, {}, [], "text"])
    async def test_create_invalid_payload(self, catalog, payload):
        with pytest.raises(ValidationError) as exc_info:
            await catalog.create_item(payload)

        assert exc_info.value.code == "INVALID_ITEM_DATA"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"category": "Tools"}, {"name": "   "}, {"name": 5}])
    async def test_create_missing_name(self, catalog, payload):
        with pytest.raises(ValidationError) as exc_info:
            await catalog.create_item(payload)

        assert exc_info.value.code == "MISSING_NAME"

    @pytest.mark.asyncio
    async def test_create_invalid_price(self, catalog, store):
        with pytest.raises(ValidationError) as exc_info:
            await catalog.create_item({"name": "Widget", "price": "cheap"})

        assert exc_info.value.code == "INVALID_ITEM_DATA"
        assert exc_info.value.details["errors"][0]["field"].startswith("price")
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_update_item(self, catalog, store):
        updated = await catalog.update_item("1", {"price": 899, "id": 77, "createdAt": "x"})

        assert updated["id"] == 1
        assert updated["price"] == 899
        assert updated["name"] == "Laptop"
        assert updated["createdAt"] == "2024-01-01T00:00:00.000Z"
        assert updated["updatedAt"] is not None
        assert store.items[0] == updated

    @pytest.mark.asyncio
    async def test_update_trims_name(self, catalog):
        updated = await catalog.update_item(2, {"name": " Floor Lamp "})

        assert updated["name"] == "Floor Lamp"

    @pytest.mark.asyncio
    async def test_update_ignores_unknown_fields(self, catalog, store):
        """Only name, category and price are writable; other keys are dropped."""
        updated = await catalog.update_item(1, {"price": 899, "color": "silver"})

        assert updated["price"] == 899
        assert "color" not in updated
        assert "color" not in store.items[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, {}, {"unknown": 1}, {"price": "free"}])
    async def test_update_invalid_payload(self, catalog, payload):
        with pytest.raises(ValidationError) as exc_info:
            await catalog.update_item(1, payload)

        assert exc_info.value.code == "INVALID_UPDATE_DATA"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"name": ""}, {"name": None}])
    async def test_update_blank_name(self, catalog, payload):
        with pytest.raises(ValidationError) as exc_info:
            await catalog.update_item(1, payload)

        assert exc_info.value.code == "MISSING_NAME"

    @pytest.mark.asyncio
    async def test_update_missing_item(self, catalog):
        with pytest.raises(ItemNotFoundError) as exc_info:
            await catalog.update_item(99, {"name": "Ghost"})

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Item with ID 99 not found"

    @pytest.mark.asyncio
    async def test_delete_item(self, catalog, store):
        result = await catalog.delete_item("2")

        assert result["message"] == "Item deleted successfully"
        assert result["deletedItem"]["name"] == "Desk Lamp"
        assert [item["id"] for item in store.items] == [1]

    @pytest.mark.asyncio
    async def test_delete_invalid_id(self, catalog):
        with pytest.raises(InvalidIdError):
            await catalog.delete_item("-1")

    @pytest.mark.asyncio
    async def test_get_item(self, catalog):
        assert (await catalog.get_item("1"))["name"] == "Laptop"

        with pytest.raises(ItemNotFoundError):
            await catalog.get_item("5")

    @pytest.mark.asyncio
    async def test_ids_keep_increasing_after_delete(self, catalog):
        await catalog.delete_item(1)

        assert (await catalog.create_item({"name": "Monitor"}))["id"] == 3


class TestInvalidation:
    """Test cases for listing invalidation on mutation."""

    @pytest.fixture
    def store(self):
        return InMemoryItemStore(SAMPLE_ITEMS)

    @pytest.fixture
    def cache(self):
        return CacheService(None)

    @pytest.fixture
    def catalog(self, store, cache):
        return ItemCatalog(store, cache)

    @pytest.mark.asyncio
    async def test_create_invalidates_listings(self, catalog, cache):
        await catalog.list_items("")
        await catalog.list_items("q=lamp", q="lamp")
        await cache.set("other", {"kept": True})

        await catalog.create_item({"name": "Floor Lamp", "category": "Furniture"})

        assert await cache.get("items::") is None
        assert await cache.get("items::q=lamp") is None
        assert await cache.get("other") == {"kept": True}

    @pytest.mark.asyncio
    async def test_listing_reflects_update(self, catalog, store):
        before = await catalog.list_items("")
        await catalog.update_item(1, {"price": 10})
        after = await catalog.list_items("")

        assert before["items"][0]["price"] == 999.99
        assert after["items"][0]["price"] == 10
        assert store.reads == 3

    @pytest.mark.asyncio
    async def test_listing_reflects_delete(self, catalog):
        await catalog.list_items("")
        await catalog.delete_item(1)

        assert (await catalog.list_items(""))["total"] == 1

    @pytest.mark.asyncio
    async def test_failed_mutation_keeps_cache(self, store, cache):
        """Nothing is invalidated when persisting fails."""
        store.persist_all = AsyncMock(side_effect=DataWriteError("Failed to write items data: disk full"))
        catalog = ItemCatalog(store, cache)
        await catalog.list_items("")

        with pytest.raises(DataWriteError):
            await catalog.create_item({"name": "Widget"})

        assert await cache.get("items::") is not None

    @pytest.mark.asyncio
    async def test_validation_failure_keeps_cache(self, catalog, cache):
        await catalog.list_items("")

        with pytest.raises(ValidationError):
            await catalog.create_item({})

        assert await cache.get("items::") is not None

    @pytest.mark.asyncio
    async def test_invalidation_runs_after_persist(self, store):
        calls = []
        cache = AsyncMock()

        async def persist(items):
            calls.append("persist")

        async def invalidate(key):
            calls.append(("invalidate", key))

        store.persist_all = persist
        cache.invalidate.side_effect = invalidate
        catalog = ItemCatalog(store, cache)

        await catalog.delete_item(1)

        assert calls == ["persist", ("invalidate", "items::*")]


class TestStats:
    """Test cases for catalog statistics."""

    @pytest.mark.asyncio
    async def test_stats(self):
        store = InMemoryItemStore(SAMPLE_ITEMS + [
            {"id": 3, "name": "Cable", "category": None, "price": 5},
        ])
        catalog = ItemCatalog(store, CacheService(None))

        stats = await catalog.get_stats()

        assert stats["total"] == 3
        assert stats["averagePrice"] == round((999.99 + 45 + 5) / 3, 2)
        assert stats["categories"] == {"Electronics": 1, "Furniture": 1, "Uncategorized": 1}

    @pytest.mark.asyncio
    async def test_stats_empty(self):
        catalog = ItemCatalog(InMemoryItemStore([]), CacheService(None))

        stats = await catalog.get_stats()

        assert stats["total"] == 0
        assert stats["averagePrice"] == 0.0
        assert stats["categories"] == {}
