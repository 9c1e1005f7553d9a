"""
Catalog service for the Item Catalog.
"""

from typing import Any, Dict, Optional

from fastapi import Body, Query, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .cache import CacheService
from .items import ItemCatalog, ItemStore
from .items.models import CatalogStatsResponse, Item, ItemDeleteResponse, ItemListResponse
from .ratelimit import FixedWindowRateLimiter, RateLimitMiddleware
from .store import JsonItemStore


SERVICE_NAME = "catalog"
SERVICE_PORT = 3001

RATE_LIMIT_EXEMPT_PATHS = ("/health", "/metrics")

ERROR_RESPONSES = {
    400: {"description": "Validation error"},
    404: {"description": "Item or data file not found"},
    500: {"description": "Item store failure"},
}


class CatalogService(BaseService):
    """Catalog service implementation.

    The cache, item store and rate limiter are built from configuration
    unless passed in, so tests can inject isolated instances.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache: Optional[CacheService] = None,
        store: Optional[ItemStore] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
    ):
        config = config or get_config(SERVICE_NAME, SERVICE_PORT)
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_seconds,
        )
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        self.cache = cache or CacheService(
            self.config.redis_url or None,
            default_ttl=self.config.cache_default_ttl,
            metrics=self.metrics,
            connect_timeout=self.config.redis_connect_timeout,
        )
        self.store = store or JsonItemStore(
            self.config.data_path,
            max_retries=self.config.store_max_retries,
            retry_delay=self.config.store_retry_delay,
            metrics=self.metrics,
        )
        self.catalog = ItemCatalog(self.store, self.cache, cache_ttl=self.config.cache_default_ttl)

        self._setup_catalog_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.catalog_service = self

    def _setup_service_middleware(self):
        self.app.add_middleware(
            RateLimitMiddleware,
            rate_limiter=self.rate_limiter,
            exempt_paths=RATE_LIMIT_EXEMPT_PATHS,
        )

    def _setup_catalog_routes(self):
        """Set up catalog-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Item Catalog - Catalog Service",
                "version": "1.0.0",
                "capabilities": ["items", "caching", "rate_limiting"]
            }

        @self.app.get("/items", response_model=ItemListResponse, responses=ERROR_RESPONSES)
        async def list_items(
            request: Request,
            q: Optional[str] = Query(None, description="Case-insensitive search on name or category"),
            limit: Optional[str] = Query(None, description="Maximum number of items (>= 1)"),
        ):
            """List items, served read-through from the cache."""
            return await self.catalog.list_items(request.url.query, q=q, limit=limit)

        @self.app.get("/items/{item_id}", response_model=Item, responses=ERROR_RESPONSES)
        async def get_item(item_id: str):
            """Get a single item."""
            return await self.catalog.get_item(item_id)

        @self.app.post("/items", status_code=201, response_model=Item, responses=ERROR_RESPONSES)
        async def create_item(payload: Any = Body(None)):
            """Create an item."""
            return await self.catalog.create_item(payload)

        @self.app.put("/items/{item_id}", response_model=Item, responses=ERROR_RESPONSES)
        async def update_item(item_id: str, payload: Any = Body(None)):
            """Update an item."""
            return await self.catalog.update_item(item_id, payload)

        @self.app.delete("/items/{item_id}", response_model=ItemDeleteResponse, responses=ERROR_RESPONSES)
        async def delete_item(item_id: str):
            """Delete an item."""
            return await self.catalog.delete_item(item_id)

        @self.app.get("/stats", response_model=CatalogStatsResponse, responses=ERROR_RESPONSES)
        async def get_stats():
            """Catalog statistics."""
            return await self.catalog.get_stats()

        @self.app.get("/cache/stats")
        async def get_cache_stats():
            """Cache tier and hit/miss counters."""
            return self.cache.get_stats()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check catalog service dependencies."""
        dependencies = {}

        # Memory fallback keeps the service healthy without Redis
        dependencies["redis"] = "ok" if await self.cache.health_check() else "memory_fallback"

        try:
            dependencies["store"] = "ok" if await self.store.health_check() else "error"
        except OSError:
            dependencies["store"] = "error"

        return dependencies

    async def start(self):
        """Start catalog service components."""
        self.cache.start()
        self.logger.info("Catalog service started", data_path=self.config.data_path)

    async def stop(self):
        """Stop catalog service components."""
        await self.cache.stop()
        self.logger.info("Catalog service stopped")


def create_app(config: Optional[ServiceConfig] = None, **components) -> Any:
    """Create catalog service application."""
    service = CatalogService(config, **components)
    return service.app


if __name__ == "__main__":
    service = CatalogService()
    service.run()
