"""
Catalog Service package.

This package serves a small item catalog over HTTP. It provides:

- app.main: API surface for item CRUD, listing, stats and health.
- app.items: Item models, query parsing and the read-through catalog.
- app.cache: Redis cache with in-memory fallback.
- app.store: JSON file persistence for the item collection.
- app.ratelimit: Per-client request budgets.

Guidelines:
- Listing reads go through the cache; every mutation purges ``items::*``.
- Cache failures are never surfaced to callers.
"""
