"""
Listing query helpers: cache key derivation, parameter validation and filtering.
"""

import re
from typing import Any, Dict, List, Optional

from shared.errors import InvalidIdError, InvalidLimitError


LISTING_CACHE_PREFIX = "items::"
LISTING_CACHE_PATTERN = LISTING_CACHE_PREFIX + "*"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def listing_cache_key(query_string: str) -> str:
    """Cache key for a listing request.

    Uses the raw query string, so ``?q=a&limit=1`` and ``?limit=1&q=a`` are
    cached separately.
    """
    return f"{LISTING_CACHE_PREFIX}{query_string}"


def parse_limit(raw: Optional[str]) -> Optional[int]:
    """Parse the ``limit`` query parameter; ``None`` when absent or blank."""
    if raw is None or not raw.strip():
        return None

    text = raw.strip()
    if not _INTEGER_RE.fullmatch(text):
        raise InvalidLimitError(raw)

    limit = int(text)
    if limit < 1:
        raise InvalidLimitError(raw)
    return limit


def parse_item_id(raw: Any) -> int:
    """Parse an item id path parameter into a non-negative integer."""
    text = str(raw).strip()
    if not _INTEGER_RE.fullmatch(text):
        raise InvalidIdError(raw)

    item_id = int(text)
    if item_id < 0:
        raise InvalidIdError(raw)
    return item_id


def matches_search(item: Dict[str, Any], term: str) -> bool:
    """Case-insensitive substring match on name or category."""
    name = item.get("name") or ""
    category = item.get("category") or ""
    return term in str(name).lower() or term in str(category).lower()


def filter_items(items: List[Dict[str, Any]], q: Optional[str]) -> List[Dict[str, Any]]:
    """Keep items whose name or category contains ``q``; everything when ``q`` is blank."""
    if q is None or not q.strip():
        return list(items)

    term = q.strip().lower()
    return [item for item in items if matches_search(item, term)]
