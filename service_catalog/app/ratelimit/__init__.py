"""
Rate limiting package for the Catalog Service.

Holds the fixed-window limiter and the middleware that enforces a
per-client request budget.
"""

from .fixed_window import FixedWindowRateLimiter, RateLimitMiddleware

__all__ = ["FixedWindowRateLimiter", "RateLimitMiddleware"]
