"""Market data providers: adapters, rate limiter and fallback router."""
