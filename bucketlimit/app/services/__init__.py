"""Services package for the limiter.

This package provides:
- Token bucket engine with conditional-commit retry loop
- Lazy refill arithmetic
- Policy resolution with a TTL cache
"""
