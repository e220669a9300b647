"""Limiter application package."""
