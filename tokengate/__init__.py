"""Distributed token bucket rate limiting backed by Redis."""

__version__ = "0.1.0"
