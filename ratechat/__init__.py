"""Chat service with per-sender token bucket rate limiting."""

__version__ = "0.1.0"
