"""Infrastructure adapters (logging, rate limiting)."""
