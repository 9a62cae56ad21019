"""Daily per-user quota enforcement backed by a shared Redis counter store."""

__version__ = "1.0.0"
