"""CloudTree offline-first soil data core."""

__version__ = "1.0.0"
