"""garagesync: local-first garage data store with cloud backup."""

__version__ = "0.1.0"

__all__ = ["__version__"]
