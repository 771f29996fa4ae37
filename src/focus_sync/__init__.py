# src/focus_sync/__init__.py

"""Client-side task synchronization with optimistic locking."""

__version__ = "0.1.0"
