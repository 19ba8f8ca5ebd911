"""Error taxonomy for the metrics cache.

Writes fail loud, reads fail soft: a ``StorageFailure`` propagates to the
caller of ``set`` and the typed setters, while a ``ReadFailure`` is caught
inside the store and reported as a miss.
"""


class CacheError(Exception):
    """Base class for all metrics cache errors."""
    pass


class StorageFailure(CacheError):
    """Raised when a value cannot be written into the cache."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Failed to store '{key}': {message}")


class SerializationError(StorageFailure):
    """Raised when a value is not plain, JSON-compatible data."""
    pass


class ReadFailure(CacheError):
    """Raised when a stored snapshot cannot be turned back into a value."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Failed to read '{key}': {message}")
