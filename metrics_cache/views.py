"""
Typed namespaces of the metrics cache.

Each view holds one kind of pydantic record (pool volume, protocol user
metrics, chain aggregates) under its own key space, separate from the
generic entry store. Views do no locking of their own: ``CacheStore``
serializes access to them together with the generic store.
"""
from typing import Any, Callable, Dict, Generic, Mapping, Optional, Type, TypeVar, Union

import structlog
from pydantic import BaseModel

from .exceptions import SerializationError
from .schema import AggregatedMetrics, MetricsRecord, UserMetricsEntry, VolumeEntry

logger = structlog.get_logger()

R = TypeVar('R', bound=MetricsRecord)

MetricsData = Union[Mapping[str, Any], BaseModel]


def volume_key(protocol: str, pool: str) -> str:
    """Composite key of a pool's volume record."""
    return f"{protocol}:{pool}"


def user_metrics_key(protocol: str) -> str:
    return protocol


def aggregated_key(chain: str) -> str:
    return chain


class TypedView(Generic[R]):
    """A key -> record map for one record type."""

    def __init__(
        self,
        name: str,
        record_type: Type[R],
        clock: Callable[[], float],
        ttl: Optional[float] = None,
    ):
        self.name = name
        self.record_type = record_type
        self.ttl = ttl
        self._clock = clock
        self._records: Dict[str, R] = {}

    def __len__(self) -> int:
        return len(self._records)

    def put(self, key: str, data: MetricsData, **identity: str) -> R:
        """
        Validate ``data`` into a record and store it under ``key``.

        Args:
            key: Record key inside this view
            data: Numeric fields of the record, as a mapping or model
            identity: Identifying fields (protocol, pool, chain)

        Returns:
            A copy of the stored record

        Raises:
            SerializationError: If ``data`` does not fit the record type
        """
        now = self._clock()
        try:
            fields = data.model_dump() if isinstance(data, BaseModel) else dict(data)
            fields.update(identity)
            fields.update(
                id=key,
                timestamp=now,
                created_at=now,
                updated_at=now,
                expires_at=now + self.ttl if self.ttl is not None else None,
            )
            record = self.record_type.model_validate(fields)
        except (TypeError, ValueError) as e:
            # ValidationError is a ValueError
            raise SerializationError(key, f"invalid {self.name} record: {e}") from e

        self._records[key] = record
        logger.debug("view_record_stored", view=self.name, key=key)
        return record.model_copy(deep=True)

    def get(self, key: str) -> Optional[R]:
        """Return a copy of the record under ``key``, or None when absent or expired."""
        record = self._records.get(key)
        if record is None:
            return None
        if record.expires_at is not None and record.expires_at <= self._clock():
            return None
        return record.model_copy(deep=True)

    def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def clear(self) -> None:
        self._records.clear()

    def purge_expired(self, now: float) -> int:
        """Remove records whose ``expires_at`` has passed. Records without one never expire."""
        expired = [
            key for key, record in self._records.items()
            if record.expires_at is not None and record.expires_at < now
        ]
        for key in expired:
            del self._records[key]
        return len(expired)


def build_views(clock: Callable[[], float], ttl: Optional[float] = None):
    """Create the volume, user metrics and aggregated views of one store."""
    return (
        TypedView("volume", VolumeEntry, clock, ttl),
        TypedView("user_metrics", UserMetricsEntry, clock, ttl),
        TypedView("aggregated", AggregatedMetrics, clock, ttl),
    )
