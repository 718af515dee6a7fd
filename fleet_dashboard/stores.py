"""
Copy-on-write bounded sequences for telemetry history and the alert log.

Every mutating operation returns a new store; an instance handed to a
subscriber never changes afterwards.
"""
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .models import Alert, TelemetrySample

HISTORY_LIMIT = 50
ALERTS_LIMIT = 100


class HistoryStore:
    """Per-device samples, newest first, capped at `limit` per device."""

    __slots__ = ("_by_device", "limit")

    def __init__(self, by_device: Optional[Mapping[str, Tuple[TelemetrySample, ...]]] = None,
                 limit: int = HISTORY_LIMIT):
        self._by_device: Mapping[str, Tuple[TelemetrySample, ...]] = MappingProxyType(dict(by_device or {}))
        self.limit = limit

    def append(self, device_id: str, sample: TelemetrySample) -> "HistoryStore":
        return self.extend([(device_id, sample)])

    def extend(self, samples: Iterable[Tuple[str, TelemetrySample]]) -> "HistoryStore":
        """Apply a batch of appends with a single copy of the outer mapping."""
        updated: Dict[str, Tuple[TelemetrySample, ...]] = dict(self._by_device)
        for device_id, sample in samples:
            history = updated.get(device_id, ())
            updated[device_id] = (sample,) + history[: self.limit - 1]
        return HistoryStore(updated, self.limit)

    def latest(self, device_id: str) -> Optional[TelemetrySample]:
        history = self._by_device.get(device_id)
        return history[0] if history else None

    def get(self, device_id: str) -> Tuple[TelemetrySample, ...]:
        return self._by_device.get(device_id, ())

    def device_ids(self) -> List[str]:
        return list(self._by_device)

    def as_dict(self) -> Dict[str, Tuple[TelemetrySample, ...]]:
        return dict(self._by_device)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._by_device

    def __len__(self) -> int:
        return len(self._by_device)

    def __repr__(self) -> str:
        return f"HistoryStore(devices={len(self)}, limit={self.limit})"


class AlertLog:
    """Alerts newest first, capped at `limit`."""

    __slots__ = ("_alerts", "limit")

    def __init__(self, alerts: Iterable[Alert] = (), limit: int = ALERTS_LIMIT):
        self._alerts: Tuple[Alert, ...] = tuple(alerts)[:limit]
        self.limit = limit

    def append(self, alert: Alert) -> "AlertLog":
        return AlertLog((alert,) + self._alerts[: self.limit - 1], self.limit)

    def extend(self, alerts: Iterable[Alert]) -> "AlertLog":
        """Append alerts in the order given; the last one ends up first."""
        newest_first = tuple(reversed(list(alerts)))
        return AlertLog(newest_first + self._alerts, self.limit)

    def clear(self) -> "AlertLog":
        return AlertLog((), self.limit)

    def __iter__(self) -> Iterator[Alert]:
        return iter(self._alerts)

    def __len__(self) -> int:
        return len(self._alerts)

    def __getitem__(self, index):
        return self._alerts[index]

    def __repr__(self) -> str:
        return f"AlertLog(alerts={len(self)}, limit={self.limit})"
