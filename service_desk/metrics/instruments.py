"""Counters and latency histograms recorded by the lifecycle engine."""
from __future__ import annotations

from abc import ABC, abstractmethod
from bisect import bisect_left
from contextlib import contextmanager
from threading import Lock
from time import perf_counter
from typing import Iterable, Iterator, Mapping

LabelKey = tuple[str, ...]

# Upper bounds in seconds; one more implicit bucket catches everything slower.
DEFAULT_LATENCY_BUCKETS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class Instrument(ABC):
    """Named metric with a fixed set of label names."""

    kind = "untyped"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> None:
        self.name = name
        self.description = description
        self.label_names: LabelKey = tuple(label_names)
        self._lock = Lock()

    def key_for(self, labels: Mapping[str, str] | None) -> LabelKey:
        labels = dict(labels or {})
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"Metric '{self.name}' expects labels {list(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(str(labels[name]) for name in self.label_names)

    def render_key(self, key: LabelKey) -> str:
        return ",".join(f"{name}={value}" for name, value in zip(self.label_names, key))

    @abstractmethod
    def samples(self) -> dict[LabelKey, dict[str, float]]:
        """Return the current values keyed by label values."""


class Counter(Instrument):
    kind = "counter"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: dict[LabelKey, float] = {}

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = self.key_for(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, *, labels: Mapping[str, str] | None = None) -> float:
        key = self.key_for(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def samples(self) -> dict[LabelKey, dict[str, float]]:
        with self._lock:
            return {key: {"value": value} for key, value in self._values.items()}


class Histogram(Instrument):
    """Cumulative bucket counts plus running sum, in the Prometheus style."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] = (),
        buckets: Iterable[float] = DEFAULT_LATENCY_BUCKETS,
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self.buckets = tuple(sorted(buckets))
        if not self.buckets:
            raise ValueError("Histogram needs at least one bucket")
        self._counts: dict[LabelKey, list[int]] = {}
        self._sums: dict[LabelKey, float] = {}

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self.key_for(labels)
        index = bisect_left(self.buckets, value)
        with self._lock:
            counts = self._counts.setdefault(key, [0] * (len(self.buckets) + 1))
            counts[index] += 1
            self._sums[key] = self._sums.get(key, 0.0) + value

    def count(self, *, labels: Mapping[str, str] | None = None) -> int:
        key = self.key_for(labels)
        with self._lock:
            return sum(self._counts.get(key, ()))

    def samples(self) -> dict[LabelKey, dict[str, float]]:
        result: dict[LabelKey, dict[str, float]] = {}
        with self._lock:
            for key, counts in self._counts.items():
                sample: dict[str, float] = {}
                cumulative = 0
                for bound, count in zip(self.buckets, counts):
                    cumulative += count
                    sample[f"le_{bound:g}"] = float(cumulative)
                sample["count"] = float(cumulative + counts[-1])
                sample["sum"] = self._sums[key]
                result[key] = sample
        return result


@contextmanager
def timed(histogram: Histogram, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
    """Observe the wall time of the block, failed runs included."""

    start = perf_counter()
    try:
        yield
    finally:
        histogram.observe(perf_counter() - start, labels=labels)
