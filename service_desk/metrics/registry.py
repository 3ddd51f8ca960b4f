"""In-memory registry keyed by metric name."""
from __future__ import annotations

from threading import Lock
from typing import Any, TypeVar

from .definitions import MetricDefinition
from .instruments import Counter, Histogram, Instrument

InstrumentT = TypeVar("InstrumentT", bound=Instrument)

_KINDS: dict[str, type[Instrument]] = {"counter": Counter, "histogram": Histogram}


class MetricsRegistry:
    def __init__(self) -> None:
        self._instruments: dict[str, Instrument] = {}
        self._lock = Lock()

    def register(self, definition: MetricDefinition) -> Instrument:
        """Create the instrument for ``definition`` unless one already exists."""

        try:
            factory = _KINDS[definition.kind]
        except KeyError:
            raise ValueError(f"Unsupported metric kind: {definition.kind}") from None
        with self._lock:
            existing = self._instruments.get(definition.name)
            if existing is None:
                existing = factory(
                    definition.name,
                    description=definition.description,
                    label_names=definition.label_names,
                )
                self._instruments[definition.name] = existing
            elif not isinstance(existing, factory):
                raise TypeError(f"Metric '{definition.name}' already registered as {existing.kind}")
            return existing

    def counter(self, name: str) -> Counter:
        return self._lookup(name, Counter)

    def histogram(self, name: str) -> Histogram:
        return self._lookup(name, Histogram)

    def instruments(self) -> tuple[Instrument, ...]:
        with self._lock:
            return tuple(self._instruments.values())

    def as_dict(self) -> dict[str, dict[str, Any]]:
        """JSON friendly view keyed by metric name and rendered label set."""

        return {
            instrument.name: {
                "type": instrument.kind,
                "description": instrument.description,
                "values": {instrument.render_key(key): sample for key, sample in instrument.samples().items()},
            }
            for instrument in self.instruments()
        }

    def _lookup(self, name: str, kind: type[InstrumentT]) -> InstrumentT:
        with self._lock:
            instrument = self._instruments.get(name)
        if instrument is None:
            raise KeyError(f"Metric '{name}' is not registered")
        if not isinstance(instrument, kind):
            raise TypeError(f"Metric '{name}' is a {instrument.kind}, not a {kind.kind}")
        return instrument
