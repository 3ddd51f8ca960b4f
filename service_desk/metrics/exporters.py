"""Render the registry in the Prometheus text exposition format."""
from __future__ import annotations

from .instruments import Counter, Histogram, Instrument, LabelKey
from .registry import MetricsRegistry


def _label_text(instrument: Instrument, key: LabelKey, extra: tuple[tuple[str, str], ...] = ()) -> str:
    pairs = [*zip(instrument.label_names, key), *extra]
    if not pairs:
        return ""
    return "{" + ",".join(f'{name}="{value}"' for name, value in pairs) + "}"


def render_prometheus(registry: MetricsRegistry) -> str:
    lines: list[str] = []
    for instrument in registry.instruments():
        lines.append(f"# HELP {instrument.name} {instrument.description}")
        lines.append(f"# TYPE {instrument.name} {instrument.kind}")
        for key, sample in instrument.samples().items():
            if isinstance(instrument, Counter):
                lines.append(f"{instrument.name}{_label_text(instrument, key)} {sample['value']}")
            elif isinstance(instrument, Histogram):
                for bound in instrument.buckets:
                    labels = _label_text(instrument, key, (("le", f"{bound:g}"),))
                    lines.append(f"{instrument.name}_bucket{labels} {sample[f'le_{bound:g}']}")
                labels = _label_text(instrument, key, (("le", "+Inf"),))
                lines.append(f"{instrument.name}_bucket{labels} {sample['count']}")
                lines.append(f"{instrument.name}_sum{_label_text(instrument, key)} {sample['sum']}")
                lines.append(f"{instrument.name}_count{_label_text(instrument, key)} {sample['count']}")
    return "\n".join(lines) + "\n"
