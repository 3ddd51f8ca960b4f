"""Metrics emitted by the service request lifecycle."""
from __future__ import annotations

from dataclasses import dataclass

REQUESTS_CREATED = "service_requests_created_total"
TRANSITIONS = "service_request_transitions_total"
FAILURES = "service_request_failures_total"
CONFLICT_RETRIES = "service_request_conflict_retries_total"
TRANSITION_DURATION = "service_request_transition_duration_seconds"


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    kind: str
    description: str
    label_names: tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition(REQUESTS_CREATED, "counter", "Service requests created as drafts."),
    MetricDefinition(TRANSITIONS, "counter", "Successful lifecycle actions.", ("action",)),
    MetricDefinition(FAILURES, "counter", "Rejected lifecycle operations by error code.", ("code",)),
    MetricDefinition(
        CONFLICT_RETRIES,
        "counter",
        "Status checks retried after losing to a concurrent writer.",
        ("action",),
    ),
    MetricDefinition(TRANSITION_DURATION, "histogram", "Lifecycle action latency in seconds.", ("action",)),
)
