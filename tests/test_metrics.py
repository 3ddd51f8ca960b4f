from fastapi.testclient import TestClient
import pytest

from service_desk.main import create_app
from service_desk.metrics import MetricsRegistry, register_default_metrics
from service_desk.metrics import definitions as metric_names
from service_desk.metrics.definitions import MetricDefinition
from service_desk.metrics.exporters import render_prometheus
from service_desk.metrics.instruments import Histogram, Instrument, timed

ADMIN = {"Authorization": "Bearer admin-token"}


def test_default_metrics_are_registered():
    registry = register_default_metrics(MetricsRegistry())

    assert {instrument.name for instrument in registry.instruments()} == {
        metric_names.REQUESTS_CREATED,
        metric_names.TRANSITIONS,
        metric_names.FAILURES,
        metric_names.CONFLICT_RETRIES,
        metric_names.TRANSITION_DURATION,
    }


def test_counter_requires_declared_labels():
    counter = register_default_metrics(MetricsRegistry()).counter(metric_names.TRANSITIONS)

    counter.inc(labels={"action": "submit"})
    counter.inc(labels={"action": "submit"})

    assert counter.value(labels={"action": "submit"}) == 2
    with pytest.raises(ValueError):
        counter.inc(labels={"code": "CONFLICT"})
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"action": "submit"})


def test_registry_rejects_kind_mismatch():
    registry = register_default_metrics(MetricsRegistry())

    with pytest.raises(TypeError):
        registry.histogram(metric_names.TRANSITIONS)
    with pytest.raises(TypeError):
        registry.register(MetricDefinition(metric_names.TRANSITIONS, "histogram", "clash"))
    with pytest.raises(KeyError):
        registry.counter("unknown_total")


def test_histogram_buckets_are_cumulative():
    histogram = Histogram("latency_seconds", buckets=(0.1, 1.0))

    for value in (0.05, 0.1, 0.5, 3.0):
        histogram.observe(value)

    sample = histogram.samples()[()]
    assert sample["le_0.1"] == 2.0
    assert sample["le_1"] == 3.0
    assert sample["count"] == 4.0
    assert sample["sum"] == pytest.approx(3.65)


def test_timed_records_failed_runs():
    registry = register_default_metrics(MetricsRegistry())
    duration = registry.histogram(metric_names.TRANSITION_DURATION)

    with pytest.raises(RuntimeError):
        with timed(duration, labels={"action": "close"}):
            raise RuntimeError("boom")

    assert duration.count(labels={"action": "close"}) == 1
    values = registry.as_dict()[metric_names.TRANSITION_DURATION]["values"]
    assert values["action=close"]["count"] == 1.0


def test_prometheus_rendering():
    registry = register_default_metrics(MetricsRegistry())
    registry.counter(metric_names.TRANSITIONS).inc(labels={"action": "submit"})
    registry.histogram(metric_names.TRANSITION_DURATION).observe(0.02, labels={"action": "submit"})

    text = render_prometheus(registry)

    assert f"# TYPE {metric_names.TRANSITIONS} counter" in text
    assert f'{metric_names.TRANSITIONS}{{action="submit"}} 1.0' in text
    assert f'{metric_names.TRANSITION_DURATION}_bucket{{action="submit",le="0.025"}} 1.0' in text
    assert f'{metric_names.TRANSITION_DURATION}_bucket{{action="submit",le="0.01"}} 0.0' in text
    assert f'{metric_names.TRANSITION_DURATION}_count{{action="submit"}} 1.0' in text


def test_metrics_endpoint_is_admin_only():
    client = TestClient(create_app())

    assert client.get("/metrics", headers={"Authorization": "Bearer requestor-token"}).status_code == 403

    response = client.get("/metrics", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()[metric_names.TRANSITIONS]["type"] == "counter"


def test_metrics_endpoint_renders_prometheus_text():
    client = TestClient(create_app())

    response = client.get("/metrics", params={"format": "prometheus"}, headers=ADMIN)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert f"# TYPE {metric_names.REQUESTS_CREATED} counter" in response.text


def test_instrument_base_requires_samples():
    with pytest.raises(TypeError):
        Instrument("bare_metric")
