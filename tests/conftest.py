"""
Pytest configuration and fixtures for funnel tests.

This conftest.py provides shared fixtures for all tests.
"""
import pytest

from ai.cost_tracker import CostTracker
from infra.alerting import AlertConfig, AlertService, AlertSeverity
from infra.metrics import MetricsRecorder
from infra.run_store import RunStore


@pytest.fixture
def store():
    """In-memory RunStore, closed after the test."""
    run_store = RunStore(":memory:")
    yield run_store
    run_store.close()


@pytest.fixture
def cost_tracker():
    return CostTracker()


@pytest.fixture
def metrics():
    """Recorder on its own registry; the HTTP exporter is never started."""
    return MetricsRecorder(enabled=False)


@pytest.fixture
def dry_run_alerts():
    """AlertService that records payloads instead of posting them."""
    return AlertService(
        AlertConfig(
            enabled=True,
            webhook_url=None,
            min_severity=AlertSeverity.INFO,
            dry_run=True,
            dedupe_seconds=0.0,
        )
    )
