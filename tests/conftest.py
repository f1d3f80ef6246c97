from unittest.mock import MagicMock

import pytest

from shield_exporter.client import ShieldClient

NAMESPACE = "test_namespace"
ENVIRONMENT = "test_environment"
BACKEND_NAME = "test_backend"

CONST_LABELS = {"environment": ENVIRONMENT, "backend_name": BACKEND_NAME}


def sample_value(metrics, name, labels=None):
    """Find a sample value in collected metric families, None when absent."""
    wanted = {**CONST_LABELS, **(labels or {})}
    for metric in metrics:
        for sample in metric.samples:
            if sample.name == name and sample.labels == wanted:
                return sample.value
    return None


def family_samples(metrics, family_name):
    """All samples of one metric family, [] when the family was not emitted."""
    for metric in metrics:
        if metric.name == family_name:
            return metric.samples
    return []


def family_names(metrics):
    return [metric.name for metric in metrics]


@pytest.fixture
def client():
    # Every list call succeeds with no records unless a test says otherwise
    mock_client = MagicMock(spec=ShieldClient)
    for method in (
        "get_archives",
        "get_jobs",
        "get_retention_policies",
        "get_schedules",
        "get_stores",
        "get_targets",
        "get_tasks",
    ):
        getattr(mock_client, method).return_value = []
    mock_client.get_jobs_status.return_value = {}
    return mock_client
