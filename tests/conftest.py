"""
This file contains shared fixtures for all tests.
"""

from unittest.mock import MagicMock

import pytest
from kubernetes import client

from mayaupgrade.upgrade.config import DataItem, ResourceRef, UpgradeConfig
from tests.helpers import JOB_NAMESPACE, POD_NAME, FakeCustomObjectsApi, owner_pod


@pytest.fixture
def mock_k8s_api():
    """Fixture for a mocked Kubernetes CustomObjectsApi."""
    return MagicMock(spec=client.CustomObjectsApi)


@pytest.fixture
def fake_api() -> FakeCustomObjectsApi:
    """An in-memory custom objects API."""
    return FakeCustomObjectsApi()


@pytest.fixture
def mock_core_v1() -> MagicMock:
    """A CoreV1Api whose pod is owned by exactly one job."""
    core_v1 = MagicMock(spec=client.CoreV1Api)
    core_v1.read_namespaced_pod.return_value = owner_pod()
    return core_v1


@pytest.fixture
def pod_env() -> dict:
    return {"POD_NAME": POD_NAME, "POD_NAMESPACE": JOB_NAMESPACE}


@pytest.fixture
def pool_config() -> UpgradeConfig:
    return UpgradeConfig(
        cas_template="cast-A",
        data=(DataItem(name="upgrade-version", value="1.0.0"),),
        resources=(ResourceRef(kind="Pool", name="p1", namespace="ns"),),
    )
