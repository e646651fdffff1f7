import os

# Settings are read at import time, so the environment is fixed before any app import
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CLUSTER_STORE"] = "memory"
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"
os.environ["ENABLE_SAMPLE_DATA"] = "false"
os.environ["ENRICH_GITHUB_STARS"] = "false"

from typing import Any, Dict

import pytest

from app.services.cluster_store import REGISTRY_PLURAL, InMemoryClusterStore
from tests.factories import NAMESPACE, REGISTRY_ENDPOINT, FakeRegistryApi, registry_resource


@pytest.fixture
def store() -> InMemoryClusterStore:
    return InMemoryClusterStore()


@pytest.fixture
def registry_api(store: InMemoryClusterStore) -> FakeRegistryApi:
    api = FakeRegistryApi()
    store.add_service(NAMESPACE, "reg-api", "8080", api)
    return api


@pytest.fixture
def seeded_registry(store: InMemoryClusterStore, registry_api: FakeRegistryApi) -> Dict[str, Any]:
    """A configmap-backed registry whose operator already published an API endpoint."""
    obj = registry_resource(status={"phase": "Pending", "serverCount": 0, "apiEndpoint": REGISTRY_ENDPOINT})
    store._objects[(REGISTRY_PLURAL, NAMESPACE, "team-registry")] = obj
    return obj
