import pytest
from httpx import AsyncClient

from app.api.deps import Services
from app.main import app, lifespan
from app.services.cluster_store import REGISTRY_PLURAL
from tests.factories import NAMESPACE, registry_resource


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """The health endpoint answers without touching the cluster."""
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_errors_use_the_error_envelope(client: AsyncClient):
    response = await client.get("/api/v1/registries/missing")
    assert response.status_code == 404
    assert set(response.json()) == {"error"}


@pytest.mark.asyncio
async def test_startup_releases_interrupted_syncs_without_scheduler(services: Services):
    """Registries left Syncing by a previous process are released in every namespace."""
    syncing = {"phase": "Syncing", "serverCount": 0}
    services.store._objects[(REGISTRY_PLURAL, NAMESPACE, "team-registry")] = registry_resource(status=syncing)
    services.store._objects[(REGISTRY_PLURAL, "team-b", "team-registry")] = registry_resource(
        namespace="team-b", status=syncing,
    )

    app.state.services = services
    try:
        async with lifespan(app):
            for namespace in (NAMESPACE, "team-b"):
                registry = await services.lifecycle.get(namespace, "team-registry")
                assert registry.status.phase == "Error"
                assert registry.status.message == "Sync interrupted by restart"
    finally:
        del app.state.services
