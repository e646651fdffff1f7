from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from app.core.errors import ConflictError, FetchFailure, NotFoundError, RegistryManagerError
from app.services.kubernetes_store import KubernetesClusterStore

GROUP_VERSION = ("toolhive.stacklok.dev", "v1alpha1")


@pytest.fixture
def kube():
    store = KubernetesClusterStore(MagicMock(), timeout=1.0)
    store.custom_api = MagicMock()
    store.core_api = MagicMock()
    return store


@pytest.mark.asyncio
async def test_get_registry_passes_coordinates_and_timeout(kube):
    kube.custom_api.get_namespaced_custom_object.return_value = {"metadata": {"name": "r"}}

    assert await kube.get_registry("ns", "r") == {"metadata": {"name": "r"}}
    kube.custom_api.get_namespaced_custom_object.assert_called_once_with(
        *GROUP_VERSION, "ns", "mcpregistries", "r", _request_timeout=1.0
    )


@pytest.mark.asyncio
async def test_get_missing_is_none(kube):
    kube.custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
    assert await kube.get_server("ns", "missing") is None


@pytest.mark.asyncio
async def test_create_conflict(kube):
    kube.custom_api.create_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")
    with pytest.raises(ConflictError):
        await kube.create_registry("ns", {"metadata": {"name": "r"}})


@pytest.mark.asyncio
async def test_delete_missing(kube):
    kube.custom_api.delete_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
    with pytest.raises(NotFoundError):
        await kube.delete_registry("ns", "r")


@pytest.mark.asyncio
async def test_other_api_errors(kube):
    kube.custom_api.list_namespaced_custom_object.side_effect = ApiException(status=403, reason="Forbidden")
    with pytest.raises(RegistryManagerError, match="403"):
        await kube.list_registries("ns")


@pytest.mark.asyncio
async def test_unreachable_api_server(kube):
    kube.custom_api.list_namespaced_custom_object.side_effect = MaxRetryError(None, "/apis")
    with pytest.raises(RegistryManagerError, match="unreachable"):
        await kube.list_servers("ns")


@pytest.mark.asyncio
async def test_status_patch_targets_status_subresource(kube):
    kube.custom_api.patch_namespaced_custom_object_status.return_value = {}
    await kube.patch_registry_status("ns", "r", {"phase": "Syncing"})
    kube.custom_api.patch_namespaced_custom_object_status.assert_called_once_with(
        *GROUP_VERSION, "ns", "mcpregistries", "r", {"status": {"phase": "Syncing"}}, _request_timeout=1.0
    )


@pytest.mark.asyncio
async def test_config_map_keys(kube):
    kube.core_api.read_namespaced_config_map.return_value = MagicMock(data={"b": "1", "a": "2"})
    assert await kube.get_config_map_keys("ns", "cm") == ["a", "b"]

    kube.core_api.read_namespaced_config_map.side_effect = ApiException(status=404)
    assert await kube.get_config_map_keys("ns", "cm") is None


def config_map_item(name, data):
    metadata = MagicMock(namespace="ns", creation_timestamp=None)
    metadata.name = name
    return MagicMock(metadata=metadata, data=data)


@pytest.mark.asyncio
async def test_list_config_maps_sorted_with_keys(kube):
    kube.core_api.list_namespaced_config_map.return_value = MagicMock(items=[
        config_map_item("servers", {"registry.json": "{}", "extra.yaml": ""}),
        config_map_item("empty", None),
    ])

    config_maps = await kube.list_config_maps("ns")

    assert [c.name for c in config_maps] == ["empty", "servers"]
    assert config_maps[0].keys == []
    assert config_maps[1].keys == ["extra.yaml", "registry.json"]
    kube.core_api.list_namespaced_config_map.assert_called_once_with("ns", _request_timeout=1.0)


@pytest.mark.asyncio
async def test_list_config_maps_forbidden(kube):
    kube.core_api.list_namespaced_config_map.side_effect = ApiException(status=403, reason="Forbidden")
    with pytest.raises(RegistryManagerError, match="403"):
        await kube.list_config_maps("ns")


@pytest.mark.asyncio
async def test_registry_namespaces_are_cluster_wide(kube):
    kube.custom_api.list_cluster_custom_object.return_value = {"items": [
        {"metadata": {"name": "a", "namespace": "team-b"}},
        {"metadata": {"name": "b", "namespace": "team-a"}},
        {"metadata": {"name": "c", "namespace": "team-b"}},
    ]}

    assert await kube.list_registry_namespaces() == ["team-a", "team-b"]
    kube.custom_api.list_cluster_custom_object.assert_called_once_with(
        *GROUP_VERSION, "mcpregistries", _request_timeout=1.0
    )


class TestServiceProxy:

    @pytest.mark.asyncio
    async def test_success(self, kube):
        kube.api_client.call_api.return_value = MagicMock(status=200, data=b'{"servers": []}')

        response = await kube.proxy_get("ns", "reg-api", "8080", "/v0/servers")

        assert response.ok
        assert response.body == b'{"servers": []}'
        args, kwargs = kube.api_client.call_api.call_args
        assert args == ("/api/v1/namespaces/{namespace}/services/{name}/proxy/v0/servers", "GET")
        assert kwargs["path_params"] == {"namespace": "ns", "name": "reg-api:8080"}

    @pytest.mark.asyncio
    async def test_error_status_is_returned(self, kube):
        error = ApiException(status=503, reason="Service Unavailable")
        error.body = "no endpoints available"
        kube.api_client.call_api.side_effect = error

        response = await kube.proxy_get("ns", "reg-api", "8080", "/v0/servers")

        assert response.status_code == 503
        assert not response.ok
        assert response.body == b"no endpoints available"

    @pytest.mark.asyncio
    async def test_transport_failure_is_fetch_failure(self, kube):
        kube.api_client.call_api.side_effect = MaxRetryError(None, "/api")
        with pytest.raises(FetchFailure):
            await kube.proxy_get("ns", "reg-api", "8080", "/v0/servers")
