import pytest

from app.core.errors import ConflictError, NotFoundError
from app.services.cluster_store import ClusterStore, json_merge_patch
from tests.factories import NAMESPACE, registry_resource


class TestJsonMergePatch:

    def test_nested_merge_and_removal(self):
        target = {"spec": {"source": {"type": "configmap", "configmap": {"name": "a"}}, "filter": {"x": 1}}}
        patch = {"spec": {"source": {"type": "git", "configmap": None, "git": {"path": "p"}}, "filter": None}}
        assert json_merge_patch(target, patch) == {"spec": {"source": {"type": "git", "git": {"path": "p"}}}}

    def test_lists_are_replaced(self):
        assert json_merge_patch({"tags": ["a", "b"]}, {"tags": ["c"]}) == {"tags": ["c"]}

    def test_target_is_not_mutated(self):
        target = {"metadata": {"labels": {"a": "1"}}}
        json_merge_patch(target, {"metadata": {"labels": {"b": "2"}}})
        assert target == {"metadata": {"labels": {"a": "1"}}}


class TestInMemoryClusterStore:

    @pytest.mark.asyncio
    async def test_create_sets_metadata_and_rejects_duplicates(self, store):
        created = await store.create_registry(NAMESPACE, registry_resource())
        assert created["metadata"]["uid"]
        assert created["metadata"]["creationTimestamp"].endswith("Z")

        with pytest.raises(ConflictError):
            await store.create_registry(NAMESPACE, registry_resource())

    @pytest.mark.asyncio
    async def test_returned_objects_are_copies(self, store):
        await store.create_registry(NAMESPACE, registry_resource())
        obj = await store.get_registry(NAMESPACE, "team-registry")
        obj["spec"]["displayName"] = "changed"
        assert (await store.get_registry(NAMESPACE, "team-registry"))["spec"]["displayName"] == "Team Registry"

    @pytest.mark.asyncio
    async def test_patch_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.patch_registry_status(NAMESPACE, "nope", {"phase": "Ready"})

    @pytest.mark.asyncio
    async def test_proxy_without_service(self, store):
        response = await store.proxy_get(NAMESPACE, "reg-api", "8080", "/v0/servers")
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_config_map_keys(self, store):
        store.add_config_map(NAMESPACE, "cm", {"b": "", "a": ""})
        assert await store.get_config_map_keys(NAMESPACE, "cm") == ["a", "b"]
        assert await store.get_config_map_keys(NAMESPACE, "other") is None

    @pytest.mark.asyncio
    async def test_list_config_maps(self, store):
        store.add_config_map(NAMESPACE, "zeta", {"registry.json": "{}"})
        store.add_config_map(NAMESPACE, "alpha", {"b.yaml": "", "a.json": ""})
        store.add_config_map("elsewhere", "other", {"x": ""})

        config_maps = await store.list_config_maps(NAMESPACE)

        assert [c.name for c in config_maps] == ["alpha", "zeta"]
        assert config_maps[0].keys == ["a.json", "b.yaml"]
        assert config_maps[0].namespace == NAMESPACE
        assert config_maps[0].created_at is not None
        assert await store.list_config_maps("empty") == []

    @pytest.mark.asyncio
    async def test_registry_namespaces(self, store):
        assert await store.list_registry_namespaces() == []
        await store.create_registry("team-b", registry_resource(namespace="team-b"))
        await store.create_registry(NAMESPACE, registry_resource())
        store.add_server("servers-only", "web")
        assert await store.list_registry_namespaces() == [NAMESPACE, "team-b"]


def test_store_contract_is_abstract():
    with pytest.raises(TypeError):
        ClusterStore()

    class PartialStore(ClusterStore):
        async def list_registries(self, namespace):
            return []

    with pytest.raises(TypeError):
        PartialStore()
