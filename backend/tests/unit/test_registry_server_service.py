from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.core.errors import InvalidArgumentError, NotFoundError, ResolutionFailure
from app.schemas.server import EntryMetadata, RegistryServerEntry
from app.services.cluster_store import REGISTRY_PLURAL
from app.services.endpoint_fetcher import EndpointFetcher
from app.services.registry_server_service import RegistryServerService, ServerListCache
from tests.factories import NAMESPACE, REGISTRY_ENDPOINT, registry_resource


@pytest.fixture
def service(store):
    return RegistryServerService(store, EndpointFetcher(store, sample_fallback=False), ServerListCache())


def seed_filtered_registry(store):
    store._objects[(REGISTRY_PLURAL, NAMESPACE, "team-registry")] = registry_resource(
        spec={
            "displayName": "Team Registry",
            "source": {"type": "configmap", "configmap": {"name": "team-servers", "key": "registry.json"}},
            "filter": {"tags": {"exclude": ["deprecated"]}},
        },
        status={"phase": "Ready", "serverCount": 2, "apiEndpoint": REGISTRY_ENDPOINT},
    )


class TestServerListCache:

    def test_expired_entries_are_misses(self):
        cache = ServerListCache(ttl=timedelta(seconds=0))
        cache.put(NAMESPACE, "team-registry", [RegistryServerEntry(name="a", image="a:1")])
        assert cache.get(NAMESPACE, "team-registry") is None

    def test_drop_and_clear(self):
        cache = ServerListCache()
        cache.put(NAMESPACE, "a", [])
        cache.put(NAMESPACE, "b", [])
        cache.drop(NAMESPACE, "a")
        assert cache.get(NAMESPACE, "a") is None
        assert cache.get(NAMESPACE, "b") == []
        cache.clear()
        assert cache.get(NAMESPACE, "b") is None


class TestListServers:

    @pytest.mark.asyncio
    async def test_live_fetch_is_filtered_and_cached(self, service, store, seeded_registry, registry_api):
        page = await service.list_servers(NAMESPACE, "team-registry")
        assert page.total == 3
        assert page.limit == 50

        await service.list_servers(NAMESPACE, "team-registry")
        assert registry_api.paths == ["/v0/servers"]

    @pytest.mark.asyncio
    async def test_registry_filter_applies_before_query(self, service, store, registry_api):
        seed_filtered_registry(store)
        page = await service.list_servers(NAMESPACE, "team-registry", tags=["web"])
        assert [s.name for s in page.servers] == ["mcp-web"]
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_pagination(self, service, seeded_registry, registry_api):
        page = await service.list_servers(NAMESPACE, "team-registry", limit=2, offset=2)
        assert [s.name for s in page.servers] == ["db-tool"]
        assert page.total == 3
        assert (page.limit, page.offset) == (2, 2)

    @pytest.mark.asyncio
    async def test_negative_offset_rejected(self, service, seeded_registry, registry_api):
        with pytest.raises(InvalidArgumentError):
            await service.list_servers(NAMESPACE, "team-registry", offset=-1)

    @pytest.mark.asyncio
    async def test_unknown_registry(self, service):
        with pytest.raises(NotFoundError):
            await service.list_servers(NAMESPACE, "missing")

    @pytest.mark.asyncio
    async def test_unresolvable_registry(self, service, store):
        store._objects[(REGISTRY_PLURAL, NAMESPACE, "team-registry")] = registry_resource()
        with pytest.raises(ResolutionFailure):
            await service.list_servers(NAMESPACE, "team-registry")

    @pytest.mark.asyncio
    async def test_enrichment_runs_on_the_page_only(self, store, seeded_registry, registry_api):
        github = AsyncMock()
        github.enrich_stars.side_effect = lambda entries: [
            e.model_copy(update={"metadata": EntryMetadata(stars=5)}) for e in entries
        ]
        service = RegistryServerService(
            store, EndpointFetcher(store, sample_fallback=False), ServerListCache(), github=github,
        )

        page = await service.list_servers(NAMESPACE, "team-registry", limit=1)

        [call] = github.enrich_stars.await_args_list
        assert [e.name for e in call.args[0]] == ["mcp-web"]
        assert page.servers[0].metadata.stars == 5
        # the cached listing is not enriched
        assert service.cache.get(NAMESPACE, "team-registry")[0].metadata is None


class TestGetServer:

    @pytest.mark.asyncio
    async def test_served_from_cache(self, service, seeded_registry, registry_api):
        await service.list_servers(NAMESPACE, "team-registry")
        entry = await service.get_server(NAMESPACE, "team-registry", "db-tool")
        assert entry.version == "2.0.0"
        assert registry_api.paths == ["/v0/servers"]

    @pytest.mark.asyncio
    async def test_fetched_on_cache_miss(self, service, seeded_registry, registry_api):
        entry = await service.get_server(NAMESPACE, "team-registry", "mcp-web")
        assert entry.name == "mcp-web"
        assert registry_api.paths == ["/v0/servers/mcp-web"]

    @pytest.mark.asyncio
    async def test_missing_entry(self, service, seeded_registry, registry_api):
        with pytest.raises(NotFoundError):
            await service.get_server(NAMESPACE, "team-registry", "nope")

    @pytest.mark.asyncio
    async def test_filtered_out_entry_is_missing(self, service, store, registry_api):
        seed_filtered_registry(store)
        with pytest.raises(NotFoundError):
            await service.get_server(NAMESPACE, "team-registry", "mcp-test")


class TestServerStats:

    @pytest.mark.asyncio
    async def test_counts_tags_of_filtered_listing(self, service, store, registry_api):
        seed_filtered_registry(store)
        stats = await service.server_stats(NAMESPACE, "team-registry")
        assert stats.total == 2
        assert stats.by_tag == {"web": 1, "database": 1}

    @pytest.mark.asyncio
    async def test_uses_cached_listing(self, service, seeded_registry, registry_api):
        await service.list_servers(NAMESPACE, "team-registry")
        stats = await service.server_stats(NAMESPACE, "team-registry")
        assert stats.total == 3
        assert stats.by_tag == {"web": 2, "deprecated": 1, "database": 1}
        assert registry_api.paths == ["/v0/servers"]
