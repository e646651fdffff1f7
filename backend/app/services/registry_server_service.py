import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from app.core.errors import NotFoundError
from app.schemas.registry import Registry
from app.schemas.server import RegistryServerEntry, RegistryServerPage, RegistryServerStats
from app.services.cluster_store import ClusterStore
from app.services.endpoint_fetcher import EndpointFetcher
from app.services.github_service import GitHubService
from app.services.server_filter import apply_query, apply_registry_filter
from app.services.source_resolver import resolve_endpoint

logger = logging.getLogger(__name__)


class ServerListCache:
    """Filtered listing per registry, written by syncs and by live reads."""

    def __init__(self, ttl: timedelta = timedelta(hours=1)):
        self._entries: Dict[Tuple[str, str], Tuple[List[RegistryServerEntry], datetime]] = {}
        self.ttl = ttl

    def get(self, namespace: str, name: str) -> Optional[List[RegistryServerEntry]]:
        cached = self._entries.get((namespace, name))
        if cached is None:
            return None
        entries, updated = cached
        if datetime.now() - updated >= self.ttl:
            return None
        return list(entries)

    def put(self, namespace: str, name: str, entries: Sequence[RegistryServerEntry]) -> None:
        self._entries[(namespace, name)] = (list(entries), datetime.now())

    def drop(self, namespace: str, name: str) -> None:
        self._entries.pop((namespace, name), None)

    def clear(self) -> None:
        self._entries.clear()


class RegistryServerService:
    """Available-server listing for a registry: cache, query stage, enrichment."""

    def __init__(
        self,
        store: ClusterStore,
        fetcher: EndpointFetcher,
        cache: ServerListCache,
        github: Optional[GitHubService] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.cache = cache
        self.github = github

    async def _get_registry(self, namespace: str, name: str) -> Registry:
        obj = await self.store.get_registry(namespace, name)
        if obj is None:
            raise NotFoundError(f"Registry '{name}' not found in namespace '{namespace}'")
        return Registry.from_resource(obj)

    async def get_listing(self, namespace: str, name: str, force_refresh: bool = False) -> List[RegistryServerEntry]:
        """
        The registry's filtered listing, from cache when fresh.

        Raises:
            NotFoundError: Registry does not exist.
            ResolutionFailure, FetchFailure, InvalidResponseError: live fetch failed.
        """
        registry = await self._get_registry(namespace, name)
        if not force_refresh:
            cached = self.cache.get(namespace, name)
            if cached is not None:
                return cached

        endpoint = resolve_endpoint(registry)
        entries = await self.fetcher.fetch_servers(endpoint)
        filtered = apply_registry_filter(entries, registry.filter)
        self.cache.put(namespace, name, filtered)
        logger.info(f"Listing for {namespace}/{name} refreshed with {len(filtered)} servers")
        return filtered

    async def list_servers(
        self,
        namespace: str,
        name: str,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> RegistryServerPage:
        entries = await self.get_listing(namespace, name)
        page = apply_query(entries, tags=tags, limit=limit, offset=offset)
        servers = await self._enrich(page.servers)
        return RegistryServerPage(servers=servers, total=page.total, limit=page.limit, offset=page.offset)

    async def server_stats(self, namespace: str, name: str) -> RegistryServerStats:
        """Entry count of the filtered listing and how many entries carry each tag."""
        entries = await self.get_listing(namespace, name)
        by_tag = Counter(tag for entry in entries for tag in entry.tags)
        return RegistryServerStats(total=len(entries), by_tag=dict(by_tag))

    async def get_server(self, namespace: str, name: str, server_name: str) -> RegistryServerEntry:
        """
        One entry of the registry's listing. Entries the registry filter
        excludes are reported as missing.

        Raises:
            NotFoundError: Registry or entry does not exist.
        """
        registry = await self._get_registry(namespace, name)
        cached = self.cache.get(namespace, name)
        entry = None
        if cached is not None:
            entry = next((e for e in cached if e.name == server_name), None)
        if entry is None:
            fetched = await self.fetcher.fetch_server(resolve_endpoint(registry), server_name)
            if fetched is not None and apply_registry_filter([fetched], registry.filter):
                entry = fetched
        if entry is None:
            raise NotFoundError(f"Server '{server_name}' not found in registry '{name}'")
        return (await self._enrich([entry]))[0]

    async def _enrich(self, entries: List[RegistryServerEntry]) -> List[RegistryServerEntry]:
        if self.github is None:
            return entries
        return await self.github.enrich_stars(entries)
