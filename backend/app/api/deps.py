from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.kube import load_kube_config
from app.services.cluster_store import ClusterStore, InMemoryClusterStore
from app.services.deployed_server_service import DeployedServerService
from app.services.endpoint_fetcher import EndpointFetcher
from app.services.git_source_checks import GitSourceChecker
from app.services.github_service import GitHubService, get_github_service
from app.services.registry_lifecycle import RegistryLifecycle
from app.services.registry_server_service import RegistryServerService, ServerListCache
from app.services.server_attachment import ServerAttachmentService
from app.services.source_validator import SourceValidator
from app.services.sync_history import SyncHistory


@dataclass
class Services:
    """Everything the routers need, wired once per application."""

    store: ClusterStore
    lifecycle: RegistryLifecycle
    registry_servers: RegistryServerService
    deployed_servers: DeployedServerService
    attachment: ServerAttachmentService
    validator: SourceValidator
    git_checker: GitSourceChecker
    github: Optional[GitHubService] = None


def create_cluster_store() -> ClusterStore:
    if settings.CLUSTER_STORE == "memory":
        return InMemoryClusterStore()
    from app.services.kubernetes_store import KubernetesClusterStore
    return KubernetesClusterStore(load_kube_config(settings.KUBECONFIG))


def build_services(
    store: ClusterStore,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    fetcher: Optional[EndpointFetcher] = None,
    github: Optional[GitHubService] = None,
) -> Services:
    fetcher = fetcher or EndpointFetcher(store)
    cache = ServerListCache()
    if github is None and settings.ENRICH_GITHUB_STARS:
        github = get_github_service()
    history = SyncHistory(session_factory) if session_factory is not None else None
    return Services(
        store=store,
        lifecycle=RegistryLifecycle(store, fetcher=fetcher, listing_cache=cache, history=history),
        registry_servers=RegistryServerService(store, fetcher, cache, github=github),
        deployed_servers=DeployedServerService(store),
        attachment=ServerAttachmentService(store),
        validator=SourceValidator(store),
        git_checker=GitSourceChecker(github),
        github=github,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
