import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from app.api.deps import Services, get_services
from app.core.config import settings
from app.schemas.registry import (
    Registry,
    RegistryCreate,
    RegistryDetail,
    RegistryList,
    RegistryPhase,
    RegistryStatusResponse,
    RegistryUpdate,
    RegistryValidationResult,
    SyncTicket,
)
from app.schemas.server import DeployedServerList, RegistryServerEntry, RegistryServerPage, RegistryServerStats
from app.services.server_filter import clamp_limit

router = APIRouter()
logger = logging.getLogger(__name__)


def _split_tags(tags: Optional[List[str]]) -> List[str]:
    """Accept both ?tags=a&tags=b and ?tags=a,b."""
    if not tags:
        return []
    return [t.strip() for raw in tags for t in raw.split(",") if t.strip()]


@router.get("", response_model=RegistryList)
async def list_registries(
    namespace: str = settings.DEFAULT_NAMESPACE,
    phase: Optional[RegistryPhase] = Query(None, alias="status"),
    limit: Optional[int] = None,
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """List registries in a namespace, optionally narrowed to one phase."""
    registries = await services.lifecycle.list(namespace, phase=phase)
    limit = clamp_limit(limit)
    return RegistryList(
        registries=registries[offset:offset + limit],
        total=len(registries),
        limit=limit,
        offset=offset,
        namespace=namespace,
    )


@router.post("", response_model=Registry, status_code=status.HTTP_201_CREATED)
async def create_registry(
    data: RegistryCreate,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Create a registry. It starts in phase Pending and is not synced yet."""
    if data.namespace is None:
        data = data.model_copy(update={"namespace": namespace})
    return await services.lifecycle.create(data)


@router.post("/validate", response_model=RegistryValidationResult)
async def validate_registry(
    payload: Dict[str, Any] = Body(...),
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Dry-run a registry definition: schema, sync policy, and source reachability."""
    return await services.validator.validate(payload, namespace)


@router.get("/{name}", response_model=RegistryDetail)
async def get_registry(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.detail(namespace, name)


@router.put("/{name}", response_model=Registry)
async def update_registry(
    name: str,
    data: RegistryUpdate,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.update(namespace, name, data)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_registry(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Delete a registry. Refused while deployed servers still reference it."""
    await services.lifecycle.delete(namespace, name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{name}/status", response_model=RegistryStatusResponse)
async def get_registry_status(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.status(namespace, name)


@router.post("/{name}/sync", response_model=SyncTicket, status_code=status.HTTP_202_ACCEPTED)
async def sync_registry(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Start a sync. 409 if one is already running."""
    return await services.lifecycle.trigger_sync(namespace, name)


@router.post("/{name}/force-sync", response_model=SyncTicket, status_code=status.HTTP_202_ACCEPTED)
async def force_sync_registry(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Start a sync even if one is already running."""
    logger.info(f"Force sync requested for {namespace}/{name}")
    return await services.lifecycle.force_sync(namespace, name)


@router.get("/{name}/servers", response_model=RegistryServerPage)
async def list_registry_servers(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    tags: Optional[List[str]] = Query(None),
    limit: Optional[int] = None,
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Servers available from the registry, after its filter, paginated."""
    return await services.registry_servers.list_servers(
        namespace, name, tags=_split_tags(tags), limit=limit, offset=offset
    )


@router.get("/{name}/server-stats", response_model=RegistryServerStats)
async def get_registry_server_stats(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Total servers in the filtered listing and per-tag counts."""
    return await services.registry_servers.server_stats(namespace, name)


@router.get("/{name}/servers/{server_name}", response_model=RegistryServerEntry)
async def get_registry_server(
    name: str,
    server_name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    return await services.registry_servers.get_server(namespace, name, server_name)


@router.get("/{name}/deployed-servers", response_model=DeployedServerList)
async def list_deployed_servers(
    name: str,
    namespace: str = settings.DEFAULT_NAMESPACE,
    server_status: Optional[str] = Query(None, alias="status"),
    services: Services = Depends(get_services),
):
    """Running instances owned by the registry."""
    return await services.deployed_servers.list_deployed(namespace, name, status=server_status)
