from fastapi import APIRouter, Depends

from app.api.deps import Services, get_services
from app.core.config import settings
from app.schemas.server import ConnectToRegistryRequest, ConnectToRegistryResponse, OrphanedServerList

router = APIRouter()


@router.get("", response_model=OrphanedServerList)
async def list_orphaned_servers(
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Server instances without a complete set of registry ownership labels."""
    return await services.deployed_servers.list_orphaned(namespace)


@router.post("/{server_name}/connect", response_model=ConnectToRegistryResponse)
async def connect_to_registry(
    server_name: str,
    request: ConnectToRegistryRequest,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Attach an orphaned instance to a registry by labelling it."""
    server = await services.attachment.attach(
        instance_name=server_name,
        instance_namespace=namespace,
        registry_name=request.registry_name,
        registry_namespace=request.registry_namespace,
        server_name_in_registry=request.server_name_in_registry,
    )
    return ConnectToRegistryResponse(
        message=f"Server '{server_name}' connected to registry '{request.registry_name}'",
        server=server,
    )
