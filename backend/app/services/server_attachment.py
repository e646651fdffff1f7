import logging

from app.core.errors import ConflictError, InvalidArgumentError, NotFoundError
from app.schemas.server import DeployedServer, OwnershipLabels, ServerInstance
from app.services.cluster_store import ClusterStore
from app.services.server_classifier import to_deployed

logger = logging.getLogger(__name__)


class ServerAttachmentService:
    """Labels an orphaned server instance into a registry's ownership."""

    def __init__(self, store: ClusterStore):
        self.store = store

    async def attach(
        self,
        instance_name: str,
        instance_namespace: str,
        registry_name: str,
        registry_namespace: str,
        server_name_in_registry: str,
    ) -> DeployedServer:
        """
        Set all three ownership labels on the instance in one merge patch.

        Re-attaching with the same tuple changes nothing.

        Raises:
            InvalidArgumentError: A required field is blank.
            NotFoundError: The registry or the instance does not exist.
            ConflictError: The instance is already owned by another registry
                or under another entry name.
        """
        target = OwnershipLabels(
            registry_name=(registry_name or "").strip(),
            registry_namespace=(registry_namespace or "").strip(),
            server_name_in_registry=(server_name_in_registry or "").strip(),
        )
        if not target.is_complete():
            raise InvalidArgumentError(
                "Missing required fields: registryName, registryNamespace, serverNameInRegistry"
            )

        if await self.store.get_registry(target.registry_namespace, target.registry_name) is None:
            raise NotFoundError(
                f"Registry '{target.registry_name}' not found in namespace '{target.registry_namespace}'"
            )

        obj = await self.store.get_server(instance_namespace, instance_name)
        if obj is None:
            raise NotFoundError(f"Server '{instance_name}' not found in namespace '{instance_namespace}'")
        instance = ServerInstance.from_resource(obj)

        current = instance.ownership
        if current == target:
            logger.info(f"Server {instance_namespace}/{instance_name} already attached, nothing to do")
            return to_deployed(instance)
        if current.is_complete():
            raise ConflictError(
                f"Server '{instance_name}' is already attached to registry "
                f"'{current.registry_namespace}/{current.registry_name}' as '{current.server_name_in_registry}'"
            )

        patched = await self.store.patch_server(
            instance_namespace, instance_name, {"metadata": {"labels": target.to_labels()}}
        )
        logger.info(
            f"Attached server {instance_namespace}/{instance_name} to registry "
            f"{target.registry_namespace}/{target.registry_name} as {target.server_name_in_registry}"
        )
        return to_deployed(ServerInstance.from_resource(patched))
