import logging
from collections import Counter
from typing import List, Optional

from app.core.errors import NotFoundError
from app.schemas.server import SERVER_PHASES, DeployedServerList, OrphanedServerList, ServerInstance
from app.services.cluster_store import ClusterStore
from app.services.server_classifier import ServerClassification, classify_servers

logger = logging.getLogger(__name__)


class DeployedServerService:
    """Namespace scans of MCPServer instances, split by registry ownership."""

    def __init__(self, store: ClusterStore):
        self.store = store

    async def scan(self, namespace: str) -> ServerClassification:
        instances = [ServerInstance.from_resource(obj) for obj in await self.store.list_servers(namespace)]
        return classify_servers(instances)

    async def list_orphaned(self, namespace: str) -> OrphanedServerList:
        orphaned = (await self.scan(namespace)).orphaned
        return OrphanedServerList(servers=orphaned, total=len(orphaned), namespace=namespace)

    async def list_deployed(self, namespace: str, registry_name: str,
                            status: Optional[str] = None) -> DeployedServerList:
        """
        Instances in `namespace` owned by the registry, optionally narrowed to
        one phase. `byStatus` counts every owned instance before narrowing.

        Raises:
            NotFoundError: The registry does not exist.
        """
        if await self.store.get_registry(namespace, registry_name) is None:
            raise NotFoundError(f"Registry '{registry_name}' not found in namespace '{namespace}'")

        owned = [
            s for s in (await self.scan(namespace)).deployed
            if s.ownership.owned_by(registry_name, namespace)
        ]
        counts = Counter(s.phase for s in owned)
        by_status = {phase: counts.get(phase, 0) for phase in SERVER_PHASES}

        if status:
            owned = [s for s in owned if s.phase.lower() == status.lower()]
        return DeployedServerList(servers=owned, total=len(owned), by_status=by_status)

    async def dependents(self, namespace: str, registry_name: str) -> List[str]:
        """Names of deployed instances that carry this registry's ownership tuple."""
        return [
            s.name for s in (await self.scan(namespace)).deployed
            if s.ownership.owned_by(registry_name, namespace)
        ]
