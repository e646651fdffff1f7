from dataclasses import dataclass, field
from typing import Iterable, List

from app.schemas.server import DeployedServer, ServerInstance


@dataclass
class ServerClassification:
    deployed: List[DeployedServer] = field(default_factory=list)
    orphaned: List[ServerInstance] = field(default_factory=list)


def to_deployed(instance: ServerInstance) -> DeployedServer:
    ownership = instance.ownership
    return DeployedServer(
        **instance.model_dump(),
        registry_name=ownership.registry_name,
        registry_namespace=ownership.registry_namespace,
        server_name_in_registry=ownership.server_name_in_registry,
    )


def classify_servers(instances: Iterable[ServerInstance]) -> ServerClassification:
    """
    Split instances into deployed (complete ownership labels) and orphaned.

    Every instance lands in exactly one list, in input order.
    """
    result = ServerClassification()
    for instance in instances:
        if instance.ownership.is_complete():
            result.deployed.append(to_deployed(instance))
        else:
            result.orphaned.append(instance)
    return result
