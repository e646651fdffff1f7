"""
Cluster-resource store contract.

The registry services never talk to the Kubernetes API directly; they go
through a ClusterStore, which offers CRUD and JSON merge-patch on MCPRegistry
and MCPServer resources, ConfigMap listing and key lookup, and GET through the API
server's service proxy. KubernetesClusterStore (kubernetes_store.py) is the
production implementation; InMemoryClusterStore backs tests and local
development (CLUSTER_STORE=memory).
"""
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from app.core.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

REGISTRY_PLURAL = "mcpregistries"
SERVER_PLURAL = "mcpservers"


def _now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ProxyResponse:
    status_code: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class ConfigMapInfo:
    name: str
    namespace: str
    keys: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None


def json_merge_patch(target: Any, patch: Any) -> Any:
    """
    Apply an RFC 7386 JSON merge patch and return the merged value.

    Objects merge recursively, null removes a key, anything else replaces.
    """
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = json_merge_patch(result.get(key), value)
    return result


class ClusterStore(ABC):
    """Async interface to the cluster-resource store."""

    @abstractmethod
    async def list_registries(self, namespace: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_registry_namespaces(self) -> List[str]:
        """Namespaces that hold at least one MCPRegistry, sorted."""

    @abstractmethod
    async def get_registry(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def create_registry(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def patch_registry(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def patch_registry_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete_registry(self, namespace: str, name: str) -> None:
        ...

    @abstractmethod
    async def list_servers(self, namespace: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_server(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def patch_server(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def list_config_maps(self, namespace: str) -> List[ConfigMapInfo]:
        """ConfigMaps in the namespace with their data keys, sorted by name."""

    @abstractmethod
    async def get_config_map_keys(self, namespace: str, name: str) -> Optional[List[str]]:
        ...

    @abstractmethod
    async def proxy_get(self, namespace: str, service: str, port: str, path: str) -> ProxyResponse:
        ...


ProxyHandler = Callable[[str], Awaitable[ProxyResponse]]


class InMemoryClusterStore(ClusterStore):
    """Dict-backed store with the same merge-patch and conflict semantics."""

    def __init__(self):
        self._objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._config_maps: Dict[Tuple[str, str], Tuple[Dict[str, str], datetime]] = {}
        self._services: Dict[Tuple[str, str, str], ProxyHandler] = {}

    def _list(self, plural: str, namespace: str) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for (kind, ns, _), obj in sorted(self._objects.items())
            if kind == plural and ns == namespace
        ]

    def _create(self, plural: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        key = (plural, namespace, name)
        if key in self._objects:
            raise ConflictError(f"{plural} '{name}' already exists in namespace '{namespace}'")
        obj = copy.deepcopy(body)
        obj["metadata"].update({
            "namespace": namespace,
            "uid": str(uuid.uuid4()),
            "creationTimestamp": _now_timestamp(),
        })
        self._objects[key] = obj
        return copy.deepcopy(obj)

    def _patch(self, plural: str, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        key = (plural, namespace, name)
        if key not in self._objects:
            raise NotFoundError(f"{plural} '{name}' not found in namespace '{namespace}'")
        self._objects[key] = json_merge_patch(self._objects[key], patch)
        return copy.deepcopy(self._objects[key])

    async def list_registries(self, namespace: str) -> List[Dict[str, Any]]:
        return self._list(REGISTRY_PLURAL, namespace)

    async def list_registry_namespaces(self) -> List[str]:
        return sorted({ns for kind, ns, _ in self._objects if kind == REGISTRY_PLURAL})

    async def get_registry(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self._objects.get((REGISTRY_PLURAL, namespace, name))
        return copy.deepcopy(obj) if obj else None

    async def create_registry(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(REGISTRY_PLURAL, namespace, body)

    async def patch_registry(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._patch(REGISTRY_PLURAL, namespace, name, patch)

    async def patch_registry_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        return self._patch(REGISTRY_PLURAL, namespace, name, {"status": status})

    async def delete_registry(self, namespace: str, name: str) -> None:
        if self._objects.pop((REGISTRY_PLURAL, namespace, name), None) is None:
            raise NotFoundError(f"Registry '{name}' not found in namespace '{namespace}'")

    async def list_servers(self, namespace: str) -> List[Dict[str, Any]]:
        return self._list(SERVER_PLURAL, namespace)

    async def get_server(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self._objects.get((SERVER_PLURAL, namespace, name))
        return copy.deepcopy(obj) if obj else None

    async def patch_server(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._patch(SERVER_PLURAL, namespace, name, patch)

    async def list_config_maps(self, namespace: str) -> List[ConfigMapInfo]:
        return [
            ConfigMapInfo(name=name, namespace=ns, keys=sorted(data), created_at=created)
            for (ns, name), (data, created) in sorted(self._config_maps.items())
            if ns == namespace
        ]

    async def get_config_map_keys(self, namespace: str, name: str) -> Optional[List[str]]:
        entry = self._config_maps.get((namespace, name))
        return sorted(entry[0]) if entry is not None else None

    async def proxy_get(self, namespace: str, service: str, port: str, path: str) -> ProxyResponse:
        handler = self._services.get((namespace, service, port))
        if handler is None:
            return ProxyResponse(503, b'{"message": "no endpoints available for service"}')
        return await handler(path)

    # Seeding helpers used by tests and local development

    def add_server(self, namespace: str, name: str, labels: Optional[Dict[str, str]] = None,
                   spec: Optional[Dict[str, Any]] = None, status: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {
            "apiVersion": "toolhive.stacklok.dev/v1alpha1",
            "kind": "MCPServer",
            "metadata": {"name": name, "labels": dict(labels or {})},
            "spec": spec or {"image": f"{name}:latest", "transport": "stdio"},
            "status": status or {"phase": "Running", "ready": True},
        }
        return self._create(SERVER_PLURAL, namespace, body)

    def remove_server(self, namespace: str, name: str) -> None:
        self._objects.pop((SERVER_PLURAL, namespace, name), None)

    def add_config_map(self, namespace: str, name: str, data: Dict[str, str]) -> None:
        self._config_maps[(namespace, name)] = (dict(data), datetime.now(timezone.utc))

    def add_service(self, namespace: str, service: str, port: str, handler: ProxyHandler) -> None:
        self._services[(namespace, service, port)] = handler
