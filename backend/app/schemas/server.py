from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.registry import CamelModel

LABEL_REGISTRY_NAME = "toolhive.stacklok.io/registry-name"
LABEL_REGISTRY_NAMESPACE = "toolhive.stacklok.io/registry-namespace"
LABEL_SERVER_NAME = "toolhive.stacklok.io/server-name"
OWNERSHIP_LABEL_KEYS = (LABEL_REGISTRY_NAME, LABEL_REGISTRY_NAMESPACE, LABEL_SERVER_NAME)

ServerPhase = Literal["Pending", "Running", "Failed", "Terminating"]
SERVER_PHASES = ("Pending", "Running", "Failed", "Terminating")
Transport = Literal["stdio", "sse", "streamable-http"]
TRANSPORTS = ("stdio", "sse", "streamable-http")


class OwnershipLabels(BaseModel):
    """
    The three-label tuple linking a server instance to a registry.

    An instance is owned only when all three values are present and
    non-empty; anything less is treated as no ownership at all.
    """

    model_config = ConfigDict(frozen=True)

    registry_name: Optional[str] = None
    registry_namespace: Optional[str] = None
    server_name_in_registry: Optional[str] = None

    @classmethod
    def from_labels(cls, labels: Optional[Dict[str, str]]) -> "OwnershipLabels":
        labels = labels or {}
        return cls(
            registry_name=labels.get(LABEL_REGISTRY_NAME),
            registry_namespace=labels.get(LABEL_REGISTRY_NAMESPACE),
            server_name_in_registry=labels.get(LABEL_SERVER_NAME),
        )

    def is_complete(self) -> bool:
        return all(
            value and value.strip()
            for value in (self.registry_name, self.registry_namespace, self.server_name_in_registry)
        )

    def owned_by(self, registry_name: str, registry_namespace: str) -> bool:
        return (
            self.is_complete()
            and self.registry_name == registry_name
            and self.registry_namespace == registry_namespace
        )

    def to_labels(self) -> Dict[str, str]:
        return {
            LABEL_REGISTRY_NAME: self.registry_name,
            LABEL_REGISTRY_NAMESPACE: self.registry_namespace,
            LABEL_SERVER_NAME: self.server_name_in_registry,
        }


class ServerInstance(CamelModel):
    """A running MCPServer instance, optionally owned by a registry."""

    name: str
    namespace: str
    image: Optional[str] = None
    transport: Optional[Transport] = None
    port: Optional[int] = None
    target_port: Optional[int] = None
    phase: ServerPhase = "Pending"
    ready: bool = False
    url: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_resource(cls, obj: Dict[str, Any]) -> "ServerInstance":
        """Build a ServerInstance from an MCPServer custom resource dict."""
        metadata = obj.get("metadata", {})
        spec = obj.get("spec", {})
        status = obj.get("status") or {}
        phase = status.get("phase")
        return cls(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            image=spec.get("image"),
            transport=spec.get("transport") if spec.get("transport") in TRANSPORTS else None,
            port=spec.get("port"),
            target_port=spec.get("targetPort"),
            phase=phase if phase in SERVER_PHASES else "Pending",
            ready=bool(status.get("ready", False)),
            url=status.get("url"),
            labels=metadata.get("labels") or {},
            created_at=metadata.get("creationTimestamp"),
        )

    @property
    def ownership(self) -> OwnershipLabels:
        return OwnershipLabels.from_labels(self.labels)


class DeployedServer(ServerInstance):
    registry_name: str
    registry_namespace: str
    server_name_in_registry: str


class OrphanedServerList(CamelModel):
    servers: List[ServerInstance]
    total: int
    namespace: str


class DeployedServerList(CamelModel):
    servers: List[DeployedServer]
    total: int
    by_status: Dict[str, int]


class ConnectToRegistryRequest(CamelModel):
    registry_name: str = ""
    registry_namespace: str = ""
    server_name_in_registry: str = ""


class ConnectToRegistryResponse(CamelModel):
    status: str = "success"
    message: str
    server: DeployedServer


class EntryMetadata(CamelModel):
    stars: Optional[int] = None
    pulls: Optional[int] = None
    last_updated: Optional[str] = None


class EnvVar(CamelModel):
    name: str
    description: Optional[str] = None
    required: bool = False
    secret: bool = False
    default: Optional[str] = None


class RegistryServerEntry(CamelModel):
    """One server definition inside a registry's resolved listing."""

    name: str
    image: str
    version: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    tier: Optional[str] = None
    transport: Optional[str] = None
    tools_count: Optional[int] = None
    env_vars: List[EnvVar] = Field(default_factory=list)
    metadata: Optional[EntryMetadata] = None
    author: Optional[str] = None
    repository: Optional[str] = None
    documentation: Optional[str] = None


class RegistryServerPage(CamelModel):
    servers: List[RegistryServerEntry]
    total: int
    limit: int
    offset: int


class RegistryServerStats(CamelModel):
    total: int
    by_tag: Dict[str, int] = Field(default_factory=dict)
