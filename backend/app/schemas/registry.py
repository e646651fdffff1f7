import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

K8S_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
DURATION_PATTERN = re.compile(r"^(\d+[smhd])+$")
GIT_URL_PATTERN = re.compile(r"^https://(github\.com|gitlab\.com|bitbucket\.org)/.+\.git$")
TAG_PATTERN = r"^[a-zA-Z0-9._-]+$"
MANUAL_INTERVAL = "manual"

RegistryPhase = Literal["Pending", "Syncing", "Ready", "Error"]
REGISTRY_PHASES = ("Pending", "Syncing", "Ready", "Error")


class CamelModel(BaseModel):
    """Base model that reads and writes the camelCase CRD field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfigMapSource(CamelModel):
    name: str = Field(min_length=1, max_length=253, pattern=K8S_NAME_PATTERN)
    key: str = Field(min_length=1, max_length=253, pattern=r"^[a-zA-Z0-9._-]+$")


class GitSource(CamelModel):
    repository: str
    branch: str = Field(default="main", min_length=1, max_length=250, pattern=r"^[a-zA-Z0-9._/-]+$")
    path: str = Field(min_length=1, max_length=1000)

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        if not GIT_URL_PATTERN.match(v):
            raise ValueError("Git URL must be an HTTPS GitHub, GitLab, or Bitbucket URL ending with .git")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if re.search(r'[<>:"|?*]', v) or any(ord(ch) < 32 for ch in v):
            raise ValueError("File path contains invalid characters")
        return v


class HttpSource(CamelModel):
    url: str

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("HTTP source URL must start with http:// or https://")
        return v


class RegistrySource(CamelModel):
    """Tagged union of the places a registry reads its server list from."""

    type: Literal["configmap", "git", "http"]
    format: Literal["toolhive"] = "toolhive"
    configmap: Optional[ConfigMapSource] = None
    git: Optional[GitSource] = None
    http: Optional[HttpSource] = None

    @model_validator(mode="after")
    def check_variant(self) -> "RegistrySource":
        variants = {"configmap": self.configmap, "git": self.git, "http": self.http}
        if variants[self.type] is None:
            raise ValueError(f"source.{self.type} is required when source.type is '{self.type}'")
        extra = [k for k, v in variants.items() if k != self.type and v is not None]
        if extra:
            raise ValueError(f"source.{extra[0]} is not allowed when source.type is '{self.type}'")
        return self

    def describe(self) -> str:
        """Human-readable location string, e.g. 'repo.git@main/registry.json'."""
        if self.type == "configmap":
            return f"{self.configmap.name}:{self.configmap.key}"
        if self.type == "git":
            return f"{self.git.repository}@{self.git.branch}/{self.git.path}"
        return self.http.url


class SyncPolicy(CamelModel):
    interval: str

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        if v != MANUAL_INTERVAL and not DURATION_PATTERN.match(v):
            raise ValueError('Sync interval must be "manual" or a duration like "30m", "1h", "2h30m"')
        return v


class NameFilter(CamelModel):
    include: List[str] = Field(default_factory=list, max_length=20)
    exclude: List[str] = Field(default_factory=list, max_length=20)

    @field_validator("include", "exclude")
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        for pattern in v:
            if not 1 <= len(pattern) <= 100:
                raise ValueError("Pattern must be between 1 and 100 characters long")
        return v


class TagFilter(CamelModel):
    include: List[str] = Field(default_factory=list, max_length=50)
    exclude: List[str] = Field(default_factory=list, max_length=50)

    @field_validator("include", "exclude")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        for tag in v:
            if not 1 <= len(tag) <= 50 or not re.match(TAG_PATTERN, tag):
                raise ValueError(
                    "Tag can only contain alphanumeric characters, dots, underscores, and hyphens (max 50)"
                )
        return v


class RegistryFilter(CamelModel):
    names: Optional[NameFilter] = None
    tags: Optional[TagFilter] = None

    def is_empty(self) -> bool:
        names_empty = not self.names or not (self.names.include or self.names.exclude)
        tags_empty = not self.tags or not (self.tags.include or self.tags.exclude)
        return names_empty and tags_empty


class RegistrySpec(CamelModel):
    display_name: str = Field(min_length=1, max_length=100)
    enforce_servers: bool = False
    source: RegistrySource
    sync_policy: Optional[SyncPolicy] = None
    filter: Optional[RegistryFilter] = None


SPEC_FIELDS = {"display_name", "enforce_servers", "source", "sync_policy", "filter"}


class RegistryStatus(CamelModel):
    """Derived fields, written only by the lifecycle state machine."""

    phase: RegistryPhase = "Pending"
    last_sync_time: Optional[datetime] = None
    last_sync_hash: Optional[str] = None
    server_count: int = 0
    message: Optional[str] = None
    api_endpoint: Optional[str] = None
    last_handled_sync_request: Optional[str] = None

    @field_validator("phase", mode="before")
    @classmethod
    def default_phase(cls, v: Any) -> Any:
        return v or "Pending"

    @field_validator("server_count", mode="before")
    @classmethod
    def default_server_count(cls, v: Any) -> Any:
        return 0 if v is None else v


class RegistryCreate(RegistrySpec):
    name: str = Field(min_length=1, max_length=63, pattern=K8S_NAME_PATTERN)
    namespace: Optional[str] = Field(default=None, min_length=1, max_length=63, pattern=K8S_NAME_PATTERN)


class RegistryUpdate(CamelModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    enforce_servers: Optional[bool] = None
    source: Optional[RegistrySource] = None
    sync_policy: Optional[SyncPolicy] = None
    filter: Optional[RegistryFilter] = None


class Registry(RegistrySpec):
    name: str
    namespace: str
    created_at: Optional[datetime] = None
    annotations: Dict[str, str] = Field(default_factory=dict)
    status: RegistryStatus = Field(default_factory=RegistryStatus)

    @classmethod
    def from_resource(cls, obj: Dict[str, Any]) -> "Registry":
        """Build a Registry from an MCPRegistry custom resource dict."""
        metadata = obj.get("metadata", {})
        spec = dict(obj.get("spec", {}))
        spec.setdefault("displayName", metadata.get("name"))
        return cls.model_validate({
            **spec,
            "name": metadata.get("name"),
            "namespace": metadata.get("namespace"),
            "createdAt": metadata.get("creationTimestamp"),
            "annotations": metadata.get("annotations") or {},
            "status": obj.get("status") or {},
        })

    def spec_dict(self) -> Dict[str, Any]:
        return self.model_dump(
            by_alias=True, exclude_none=True, mode="json", include=SPEC_FIELDS
        )


class SyncRunSummary(CamelModel):
    id: str
    forced: bool
    status: str
    server_count: Optional[int] = None
    message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RegistryDetail(Registry):
    sync_history: List[SyncRunSummary] = Field(default_factory=list)


class RegistryList(CamelModel):
    registries: List[Registry]
    total: int
    limit: int
    offset: int
    namespace: str


class SyncTicket(CamelModel):
    sync_id: str
    status: str = "initiated"
    forced: bool = False
    requested_at: str


class RegistryStatusResponse(CamelModel):
    name: str
    namespace: str
    phase: RegistryPhase
    server_count: int
    last_sync_time: Optional[datetime] = None
    message: Optional[str] = None
    api_endpoint: Optional[str] = None


class SourceValidation(CamelModel):
    valid: bool
    error: Optional[str] = None
    warning: Optional[str] = None


class RegistryValidationResult(CamelModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    source_validation: SourceValidation
