from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.schemas.registry import CamelModel


class ConfigMapSummary(CamelModel):
    name: str
    namespace: str
    keys: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ConfigMapList(CamelModel):
    config_maps: List[ConfigMapSummary]
    namespace: str


class ConfigMapKeys(CamelModel):
    keys: List[str]


class ConfigMapKeyCheck(CamelModel):
    """Request body of the ConfigMap key check. Blank fields are reported as 400."""

    name: Optional[str] = None
    key: Optional[str] = None
    namespace: Optional[str] = None


class ConfigMapKeyCheckResult(CamelModel):
    valid: bool


class GitSourceCheck(CamelModel):
    repository: Optional[str] = None
    branch: Optional[str] = None
    path: Optional[str] = None


class GitBranchQuery(CamelModel):
    repository: Optional[str] = None
    search: Optional[str] = None


class GitCheckResult(CamelModel):
    """
    Outcome of a git source check. Checks are on format only, so
    file_exists stays None; warning carries advice that does not make the
    source invalid.
    """

    valid: bool
    file_exists: Optional[bool] = None
    error: Optional[str] = None
    warning: Optional[str] = None


class GitBranch(CamelModel):
    name: str
    is_default: bool = False


class GitBranchList(CamelModel):
    branches: List[GitBranch]
