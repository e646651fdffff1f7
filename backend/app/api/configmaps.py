from fastapi import APIRouter, Depends

from app.api.deps import Services, get_services
from app.core.config import settings
from app.core.errors import InvalidArgumentError, NotFoundError
from app.schemas.source_checks import (
    ConfigMapKeyCheck,
    ConfigMapKeyCheckResult,
    ConfigMapKeys,
    ConfigMapList,
    ConfigMapSummary,
    GitBranchList,
    GitBranchQuery,
    GitCheckResult,
    GitSourceCheck,
)
from app.services.git_source_checks import DEFAULT_BRANCH, check_file_path, check_git_source

router = APIRouter()


@router.get("", response_model=ConfigMapList)
async def list_config_maps(
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """ConfigMaps a configmap source can point at, with their keys."""
    config_maps = await services.store.list_config_maps(namespace)
    return ConfigMapList(
        config_maps=[
            ConfigMapSummary(name=c.name, namespace=c.namespace, keys=c.keys, created_at=c.created_at)
            for c in config_maps
        ],
        namespace=namespace,
    )


@router.get("/{namespace}/{name}/keys", response_model=ConfigMapKeys)
async def get_config_map_keys(
    namespace: str,
    name: str,
    services: Services = Depends(get_services),
):
    keys = await services.store.get_config_map_keys(namespace, name)
    if keys is None:
        raise NotFoundError(f"ConfigMap '{name}' not found in namespace '{namespace}'")
    return ConfigMapKeys(keys=keys)


@router.post("/validate", response_model=ConfigMapKeyCheckResult)
async def validate_config_map_key(
    request: ConfigMapKeyCheck,
    namespace: str = settings.DEFAULT_NAMESPACE,
    services: Services = Depends(get_services),
):
    """Whether the ConfigMap exists and holds the key."""
    if not request.name or not request.key:
        raise InvalidArgumentError("ConfigMap name and key are required")
    keys = await services.store.get_config_map_keys(request.namespace or namespace, request.name)
    return ConfigMapKeyCheckResult(valid=keys is not None and request.key in keys)


@router.post("/git/validate", response_model=GitCheckResult)
async def validate_git_source(request: GitSourceCheck):
    """Format check of repository URL, branch and file path."""
    if not request.repository:
        raise InvalidArgumentError("Repository URL is required")
    return check_git_source(request.repository, request.branch, request.path)


@router.post("/git/branches", response_model=GitBranchList)
async def list_git_branches(
    request: GitBranchQuery,
    services: Services = Depends(get_services),
):
    """Branch suggestions for a repository, narrowed by a search term."""
    if not request.repository:
        raise InvalidArgumentError("Repository URL is required")
    branches = await services.git_checker.repository_branches(request.repository, request.search)
    return GitBranchList(branches=branches)


@router.post("/git/validate-file", response_model=GitCheckResult)
async def validate_git_file(request: GitSourceCheck):
    if not request.repository or not request.path:
        raise InvalidArgumentError("Repository URL and file path are required")
    result = check_git_source(request.repository, request.branch or DEFAULT_BRANCH)
    if not result.valid:
        return result
    return check_file_path(request.path)
