import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from app.core.errors import InvalidArgumentError
from app.schemas.registry import RegistryCreate, RegistrySource, RegistryValidationResult, SourceValidation
from app.services.cluster_store import ClusterStore
from app.services.git_source_checks import check_git_source
from app.services.sync_trigger import parse_interval

logger = logging.getLogger(__name__)


def _format_errors(exc: ValidationError) -> List[str]:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        errors.append(f"{location}: {error['msg']}" if location else error["msg"])
    return errors


class SourceValidator:
    """Dry-run validation of a registry definition and its source."""

    def __init__(self, store: ClusterStore):
        self.store = store

    async def validate_source(self, source: RegistrySource, namespace: str) -> SourceValidation:
        """
        Check that the source can be read. Git and http sources are checked for
        format only; a ConfigMap must exist in the namespace and hold the key.
        """
        if source.type == "configmap":
            keys = await self.store.get_config_map_keys(namespace, source.configmap.name)
            if keys is None:
                return SourceValidation(
                    valid=False,
                    error=f"ConfigMap '{source.configmap.name}' not found in namespace '{namespace}'",
                )
            if source.configmap.key not in keys:
                return SourceValidation(
                    valid=False,
                    error=f"Key '{source.configmap.key}' not found in ConfigMap '{source.configmap.name}'",
                )
            return SourceValidation(valid=True)

        if source.type == "git":
            result = check_git_source(source.git.repository, source.git.branch, source.git.path)
            return SourceValidation(valid=result.valid, error=result.error, warning=result.warning)
        return SourceValidation(valid=True)

    async def validate(self, payload: Dict[str, Any], namespace: str) -> RegistryValidationResult:
        body = dict(payload)
        body.setdefault("namespace", namespace)
        try:
            registry = RegistryCreate.model_validate(body)
        except ValidationError as e:
            return RegistryValidationResult(
                valid=False,
                errors=_format_errors(e),
                source_validation=SourceValidation(valid=False, error="Registry definition is invalid"),
            )

        warnings = []
        try:
            if registry.sync_policy is None or parse_interval(registry.sync_policy.interval) is None:
                warnings.append("No sync interval configured; the registry will only sync on demand")
        except InvalidArgumentError as e:
            return RegistryValidationResult(
                valid=False, errors=[e.message], source_validation=SourceValidation(valid=False, error=e.message)
            )
        if registry.filter is None or registry.filter.is_empty():
            warnings.append("No filter configured; every server in the source will be included")

        source_validation = await self.validate_source(registry.source, registry.namespace or namespace)
        if source_validation.warning:
            warnings.append(source_validation.warning)
        logger.info(
            f"Validated registry {registry.namespace or namespace}/{registry.name}: source valid={source_validation.valid}"
        )
        return RegistryValidationResult(
            valid=source_validation.valid,
            errors=[source_validation.error] if source_validation.error else [],
            warnings=warnings,
            source_validation=source_validation,
        )
