import logging

from app.core.errors import ResolutionFailure
from app.schemas.registry import Registry

logger = logging.getLogger(__name__)


def resolve_endpoint(registry: Registry) -> str:
    """
    Work out which registry API endpoint serves this registry's listing.

    The operator-published status.apiEndpoint wins. Failing that, an http
    source points straight at an API. ConfigMap and git sources are only
    reachable through the endpoint the operator publishes for them.

    Raises:
        ResolutionFailure: No endpoint can be derived.
    """
    endpoint = (registry.status.api_endpoint or "").strip()
    if endpoint:
        return endpoint.rstrip("/")

    if registry.source.type == "http" and registry.source.http:
        return registry.source.http.url.rstrip("/")

    logger.info(
        f"Registry {registry.namespace}/{registry.name} has no API endpoint "
        f"(source type {registry.source.type}, phase {registry.status.phase})"
    )
    raise ResolutionFailure(
        f"No endpoint for registry '{registry.name}': status.apiEndpoint is not set "
        f"and a {registry.source.type} source has no direct URL"
    )
