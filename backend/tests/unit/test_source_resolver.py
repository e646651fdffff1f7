import pytest

from app.core.errors import ResolutionFailure
from app.schemas.registry import Registry
from app.services.source_resolver import resolve_endpoint
from tests.factories import REGISTRY_ENDPOINT, registry_resource

HTTP_SPEC = {
    "displayName": "Public",
    "source": {"type": "http", "http": {"url": "https://registry.example.com/api/"}},
}


def test_api_endpoint_is_authoritative():
    registry = Registry.from_resource(registry_resource(
        spec=HTTP_SPEC, status={"phase": "Ready", "apiEndpoint": REGISTRY_ENDPOINT},
    ))
    assert resolve_endpoint(registry) == REGISTRY_ENDPOINT


def test_http_source_used_when_no_endpoint():
    registry = Registry.from_resource(registry_resource(spec=HTTP_SPEC))
    assert resolve_endpoint(registry) == "https://registry.example.com/api"


@pytest.mark.parametrize("status", [{"phase": "Pending"}, {"phase": "Ready", "apiEndpoint": "  "}])
def test_configmap_without_endpoint_fails(status):
    registry = Registry.from_resource(registry_resource(status=status))
    with pytest.raises(ResolutionFailure):
        resolve_endpoint(registry)
