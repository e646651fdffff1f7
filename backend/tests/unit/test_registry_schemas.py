import pytest
from pydantic import ValidationError

from app.schemas.registry import Registry, RegistryCreate, RegistryFilter, RegistrySource, SyncPolicy
from tests.factories import registry_resource


class TestRegistrySource:

    def test_variant_must_match_type(self):
        with pytest.raises(ValidationError, match="source.git is required"):
            RegistrySource.model_validate({"type": "git"})

    def test_other_variants_not_allowed(self):
        with pytest.raises(ValidationError, match="not allowed"):
            RegistrySource.model_validate({
                "type": "configmap",
                "configmap": {"name": "a", "key": "b"},
                "http": {"url": "https://example.com"},
            })

    @pytest.mark.parametrize("repository", [
        "http://github.com/acme/registry.git",
        "https://example.com/acme/registry.git",
        "https://github.com/acme/registry",
    ])
    def test_git_repository_rules(self, repository):
        with pytest.raises(ValidationError):
            RegistrySource.model_validate({"type": "git", "git": {"repository": repository, "path": "r.json"}})

    def test_git_defaults_and_describe(self):
        source = RegistrySource.model_validate({
            "type": "git", "git": {"repository": "https://github.com/acme/registry.git", "path": "r.json"},
        })
        assert source.git.branch == "main"
        assert source.describe() == "https://github.com/acme/registry.git@main/r.json"


@pytest.mark.parametrize("interval", ["30m", "1h", "2h30m", "manual"])
def test_sync_policy_accepts(interval):
    assert SyncPolicy(interval=interval).interval == interval


@pytest.mark.parametrize("interval", ["", "1x", "h", "30 m", "-1h"])
def test_sync_policy_rejects(interval):
    with pytest.raises(ValidationError):
        SyncPolicy(interval=interval)


def test_filter_tag_rules():
    with pytest.raises(ValidationError):
        RegistryFilter.model_validate({"tags": {"include": ["has space"]}})
    assert RegistryFilter().is_empty()
    assert not RegistryFilter.model_validate({"names": {"exclude": ["*-test"]}}).is_empty()


def test_registry_name_pattern():
    with pytest.raises(ValidationError):
        RegistryCreate.model_validate({
            "name": "-bad",
            "displayName": "x",
            "source": {"type": "http", "http": {"url": "https://example.com"}},
        })


def test_from_resource_fills_defaults():
    obj = registry_resource(status={})
    del obj["spec"]["displayName"]
    obj["metadata"]["creationTimestamp"] = "2026-01-02T03:04:05Z"

    registry = Registry.from_resource(obj)

    assert registry.display_name == "team-registry"
    assert registry.status.phase == "Pending"
    assert registry.status.server_count == 0
    assert registry.created_at.year == 2026
    assert registry.spec_dict()["source"]["type"] == "configmap"
