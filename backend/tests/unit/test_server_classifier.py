import itertools

from app.schemas.server import (
    LABEL_REGISTRY_NAME,
    LABEL_REGISTRY_NAMESPACE,
    LABEL_SERVER_NAME,
    OwnershipLabels,
    ServerInstance,
)
from app.services.server_classifier import classify_servers
from tests.factories import NAMESPACE, ownership_labels

LABEL_VALUES = [None, "", "  ", "value"]


def instance(name, labels):
    return ServerInstance(name=name, namespace=NAMESPACE, labels=labels)


def all_label_combinations():
    """Every mix of absent, empty, blank and set values over the three labels."""
    instances = []
    keys = (LABEL_REGISTRY_NAME, LABEL_REGISTRY_NAMESPACE, LABEL_SERVER_NAME)
    for i, values in enumerate(itertools.product(LABEL_VALUES, repeat=3)):
        labels = {k: v for k, v in zip(keys, values) if v is not None}
        labels["app"] = "mcp"
        instances.append(instance(f"server-{i}", labels))
    return instances


def test_classification_is_total_and_disjoint():
    instances = all_label_combinations()
    result = classify_servers(instances)

    deployed = {s.name for s in result.deployed}
    orphaned = {s.name for s in result.orphaned}
    assert deployed | orphaned == {s.name for s in instances}
    assert deployed & orphaned == set()
    # Only the combination with all three labels set counts as deployed
    assert len(deployed) == 1


def test_deployed_exposes_ownership_tuple():
    result = classify_servers([instance("web-1", ownership_labels(server="mcp-web"))])
    [deployed] = result.deployed
    assert (deployed.registry_name, deployed.registry_namespace, deployed.server_name_in_registry) == (
        "team-registry", NAMESPACE, "mcp-web"
    )


def test_partial_labels_are_orphaned():
    labels = ownership_labels()
    del labels[LABEL_SERVER_NAME]
    result = classify_servers([instance("half", labels)])
    assert result.deployed == []
    assert [s.name for s in result.orphaned] == ["half"]


def test_ownership_value_type():
    labels = OwnershipLabels.from_labels(ownership_labels())
    assert labels.is_complete()
    assert labels.owned_by("team-registry", NAMESPACE)
    assert not labels.owned_by("team-registry", "elsewhere")
    assert not OwnershipLabels.from_labels({}).is_complete()
    assert OwnershipLabels.from_labels(labels.to_labels()) == labels


def test_from_resource_tolerates_unknown_values():
    server = ServerInstance.from_resource({
        "metadata": {"name": "x", "namespace": NAMESPACE},
        "spec": {"image": "x:1", "transport": "carrier-pigeon"},
        "status": {"phase": "Exploding"},
    })
    assert server.transport is None
    assert server.phase == "Pending"
    assert server.labels == {}
