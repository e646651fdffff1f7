import pytest

from app.core.errors import InvalidArgumentError
from app.schemas.registry import NameFilter, RegistryFilter, TagFilter
from app.schemas.server import RegistryServerEntry
from app.services.server_filter import apply_query, apply_registry_filter, clamp_limit, glob_match


def entry(name, tags=()):
    return RegistryServerEntry(name=name, image=f"{name}:latest", tags=list(tags))


@pytest.fixture
def entries():
    return [
        entry("mcp-web", ["web"]),
        entry("mcp-test", ["web", "deprecated"]),
        entry("db-tool", ["database"]),
    ]


def test_include_glob_and_excluded_tag(entries):
    """mcp-* with deprecated excluded keeps only mcp-web."""
    registry_filter = RegistryFilter(
        names=NameFilter(include=["mcp-*"]),
        tags=TagFilter(exclude=["deprecated"]),
    )
    result = apply_registry_filter(entries, registry_filter)
    assert [e.name for e in result] == ["mcp-web"]


def test_no_filter_is_identity(entries):
    assert apply_registry_filter(entries, None) == entries
    assert apply_registry_filter(entries, RegistryFilter()) == entries


def test_name_exclude_only(entries):
    result = apply_registry_filter(entries, RegistryFilter(names=NameFilter(exclude=["*-test"])))
    assert [e.name for e in result] == ["mcp-web", "db-tool"]


def test_tag_include_is_any_of(entries):
    result = apply_registry_filter(entries, RegistryFilter(tags=TagFilter(include=["database", "deprecated"])))
    assert [e.name for e in result] == ["mcp-test", "db-tool"]


def test_filter_preserves_input_order(entries):
    reversed_entries = list(reversed(entries))
    result = apply_registry_filter(reversed_entries, RegistryFilter(names=NameFilter(include=["*"])))
    assert [e.name for e in result] == ["db-tool", "mcp-test", "mcp-web"]


def test_glob_is_full_match_and_literal():
    assert glob_match("mcp-*", "mcp-web")
    assert not glob_match("mcp-*", "old-mcp-web")
    assert glob_match("*web*", "old-mcp-web")
    assert not glob_match("mcp.web", "mcp-web")
    assert glob_match("mcp?", "mcp?")
    assert not glob_match("mcp?", "mcpx")
    assert not glob_match("MCP-*", "mcp-web")


def test_overlong_pattern_rejected():
    with pytest.raises(InvalidArgumentError):
        glob_match("x" * 101, "x")


def test_query_tags_or_and_total(entries):
    page = apply_query(entries, tags=["database", "deprecated"], limit=1, offset=0)
    assert [e.name for e in page.servers] == ["mcp-test"]
    assert page.total == 2
    assert page.limit == 1


def test_query_offset_past_end(entries):
    page = apply_query(entries, offset=10)
    assert page.servers == []
    assert page.total == 3


@pytest.mark.parametrize("requested, expected", [(None, 50), (0, 1), (-5, 1), (500, 100), (20, 20)])
def test_limit_clamped(requested, expected):
    assert clamp_limit(requested) == expected


def test_negative_offset_rejected(entries):
    with pytest.raises(InvalidArgumentError):
        apply_query(entries, offset=-1)


def test_malformed_query_tag_rejected(entries):
    with pytest.raises(InvalidArgumentError):
        apply_query(entries, tags=["bad tag"])
