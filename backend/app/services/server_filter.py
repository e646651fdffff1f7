"""
Filter engine for registry server listings.

Two stages:
- apply_registry_filter: the registry's stored name/tag filter, applied at
  sync time. Name globs support '*' only and must match the whole name.
  Tag include is ANY-of; tag exclude drops an entry carrying ANY excluded
  tag. The name and tag stages are ANDed.
- apply_query: the per-request query over an already-filtered listing.
  Tag match is OR, limit is clamped to [1, 100], offset must be >= 0.
"""
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from app.core.errors import InvalidArgumentError
from app.schemas.registry import TAG_PATTERN, RegistryFilter
from app.schemas.server import RegistryServerEntry

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
MAX_PATTERN_LENGTH = 100
MAX_TAG_LENGTH = 50


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> Pattern[str]:
    """
    Compile a '*' glob into an anchored regex.

    Every other character is literal, so 'mcp-?' only matches the exact
    name 'mcp-?'.
    """
    if not 1 <= len(pattern) <= MAX_PATTERN_LENGTH:
        raise InvalidArgumentError(
            f"Name pattern must be between 1 and {MAX_PATTERN_LENGTH} characters: '{pattern}'"
        )
    return re.compile(re.escape(pattern).replace(r"\*", ".*"))


def glob_match(pattern: str, name: str) -> bool:
    return compile_glob(pattern).fullmatch(name) is not None


def validate_tags(tags: Iterable[str]) -> List[str]:
    tags = list(tags)
    for tag in tags:
        if not 1 <= len(tag) <= MAX_TAG_LENGTH or not re.match(TAG_PATTERN, tag):
            raise InvalidArgumentError(f"Invalid tag '{tag}'")
    return tags


def _matches_names(name: str, include: Sequence[str], exclude: Sequence[str]) -> bool:
    if include and not any(glob_match(p, name) for p in include):
        return False
    return not any(glob_match(p, name) for p in exclude)


def _matches_tags(tags: Sequence[str], include: Sequence[str], exclude: Sequence[str]) -> bool:
    tag_set = set(tags)
    if include and tag_set.isdisjoint(include):
        return False
    return tag_set.isdisjoint(exclude)


def apply_registry_filter(
    entries: Sequence[RegistryServerEntry],
    registry_filter: Optional[RegistryFilter],
) -> List[RegistryServerEntry]:
    """Return the entries that pass the registry's name and tag filter, in order."""
    if registry_filter is None or registry_filter.is_empty():
        return list(entries)

    name_include = registry_filter.names.include if registry_filter.names else []
    name_exclude = registry_filter.names.exclude if registry_filter.names else []
    tag_include = validate_tags(registry_filter.tags.include) if registry_filter.tags else []
    tag_exclude = validate_tags(registry_filter.tags.exclude) if registry_filter.tags else []

    # Compile up front so a bad pattern fails before any entry is evaluated
    for pattern in (*name_include, *name_exclude):
        compile_glob(pattern)

    result = [
        entry for entry in entries
        if _matches_names(entry.name, name_include, name_exclude)
        and _matches_tags(entry.tags, tag_include, tag_exclude)
    ]
    logger.debug(f"Registry filter kept {len(result)} of {len(entries)} entries")
    return result


@dataclass
class QueryPage:
    servers: List[RegistryServerEntry]
    total: int
    limit: int
    offset: int


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, limit))


def apply_query(
    entries: Sequence[RegistryServerEntry],
    tags: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> QueryPage:
    """
    Filter by tags (entry kept if it has any of them) and paginate.

    `total` counts the tag-matching entries before pagination.

    Raises:
        InvalidArgumentError: negative offset or malformed tag.
    """
    if offset < 0:
        raise InvalidArgumentError("offset must be >= 0")
    wanted = set(validate_tags(tags or []))
    limit = clamp_limit(limit)

    matched = [e for e in entries if not wanted or not wanted.isdisjoint(e.tags)]
    return QueryPage(
        servers=matched[offset:offset + limit],
        total=len(matched),
        limit=limit,
        offset=offset,
    )
