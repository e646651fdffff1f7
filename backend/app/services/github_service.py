import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.schemas.server import EntryMetadata, RegistryServerEntry
from app.utils.url_helpers import normalize_github_url

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 10.0
CACHE_TTL_SECONDS = 3600  # 1 hour
MAX_RETRIES = 3
BACKOFF_FACTOR = 2

# GitHub URL patterns
GITHUB_URL_PATTERNS = [
    re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$"),
    re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$"),
    re.compile(r"^https?://www\.github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$"),
]


class GitHubService:
    """
    Star-count enrichment for registry listing entries and branch lookup
    for git sources.

    Features:
    - URL parsing for various GitHub URL formats
    - Star counts cached in redis when it is reachable
    - Rate limit detection and exponential backoff
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._redis_client: Optional[redis.Redis] = None
        self._redis_available = False
        self._transport = transport

    async def _get_redis_client(self) -> Optional[redis.Redis]:
        """Get Redis client with connection validation."""
        if self._redis_client is None:
            try:
                self._redis_client = redis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_timeout=5.0,
                    socket_connect_timeout=5.0,
                )
                await self._redis_client.ping()
                self._redis_available = True
                logger.info("Redis connection established")
            except (RedisError, OSError) as e:
                logger.warning(f"Redis connection failed: {e}. Proceeding without cache.")
                self._redis_available = False
                self._redis_client = None

        return self._redis_client if self._redis_available else None

    def parse_github_url(self, url: str) -> Optional[Tuple[str, str]]:
        """
        Parse GitHub repository URL to extract owner and repository name.

        Supports:
        - https://github.com/owner/repo
        - https://github.com/owner/repo.git
        - git@github.com:owner/repo.git
        - https://www.github.com/owner/repo

        Returns:
            Tuple of (owner, repo) if valid GitHub URL, None otherwise
        """
        if not url or not isinstance(url, str):
            return None

        url = url.strip()
        if not url:
            return None

        for pattern in GITHUB_URL_PATTERNS:
            match = pattern.match(url)
            if match:
                owner, repo = match.groups()
                if repo.endswith('.git'):
                    repo = repo[:-4]
                return owner, repo

        return None

    async def enrich_stars(self, entries: List[RegistryServerEntry]) -> List[RegistryServerEntry]:
        """
        Fill metadata.stars for entries with a GitHub repository and no star
        count yet. Entries are copied, never mutated in place.
        """
        enriched = []
        for entry in entries:
            if entry.metadata and entry.metadata.stars is not None:
                enriched.append(entry)
                continue
            stars = await self.get_star_count(entry.repository) if entry.repository else None
            if stars is None:
                enriched.append(entry)
                continue
            metadata = (entry.metadata or EntryMetadata()).model_copy(update={"stars": stars})
            enriched.append(entry.model_copy(update={"metadata": metadata}))
        return enriched

    async def get_star_count(self, repo_url: str) -> Optional[int]:
        """Star count for a GitHub repository URL, None if unknown or not GitHub."""
        parsed = self.parse_github_url(repo_url)
        if not parsed:
            logger.debug(f"Not a valid GitHub URL: {repo_url}")
            return None

        owner, repo = parsed
        cache_key = f"github:stars:{normalize_github_url(f'https://github.com/{owner}/{repo}')}"

        redis_client = await self._get_redis_client()
        if redis_client:
            try:
                cached_count = await redis_client.get(cache_key)
                if cached_count is not None:
                    logger.debug(f"Cache hit for {owner}/{repo}: {cached_count}")
                    return int(cached_count)
            except (RedisError, ValueError) as e:
                logger.warning(f"Cache read error for {owner}/{repo}: {e}")

        star_count = await self._fetch_star_count_from_api(owner, repo)

        if star_count is not None and redis_client:
            try:
                await redis_client.setex(cache_key, CACHE_TTL_SECONDS, star_count)
            except RedisError as e:
                logger.warning(f"Cache write error for {owner}/{repo}: {e}")

        return star_count

    async def get_branches(self, repo_url: str) -> Optional[Tuple[Optional[str], List[str]]]:
        """
        Default branch and branch names of a GitHub repository.

        Returns None for non-GitHub URLs and when the API cannot answer
        (private repository, rate limit, network failure).
        """
        parsed = self.parse_github_url(repo_url)
        if not parsed:
            return None

        owner, repo = parsed
        info = await self._get_api_json(f"/repos/{owner}/{repo}", f"{owner}/{repo}")
        if not isinstance(info, dict):
            return None
        branches = await self._get_api_json(
            f"/repos/{owner}/{repo}/branches", f"{owner}/{repo} branches", params={"per_page": 100}
        )
        if not isinstance(branches, list):
            return None
        names = [b["name"] for b in branches if isinstance(b, dict) and isinstance(b.get("name"), str)]
        return info.get("default_branch"), names

    async def _fetch_star_count_from_api(self, owner: str, repo: str) -> Optional[int]:
        data = await self._get_api_json(f"/repos/{owner}/{repo}", f"{owner}/{repo}")
        if not isinstance(data, dict):
            return None
        return data.get("stargazers_count", 0)

    async def _get_api_json(self, path: str, what: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """GET a GitHub API path with retry logic. None on 403, 404 or repeated failure."""
        url = f"{GITHUB_API_BASE}{path}"
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "ToolHive-Registry-Manager/1.0"
        }

        if settings.GITHUB_TOKEN:
            headers["Authorization"] = f"token {settings.GITHUB_TOKEN}"

        timeout = httpx.Timeout(DEFAULT_TIMEOUT_SECONDS)

        for attempt in range(MAX_RETRIES):
            try:
                async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                    response = await client.get(url, headers=headers, params=params)

                    if response.status_code == 403:
                        if response.headers.get("X-RateLimit-Remaining", "0") == "0":
                            reset_time = response.headers.get("X-RateLimit-Reset")
                            if reset_time:
                                logger.warning(
                                    f"GitHub API rate limit exceeded. Resets at {datetime.fromtimestamp(int(reset_time))}"
                                )
                            else:
                                logger.warning("GitHub API rate limit exceeded")
                        return None

                    if response.status_code == 404:
                        logger.info(f"Repository {what} not found or private")
                        return None

                    response.raise_for_status()
                    return response.json()

            except httpx.TimeoutException:
                logger.warning(f"Timeout fetching {what} (attempt {attempt + 1})")
            except httpx.HTTPError as e:
                logger.warning(f"HTTP error fetching {what}: {e} (attempt {attempt + 1})")
            except ValueError:
                logger.warning(f"GitHub returned invalid JSON for {what}")
                return None

            if attempt < MAX_RETRIES - 1:
                await asyncio.sleep(BACKOFF_FACTOR ** attempt)

        logger.error(f"Failed to fetch {what} from GitHub after {MAX_RETRIES} attempts")
        return None

    async def close(self):
        """Close Redis connection if open."""
        if self._redis_client:
            try:
                await self._redis_client.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            finally:
                self._redis_client = None
                self._redis_available = False


# Global service instance
_github_service: Optional[GitHubService] = None


def get_github_service() -> GitHubService:
    """Get the global GitHub service instance."""
    global _github_service
    if _github_service is None:
        _github_service = GitHubService()
    return _github_service
