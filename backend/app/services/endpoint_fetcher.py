"""
Endpoint fetcher: retrieves a registry's server listing from its API endpoint.

Mode is chosen from the shape of the endpoint host:
- A host with a 'svc' label (e.g. 'reg-api.toolhive-system.svc.cluster.local')
  is only reachable from inside the cluster, so the request is routed
  through the API server's service proxy via the cluster store.
- Anything else is fetched directly over HTTP with httpx.

Payload shapes accepted:
- a bare JSON list of entries
- {"servers": [...]} or {"tools": [...]}
- {"servers": {"<name>": {...}}} (ToolHive registry format)
"""
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import httpx

from app.core.config import settings
from app.core.errors import FetchFailure, InvalidEndpointError, InvalidResponseError
from app.schemas.server import EntryMetadata, EnvVar, RegistryServerEntry
from app.services.cluster_store import ClusterStore
from app.services.sample_data import sample_servers

logger = logging.getLogger(__name__)

USER_AGENT = "ToolHive-Registry-Manager/1.0"
SERVICE_HOST_PATTERN = re.compile(r"^([a-z0-9-]+)\.([a-z0-9-]+)\.svc(\..+)?$")

EXTERNAL = "external"
CLUSTER_INTERNAL = "cluster-internal"


@dataclass
class FetchTarget:
    mode: str
    endpoint: str
    base_path: str = ""
    service: Optional[str] = None
    namespace: Optional[str] = None
    port: Optional[str] = None


def is_cluster_internal_host(host: str) -> bool:
    return "svc" in host.split(".")


def parse_endpoint(endpoint: str) -> FetchTarget:
    """
    Decide how an endpoint is reached.

    Raises:
        InvalidEndpointError: The endpoint is not an http(s) URL, or its host
            looks cluster-internal without being '<service>.<namespace>.svc[...]'.
    """
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidEndpointError(f"Invalid endpoint URL: {endpoint}")

    host = parsed.hostname.lower()
    try:
        port = parsed.port
    except ValueError:
        raise InvalidEndpointError(f"Invalid port in endpoint: {endpoint}")

    base_path = parsed.path.rstrip("/")
    if not is_cluster_internal_host(host):
        return FetchTarget(mode=EXTERNAL, endpoint=endpoint.rstrip("/"), base_path=base_path)

    match = SERVICE_HOST_PATTERN.match(host)
    if not match:
        raise InvalidEndpointError(
            f"Invalid cluster URL format: {endpoint} "
            "(expected <service>.<namespace>.svc[.<cluster-domain>])"
        )
    service, namespace, _ = match.groups()
    return FetchTarget(
        mode=CLUSTER_INTERNAL,
        endpoint=endpoint.rstrip("/"),
        base_path=base_path,
        service=service,
        namespace=namespace,
        port=str(port) if port else settings.DEFAULT_SERVICE_PORT,
    )


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", []):
            return value
    return None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v)]
    if isinstance(value, dict):
        return [str(k) for k, v in value.items() if v]
    return []


def _url(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("url")
    return value if isinstance(value, str) and value else None


def normalize_entry(raw: Dict[str, Any], fallback_name: Optional[str] = None) -> Optional[RegistryServerEntry]:
    """Map one raw entry onto RegistryServerEntry. Returns None when it has no name."""
    name = _first(raw, "name", "id") or fallback_name
    if not name or not isinstance(name, str):
        return None

    tools = raw.get("tools")
    tools_count = _first(raw, "toolsCount", "tools_count")
    if tools_count is None and isinstance(tools, list):
        tools_count = len(tools)

    metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else None
    env_vars = raw.get("envVars", raw.get("env_vars")) or []

    return RegistryServerEntry(
        name=name,
        image=_first(raw, "image") or f"{name}:latest",
        version=_first(raw, "version"),
        description=_first(raw, "description", "summary"),
        tags=_string_list(_first(raw, "tags", "keywords")),
        capabilities=_string_list(raw.get("capabilities")),
        tier=_first(raw, "tier"),
        transport=_first(raw, "transport"),
        tools_count=tools_count,
        env_vars=[EnvVar.model_validate(v) for v in env_vars if isinstance(v, dict) and v.get("name")],
        metadata=EntryMetadata.model_validate(metadata) if metadata else None,
        author=_first(raw, "author", "maintainer"),
        repository=_url(_first(raw, "repository", "repositoryUrl", "repository_url", "source")),
        documentation=_url(_first(raw, "documentation", "docs")),
    )


def normalize_payload(data: Any) -> List[RegistryServerEntry]:
    """
    Turn a listing payload into entries.

    Nameless entries are skipped; when a name repeats, the first wins.

    Raises:
        InvalidResponseError: No recognized server list in the payload.
    """
    items: List[tuple] = []
    if isinstance(data, list):
        items = [(None, raw) for raw in data]
    elif isinstance(data, dict) and isinstance(data.get("servers"), dict):
        items = list(data["servers"].items())
    elif isinstance(data, dict) and isinstance(data.get("servers"), list):
        items = [(None, raw) for raw in data["servers"]]
    elif isinstance(data, dict) and isinstance(data.get("tools"), list):
        items = [(None, raw) for raw in data["tools"]]
    else:
        raise InvalidResponseError("Invalid registry response: expected array of servers")

    entries: Dict[str, RegistryServerEntry] = {}
    for key, raw in items:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object registry entry: {raw!r}")
            continue
        try:
            entry = normalize_entry(raw, fallback_name=key)
        except ValueError as e:
            logger.warning(f"Failed to normalize registry entry {key or raw.get('name')}: {e}")
            continue
        if entry is None:
            logger.warning("Skipping registry entry without a name")
            continue
        if entry.name in entries:
            logger.warning(f"Duplicate registry entry '{entry.name}', keeping the first")
            continue
        entries[entry.name] = entry
    return list(entries.values())


class EndpointFetcher:
    """
    Fetches listings from registry API endpoints.

    `transport` lets tests plug an httpx.MockTransport in for the external mode.
    """

    def __init__(
        self,
        store: ClusterStore,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sample_fallback: Optional[bool] = None,
    ):
        self.store = store
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self.transport = transport
        self.sample_fallback = settings.ENABLE_SAMPLE_DATA if sample_fallback is None else sample_fallback

    async def fetch_servers(self, endpoint: str) -> List[RegistryServerEntry]:
        """
        Fetch and normalize the full listing.

        Raises:
            FetchFailure: network error, non-2xx, timeout or bad endpoint.
            InvalidResponseError: unparseable payload.
        """
        try:
            data = await self._get_json(endpoint, "/servers")
            return normalize_payload(data)
        except (FetchFailure, InvalidResponseError) as e:
            if not self.sample_fallback:
                raise
            logger.warning(f"Fetch from {endpoint} failed ({e.message}); serving sample data")
            return sample_servers()

    async def fetch_server(self, endpoint: str, name: str) -> Optional[RegistryServerEntry]:
        """Fetch a single entry by name. A 404 from the endpoint means None."""
        data = await self._get_json(endpoint, f"/servers/{quote(name, safe='')}", missing_ok=True)
        if data is None:
            return None
        if isinstance(data, dict) and isinstance(data.get("server"), dict):
            data = data["server"]
        if not isinstance(data, dict):
            raise InvalidResponseError(f"Invalid registry response for server '{name}'")
        try:
            return normalize_entry(data, fallback_name=name)
        except ValueError as e:
            raise InvalidResponseError(f"Invalid registry entry for server '{name}': {e}")

    async def _get_json(self, endpoint: str, path: str, missing_ok: bool = False) -> Any:
        target = parse_endpoint(endpoint)
        full_path = f"{target.base_path}{settings.REGISTRY_API_PREFIX}{path}"
        try:
            if target.mode == CLUSTER_INTERNAL:
                request = self._get_via_proxy(target, full_path, missing_ok)
            else:
                request = self._get_direct(target, full_path, missing_ok)
            return await asyncio.wait_for(request, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise FetchFailure(f"Timed out after {self.timeout}s fetching {endpoint}{full_path}")

    async def _get_direct(self, target: FetchTarget, full_path: str, missing_ok: bool) -> Any:
        parsed = urlparse(target.endpoint)
        url = f"{parsed.scheme}://{parsed.netloc}{full_path}"
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        logger.info(f"Fetching registry listing from {url}")

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self.transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise FetchFailure(f"Failed to reach registry API at {url}: {e}")

        if response.status_code == 404 and missing_ok:
            return None
        if not response.is_success:
            raise FetchFailure(f"Registry API returned {response.status_code} {response.reason_phrase} for {url}")
        try:
            return response.json()
        except ValueError:
            raise InvalidResponseError(f"Registry API at {url} returned invalid JSON")

    async def _get_via_proxy(self, target: FetchTarget, full_path: str, missing_ok: bool) -> Any:
        logger.info(
            f"Proxying to service: {target.service} in namespace: {target.namespace} on port: {target.port}"
        )
        response = await self.store.proxy_get(target.namespace, target.service, target.port, full_path)
        if response.status_code == 404 and missing_ok:
            return None
        if not response.ok:
            raise FetchFailure(
                f"Service proxy to {target.service}.{target.namespace}:{target.port} "
                f"returned {response.status_code}"
            )
        try:
            return json.loads(response.body)
        except ValueError:
            raise InvalidResponseError(
                f"Service {target.service}.{target.namespace} returned invalid JSON"
            )
