"""
Registry lifecycle state machine.

    Pending --trigger--> Syncing --ok--> Ready
                            +--fail--> Error
    Ready/Error --trigger--> Syncing

At most one sync is in flight per registry: trigger_sync refuses a registry
whose phase is Syncing. The check and the transition to Syncing happen under
a per-registry asyncio.Lock, so two overlapping triggers in this process
cannot both pass. force_sync skips the check; when it races a running sync
the later status write wins.

The pipeline (resolve, fetch, filter) runs as a background task. Its
failures are recorded as phase=Error and never raised to the caller.
A failed sync leaves serverCount and the cached listing as they were.
"""
import asyncio
import hashlib
import json
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import ConflictError, InvalidArgumentError, NotFoundError, RegistryManagerError
from app.schemas.registry import (
    SPEC_FIELDS,
    Registry,
    RegistryCreate,
    RegistryDetail,
    RegistrySpec,
    RegistryStatusResponse,
    RegistryUpdate,
    SyncRunSummary,
    SyncTicket,
)
from app.schemas.server import RegistryServerEntry
from app.services.cluster_store import ClusterStore
from app.services.deployed_server_service import DeployedServerService
from app.services.endpoint_fetcher import EndpointFetcher
from app.services.registry_server_service import ServerListCache
from app.services.server_filter import apply_registry_filter, compile_glob
from app.services.source_resolver import resolve_endpoint
from app.services.sync_history import SyncHistory
from app.services.sync_trigger import SyncRequest, build_sync_request, format_timestamp, parse_interval

logger = logging.getLogger(__name__)

RegistryKey = Tuple[str, str]


def listing_hash(entries: List[RegistryServerEntry]) -> str:
    canonical = json.dumps(
        [e.model_dump(by_alias=True, mode="json") for e in entries],
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _replacement_patch(old: Any, new: Any) -> Any:
    """Merge patch that turns `old` into exactly `new`, nulling keys that went away."""
    if not isinstance(old, dict) or not isinstance(new, dict):
        return new
    patch = {key: None for key in old if key not in new}
    for key, value in new.items():
        patch[key] = _replacement_patch(old.get(key), value)
    return patch


def _check_spec(spec: RegistrySpec) -> None:
    """Reject what the schema alone cannot: zero-length intervals and unusable globs."""
    parse_interval(spec.sync_policy.interval if spec.sync_policy else None)
    if spec.filter and spec.filter.names:
        for pattern in (*spec.filter.names.include, *spec.filter.names.exclude):
            compile_glob(pattern)


class RegistryLifecycle:
    def __init__(
        self,
        store: ClusterStore,
        fetcher: Optional[EndpointFetcher] = None,
        listing_cache: Optional[ServerListCache] = None,
        history: Optional[SyncHistory] = None,
    ):
        self.store = store
        self.fetcher = fetcher or EndpointFetcher(store)
        self.listing_cache = listing_cache or ServerListCache()
        self.history = history
        self.servers = DeployedServerService(store)
        self._locks: Dict[RegistryKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tasks: Dict[RegistryKey, Set[asyncio.Task]] = defaultdict(set)

    # CRUD

    async def get(self, namespace: str, name: str) -> Registry:
        obj = await self.store.get_registry(namespace, name)
        if obj is None:
            raise NotFoundError(f"Registry '{name}' not found in namespace '{namespace}'")
        return Registry.from_resource(obj)

    async def list(self, namespace: str, phase: Optional[str] = None) -> List[Registry]:
        registries = []
        for obj in await self.store.list_registries(namespace):
            try:
                registry = Registry.from_resource(obj)
            except ValidationError as e:
                name = obj.get("metadata", {}).get("name")
                logger.warning(f"Skipping malformed MCPRegistry {namespace}/{name}: {e.error_count()} errors")
                continue
            if phase is None or registry.status.phase == phase:
                registries.append(registry)
        return registries

    async def create(self, data: RegistryCreate) -> Registry:
        """
        Raises:
            InvalidArgumentError: Bad interval or name pattern.
            ConflictError: A registry with this name exists in the namespace.
        """
        if data.namespace is None:
            data = data.model_copy(update={"namespace": settings.DEFAULT_NAMESPACE})
        _check_spec(data)
        if await self.store.get_registry(data.namespace, data.name) is not None:
            raise ConflictError(f"Registry '{data.name}' already exists in namespace '{data.namespace}'")

        body = {
            "apiVersion": f"{settings.CRD_GROUP}/{settings.CRD_VERSION}",
            "kind": "MCPRegistry",
            "metadata": {"name": data.name, "namespace": data.namespace},
            "spec": data.model_dump(by_alias=True, exclude_none=True, mode="json", include=SPEC_FIELDS),
        }
        await self.store.create_registry(data.namespace, body)
        obj = await self.store.patch_registry_status(data.namespace, data.name, {"phase": "Pending", "serverCount": 0})
        logger.info(f"Created registry {data.namespace}/{data.name} ({data.source.type} source)")
        return Registry.from_resource(obj)

    async def update(self, namespace: str, name: str, data: RegistryUpdate) -> Registry:
        """
        Replace the given top-level spec fields; others are kept.

        Raises:
            NotFoundError: Registry does not exist.
            InvalidArgumentError: The merged spec is invalid.
        """
        registry = await self.get(namespace, name)
        old_spec = registry.spec_dict()
        changes = data.model_dump(by_alias=True, exclude_unset=True, mode="json")
        new_spec = {**old_spec, **changes}
        new_spec = {k: v for k, v in new_spec.items() if v is not None}
        try:
            merged = RegistrySpec.model_validate(new_spec)
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid registry update: {e.errors()[0]['msg']}")
        _check_spec(merged)

        patch = _replacement_patch(old_spec, merged.model_dump(by_alias=True, exclude_none=True, mode="json"))
        obj = await self.store.patch_registry(namespace, name, {"spec": patch})
        self.listing_cache.drop(namespace, name)
        logger.info(f"Updated registry {namespace}/{name}: {sorted(changes)}")
        return Registry.from_resource(obj)

    async def delete(self, namespace: str, name: str) -> None:
        """
        Raises:
            NotFoundError: Registry does not exist.
            ConflictError: Deployed server instances still reference it.
        """
        await self.get(namespace, name)
        dependents = await self.servers.dependents(namespace, name)
        if dependents:
            raise ConflictError(
                f"Cannot delete registry '{name}': {len(dependents)} deployed server(s) still reference it "
                f"({', '.join(sorted(dependents))})"
            )
        await self.store.delete_registry(namespace, name)
        self.listing_cache.drop(namespace, name)
        key = (namespace, name)
        for task in list(self._tasks.pop(key, ())):
            task.cancel()
        self._locks.pop(key, None)
        logger.info(f"Deleted registry {namespace}/{name}")

    async def status(self, namespace: str, name: str) -> RegistryStatusResponse:
        registry = await self.get(namespace, name)
        return RegistryStatusResponse(
            name=registry.name,
            namespace=registry.namespace,
            phase=registry.status.phase,
            server_count=registry.status.server_count,
            last_sync_time=registry.status.last_sync_time,
            message=registry.status.message,
            api_endpoint=registry.status.api_endpoint,
        )

    async def detail(self, namespace: str, name: str) -> RegistryDetail:
        registry = await self.get(namespace, name)
        history = []
        if self.history is not None:
            runs = await self.history.recent(namespace, name, limit=settings.SYNC_HISTORY_LIMIT)
            history = [SyncRunSummary.model_validate(run) for run in runs]
        return RegistryDetail(**registry.model_dump(), sync_history=history)

    # Sync

    async def trigger_sync(self, namespace: str, name: str) -> SyncTicket:
        """
        Raises:
            NotFoundError: Registry does not exist.
            ConflictError: A sync is already in progress.
        """
        return await self._begin_sync(namespace, name, build_sync_request(forced=False), write_marker=True)

    async def force_sync(self, namespace: str, name: str) -> SyncTicket:
        return await self._begin_sync(namespace, name, build_sync_request(forced=True), write_marker=True)

    async def handle_sync_request(self, namespace: str, name: str, request: SyncRequest) -> Optional[SyncTicket]:
        """
        Act on a sync marker found on the resource. A marker that was already
        handled returns None and changes nothing.
        """
        return await self._begin_sync(namespace, name, request, write_marker=False)

    async def _begin_sync(self, namespace: str, name: str, request: SyncRequest,
                          write_marker: bool) -> Optional[SyncTicket]:
        key = (namespace, name)
        async with self._locks[key]:
            registry = await self.get(namespace, name)
            if not write_marker and request.handled_by(registry):
                logger.debug(f"Sync request {request.requested_at} for {namespace}/{name} already handled")
                return None
            if not request.forced and registry.status.phase == "Syncing":
                raise ConflictError(f"Registry '{name}' is already syncing")

            if write_marker:
                await self.store.patch_registry(namespace, name, request.annotation_patch())
            await self.store.patch_registry_status(namespace, name, {
                "phase": "Syncing",
                "message": None,
                "lastHandledSyncRequest": request.requested_at,
            })

            sync_id = await self._record_start(namespace, name, request.forced)
            task = asyncio.create_task(self._run_pipeline(namespace, name, sync_id))
            self._tasks[key].add(task)
            task.add_done_callback(self._tasks[key].discard)

        logger.info(
            f"{'Forced sync' if request.forced else 'Sync'} {sync_id} started for {namespace}/{name} "
            f"(requested at {request.requested_at})"
        )
        return SyncTicket(sync_id=sync_id, forced=request.forced, requested_at=request.requested_at)

    async def _record_start(self, namespace: str, name: str, forced: bool) -> str:
        if self.history is None:
            return str(uuid.uuid4())
        return await self.history.start(namespace, name, forced)

    async def _run_pipeline(self, namespace: str, name: str, sync_id: str) -> None:
        try:
            registry = await self.get(namespace, name)
            endpoint = resolve_endpoint(registry)
            entries = await self.fetcher.fetch_servers(endpoint)
            filtered = apply_registry_filter(entries, registry.filter)
        except asyncio.CancelledError:
            await asyncio.shield(self._mark_failed(namespace, name, sync_id, "Sync cancelled"))
            raise
        except RegistryManagerError as e:
            logger.warning(f"Sync {sync_id} for {namespace}/{name} failed: {e.message}")
            await self._mark_failed(namespace, name, sync_id, e.message)
            return
        except Exception as e:
            logger.exception(f"Unexpected error in sync {sync_id} for {namespace}/{name}")
            await self._mark_failed(namespace, name, sync_id, f"Unexpected sync error: {e}")
            return

        count = len(filtered)
        message = f"Synced {count} servers"
        self.listing_cache.put(namespace, name, filtered)
        try:
            await self.store.patch_registry_status(namespace, name, {
                "phase": "Ready",
                "serverCount": count,
                "lastSyncTime": format_timestamp(datetime.now(timezone.utc)),
                "lastSyncHash": listing_hash(filtered),
                "message": message,
            })
        except RegistryManagerError as e:
            logger.warning(f"Could not record sync result for {namespace}/{name}: {e.message}")
            await self._finish(sync_id, "failed", message=e.message)
            return
        logger.info(f"Sync {sync_id} for {namespace}/{name} finished: {message}")
        await self._finish(sync_id, "succeeded", server_count=count, message=message)

    async def _mark_failed(self, namespace: str, name: str, sync_id: str, message: str) -> None:
        try:
            await self.store.patch_registry_status(namespace, name, {"phase": "Error", "message": message})
        except RegistryManagerError as e:
            logger.warning(f"Could not record sync failure for {namespace}/{name}: {e.message}")
        await self._finish(sync_id, "failed", message=message)

    async def _finish(self, sync_id: str, status: str, server_count: Optional[int] = None,
                      message: Optional[str] = None) -> None:
        if self.history is not None:
            await self.history.finish(sync_id, status, server_count=server_count, message=message)

    async def wait_for_sync(self, namespace: str, name: str) -> None:
        """Wait until every in-flight sync task of the registry has finished."""
        tasks = list(self._tasks.get((namespace, name), ()))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def recover_interrupted(self, namespace: str) -> int:
        """
        Move registries stuck in Syncing with no local task to Error.

        Run at startup: a sync that was in flight when the process stopped
        would otherwise block trigger_sync forever.
        """
        recovered = 0
        for registry in await self.list(namespace, phase="Syncing"):
            if self._tasks.get((namespace, registry.name)):
                continue
            await self.store.patch_registry_status(
                namespace, registry.name, {"phase": "Error", "message": "Sync interrupted by restart"}
            )
            recovered += 1
        if recovered:
            logger.warning(f"Recovered {recovered} interrupted sync(s) in namespace {namespace}")
        return recovered

    async def recover_all_interrupted(self) -> int:
        """recover_interrupted for every namespace that holds a registry."""
        recovered = 0
        for namespace in await self.store.list_registry_namespaces():
            recovered += await self.recover_interrupted(namespace)
        return recovered

    async def shutdown(self) -> None:
        """
        Cancel every in-flight sync and wait for it to stop.

        A cancelled sync leaves its registry in Error, so the next process can
        trigger it again. A task cancelled before it started running never
        reaches its own handler; those registries are moved here.
        """
        keys = [key for key, group in self._tasks.items() if group]
        tasks = [t for group in self._tasks.values() for t in group]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for namespace, name in keys:
            try:
                registry = await self.get(namespace, name)
                if registry.status.phase == "Syncing":
                    await self.store.patch_registry_status(
                        namespace, name, {"phase": "Error", "message": "Sync cancelled"}
                    )
            except RegistryManagerError as e:
                logger.warning(f"Could not release {namespace}/{name} at shutdown: {e.message}")
