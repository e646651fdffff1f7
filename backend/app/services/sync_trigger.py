"""
Sync trigger: decides when a registry should sync, never mutates it itself.

A sync request is a timestamped annotation on the MCPRegistry resource.
The lifecycle records the timestamp it consumed in
status.lastHandledSyncRequest, so replaying the same marker is a no-op.

SyncScheduler is the reconciliation loop that observes those markers and
the registries' sync intervals and calls into the lifecycle.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Dict, List, Optional

from app.core.config import settings
from app.core.errors import ConflictError, InvalidArgumentError, RegistryManagerError
from app.schemas.registry import MANUAL_INTERVAL, Registry

if TYPE_CHECKING:
    from app.services.registry_lifecycle import RegistryLifecycle

logger = logging.getLogger(__name__)

SYNC_REQUEST_ANNOTATION = "toolhive.stacklok.dev/sync-requested"
FORCE_SYNC_ANNOTATION = "toolhive.stacklok.dev/sync-trigger"

_DURATION_PART = re.compile(r"(\d+)([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_interval(interval: Optional[str]) -> Optional[timedelta]:
    """
    Parse a duration like '30m' or '2h30m'. None and 'manual' mean no interval.

    Raises:
        InvalidArgumentError: Malformed or zero duration.
    """
    if not interval or interval == MANUAL_INTERVAL:
        return None
    parts = _DURATION_PART.findall(interval)
    if not parts or "".join(n + u for n, u in parts) != interval:
        raise InvalidArgumentError(f"Invalid sync interval '{interval}'")
    seconds = sum(int(n) * _UNIT_SECONDS[u] for n, u in parts)
    if seconds <= 0:
        raise InvalidArgumentError(f"Sync interval must be positive: '{interval}'")
    return timedelta(seconds=seconds)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SyncRequest:
    """Command object for one sync request marker."""

    requested_at: str
    forced: bool = False

    @property
    def annotation_key(self) -> str:
        return FORCE_SYNC_ANNOTATION if self.forced else SYNC_REQUEST_ANNOTATION

    def annotation_patch(self) -> Dict:
        return {"metadata": {"annotations": {self.annotation_key: self.requested_at}}}

    def handled_by(self, registry: Registry) -> bool:
        handled = parse_timestamp(registry.status.last_handled_sync_request)
        requested = parse_timestamp(self.requested_at)
        if handled is None or requested is None:
            return registry.status.last_handled_sync_request == self.requested_at
        return requested <= handled


def build_sync_request(forced: bool = False, now: Optional[datetime] = None) -> SyncRequest:
    return SyncRequest(requested_at=format_timestamp(now or datetime.now(timezone.utc)), forced=forced)


def pending_sync_request(registry: Registry) -> Optional[SyncRequest]:
    """
    Return the newest sync-request marker the lifecycle has not consumed yet.

    Markers with unparseable timestamps are ignored.
    """
    candidates: List[SyncRequest] = []
    for key, forced in ((SYNC_REQUEST_ANNOTATION, False), (FORCE_SYNC_ANNOTATION, True)):
        value = registry.annotations.get(key)
        if not value:
            continue
        if parse_timestamp(value) is None:
            logger.warning(f"Ignoring unparseable {key} annotation on {registry.namespace}/{registry.name}: {value}")
            continue
        request = SyncRequest(requested_at=value, forced=forced)
        if not request.handled_by(registry):
            candidates.append(request)
    if not candidates:
        return None
    return max(candidates, key=lambda r: parse_timestamp(r.requested_at))


def is_sync_due(registry: Registry, now: Optional[datetime] = None) -> bool:
    """
    True when the registry has an interval and it has elapsed.

    The interval is measured from lastSyncTime. A registry that has never
    synced successfully measures from its last attempt, and is due
    immediately when it has never been attempted.
    """
    interval = parse_interval(registry.sync_policy.interval if registry.sync_policy else None)
    if interval is None or registry.status.phase == "Syncing":
        return False
    now = now or datetime.now(timezone.utc)
    reference = registry.status.last_sync_time or parse_timestamp(registry.status.last_handled_sync_request)
    if reference is None:
        return True
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return now - reference >= interval


class SyncScheduler:
    """Periodic reconciliation loop over the registries in the watched namespaces."""

    def __init__(self, lifecycle: "RegistryLifecycle", namespaces: Optional[List[str]] = None,
                 period: Optional[float] = None):
        self.lifecycle = lifecycle
        self.namespaces = namespaces or [settings.DEFAULT_NAMESPACE]
        self.period = period or settings.SYNC_SCHEDULER_PERIOD_SECONDS
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Handle pending markers and due intervals once. Returns syncs started."""
        started = 0
        for namespace in self.namespaces:
            for registry in await self.lifecycle.list(namespace):
                try:
                    request = pending_sync_request(registry)
                    if request is not None:
                        if await self.lifecycle.handle_sync_request(namespace, registry.name, request):
                            started += 1
                    elif is_sync_due(registry, now):
                        await self.lifecycle.trigger_sync(namespace, registry.name)
                        started += 1
                except ConflictError as e:
                    logger.debug(f"Skipping {namespace}/{registry.name}: {e.message}")
                except RegistryManagerError as e:
                    logger.warning(f"Scheduler could not sync {namespace}/{registry.name}: {e.message}")
        return started

    async def run_forever(self) -> None:
        logger.info(f"Sync scheduler started for namespaces {self.namespaces} (period {self.period}s)")
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Sync scheduler pass failed")
            await asyncio.sleep(self.period)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")
