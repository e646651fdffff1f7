import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.sync_run import SyncRun

logger = logging.getLogger(__name__)


class SyncHistory:
    """
    Records sync runs in the application database.

    Sync tasks outlive the request that started them, so each call opens its
    own session from the factory instead of borrowing the request's.
    Ledger writes never fail a sync: database errors are logged and the
    run id is still handed out.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def start(self, registry_namespace: str, registry_name: str, forced: bool) -> str:
        run = SyncRun(
            id=str(uuid.uuid4()),
            registry_name=registry_name,
            registry_namespace=registry_namespace,
            forced=forced,
            status="running",
            started_at=datetime.now(timezone.utc),
        )
        try:
            async with self.session_factory() as session:
                session.add(run)
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not record sync run for {registry_namespace}/{registry_name}: {e}")
        return run.id

    async def finish(self, run_id: str, status: str, server_count: Optional[int] = None,
                     message: Optional[str] = None) -> None:
        try:
            async with self.session_factory() as session:
                run = await session.get(SyncRun, run_id)
                if run is None:
                    logger.debug(f"Sync run {run_id} not in ledger, skipping finish")
                    return
                run.status = status
                run.server_count = server_count
                run.message = message
                run.finished_at = datetime.now(timezone.utc)
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not update sync run {run_id}: {e}")

    async def recent(self, registry_namespace: str, registry_name: str, limit: int = 10) -> List[SyncRun]:
        """Latest runs first."""
        stmt = (
            select(SyncRun)
            .where(SyncRun.registry_namespace == registry_namespace, SyncRun.registry_name == registry_name)
            .order_by(SyncRun.started_at.desc())
            .limit(limit)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning(f"Could not read sync history for {registry_namespace}/{registry_name}: {e}")
            return []
