import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class SyncRun(Base):
    """
    One sync request against a registry and its outcome.

    Audit ledger only: the registry itself lives in the cluster, so there is
    no foreign key here, just the (namespace, name) it was recorded under.
    """
    __tablename__ = "sync_runs"

    # Stored as text so the id can be handed out verbatim as the sync id
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    registry_name: Mapped[str] = mapped_column(String(63), index=True)
    registry_namespace: Mapped[str] = mapped_column(String(63), index=True)

    forced: Mapped[bool] = mapped_column(Boolean, default=False)

    # running | succeeded | failed
    status: Mapped[str] = mapped_column(String(20), default="running")

    server_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
