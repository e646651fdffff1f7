from app.db.base import Base
from app.models.sync_run import SyncRun

__all__ = ["Base", "SyncRun"]
