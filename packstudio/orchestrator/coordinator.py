"""Housekeeping jobs for PackStudio."""

from datetime import datetime, timedelta
from typing import Dict, Optional

from loguru import logger

from ..billing.credits import CreditManager
from ..storage.database import Database
from ..utils.config import get_config


class MaintenanceCoordinator:
    """Runs the periodic cleanup tasks against the database."""

    def __init__(self, config: Optional[Dict] = None, db: Optional[Database] = None):
        """Initialize maintenance coordinator.

        Args:
            config: Optional configuration dictionary
            db: Optional database, built from ``config`` when omitted
        """
        if config is None:
            config = get_config().model_dump()

        self.config = config

        if db is None:
            db_url = config.get("database", {}).get("url", "sqlite:///data/db/packstudio.db")
            db = Database(db_url)
        self.db = db
        self.credits = CreditManager(db)

    async def cleanup_analysis_cache(self) -> int:
        """Delete image analyses past their expiry."""
        logger.info("Cleaning up expired image analyses")
        deleted = self.db.cleanup_expired_analyses()
        logger.info(f"Removed {deleted} expired analyses")
        return deleted

    async def expire_exhausted_plans(self) -> int:
        """Mark active credit sources with no credits left as expired."""
        expired = self.credits.expire_exhausted_plans()
        if expired:
            logger.info(f"Expired {expired} exhausted credit plans")
        return expired

    async def prune_ai_logs(self, days: int = 90) -> int:
        """Remove AI operation logs older than ``days``."""
        logger.info(f"Pruning AI logs older than {days} days")

        cutoff = datetime.utcnow() - timedelta(days=days)
        deleted = self.db.prune_ai_logs(cutoff)

        logger.info(f"Pruned {deleted} AI logs")
        return deleted

    async def run_all(self):
        """Run every maintenance task once."""
        days = self.config.get("schedule", {}).get("ai_log_retention_days", 90)
        return {
            "expired_analyses": await self.cleanup_analysis_cache(),
            "expired_plans": await self.expire_exhausted_plans(),
            "pruned_ai_logs": await self.prune_ai_logs(days),
        }
