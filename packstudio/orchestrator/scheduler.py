"""Job scheduling for PackStudio maintenance."""

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

if TYPE_CHECKING:
    from .coordinator import MaintenanceCoordinator


class JobScheduler:
    """Manages scheduled maintenance jobs.

    Default schedule:
    - Image analysis cache cleanup: daily at 03:00
    - Exhausted credit plan expiry: every 6 hours
    - AI log pruning: daily at 04:00, keeping 90 days
    """

    def __init__(self, coordinator: "MaintenanceCoordinator", config: dict):
        """Initialize job scheduler.

        Args:
            coordinator: Maintenance coordinator instance
            config: Configuration dictionary
        """
        self.coordinator = coordinator
        self.config = config

        schedule_config = self.config.get("schedule", {})
        self.max_instances = schedule_config.get("max_instances_per_job", 1)
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": self.max_instances,
                "misfire_grace_time": schedule_config.get("misfire_grace_time_seconds", 300),
            }
        )

    def configure_jobs(self):
        """Set up all scheduled jobs based on configuration."""
        schedule_config = self.config.get("schedule", {})

        cleanup_hour = schedule_config.get("cache_cleanup_hour", 3)
        self.scheduler.add_job(
            self.coordinator.cleanup_analysis_cache,
            CronTrigger(hour=cleanup_hour, minute=0),
            id="analysis_cache_cleanup",
            name="Image Analysis Cache Cleanup",
            max_instances=self.max_instances,
            replace_existing=True,
        )
        logger.info(f"Scheduled analysis cache cleanup daily at {cleanup_hour}:00")

        expiry_hours = schedule_config.get("plan_expiry_hours", 6)
        self.scheduler.add_job(
            self.coordinator.expire_exhausted_plans,
            IntervalTrigger(hours=expiry_hours),
            id="plan_expiry",
            name="Exhausted Plan Expiry",
            max_instances=self.max_instances,
            replace_existing=True,
        )
        logger.info(f"Scheduled plan expiry every {expiry_hours} hours")

        retention_days = schedule_config.get("ai_log_retention_days", 90)
        self.scheduler.add_job(
            self.coordinator.prune_ai_logs,
            CronTrigger(hour=(cleanup_hour + 1) % 24, minute=0),
            args=[retention_days],
            id="ai_log_prune",
            name="AI Log Pruning",
            max_instances=self.max_instances,
            replace_existing=True,
        )
        logger.info(f"Scheduled daily AI log pruning, keeping {retention_days} days")

    def start(self):
        """Start the scheduler."""
        logger.info("Starting job scheduler")
        self.scheduler.start()

    def stop(self):
        """Stop the scheduler."""
        logger.info("Stopping job scheduler")
        self.scheduler.shutdown()

    def get_jobs(self):
        """Get list of scheduled jobs."""
        return self.scheduler.get_jobs()
