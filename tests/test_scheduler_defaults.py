from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from packstudio.orchestrator.coordinator import MaintenanceCoordinator
from packstudio.orchestrator.scheduler import JobScheduler
from packstudio.storage import Database


CONFIG = {
    "schedule": {
        "cache_cleanup_hour": 3,
        "plan_expiry_hours": 2,
        "ai_log_retention_days": 30,
        "max_instances_per_job": 1,
        "misfire_grace_time_seconds": 120,
    }
}


class DummyCoordinator:
    async def cleanup_analysis_cache(self, *args, **kwargs):
        return None

    async def expire_exhausted_plans(self, *args, **kwargs):
        return None

    async def prune_ai_logs(self, *args, **kwargs):
        return None


def test_scheduler_sets_guardrail_defaults():
    scheduler = JobScheduler(DummyCoordinator(), CONFIG)
    scheduler.configure_jobs()

    assert scheduler.scheduler._job_defaults["coalesce"] is True
    assert scheduler.scheduler._job_defaults["max_instances"] == 1
    assert scheduler.scheduler._job_defaults["misfire_grace_time"] == 120

    for job in scheduler.scheduler.get_jobs():
        assert job.max_instances == 1


def test_scheduler_registers_maintenance_jobs():
    scheduler = JobScheduler(DummyCoordinator(), CONFIG)
    scheduler.configure_jobs()

    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {"analysis_cache_cleanup", "plan_expiry", "ai_log_prune"}
    assert isinstance(jobs["analysis_cache_cleanup"].trigger, CronTrigger)
    assert isinstance(jobs["plan_expiry"].trigger, IntervalTrigger)
    assert jobs["plan_expiry"].trigger.interval.total_seconds() == 2 * 3600
    assert jobs["ai_log_prune"].args == (30,)


async def test_coordinator_runs_all_tasks():
    db = Database("sqlite:///:memory:")
    coordinator = MaintenanceCoordinator(CONFIG, db=db)

    results = await coordinator.run_all()

    assert results == {"expired_analyses": 0, "expired_plans": 0, "pruned_ai_logs": 0}
