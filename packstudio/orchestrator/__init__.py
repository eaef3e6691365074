"""Orchestration and scheduling"""

from .coordinator import MaintenanceCoordinator
from .scheduler import JobScheduler

__all__ = ["MaintenanceCoordinator", "JobScheduler"]
