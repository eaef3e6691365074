"""Main entry point for PackStudio."""

import argparse
import asyncio
import sys

from loguru import logger

from .billing.credits import CreditManager
from .orchestrator.coordinator import MaintenanceCoordinator
from .orchestrator.scheduler import JobScheduler
from .storage.database import Database
from .utils.config import get_config
from .utils.logger import setup_logging


async def run_scheduler():
    """Run the maintenance scheduler."""
    config = get_config()
    setup_logging()

    logger.info("=" * 80)
    logger.info("PackStudio Maintenance - Starting")
    logger.info("=" * 80)

    coordinator = MaintenanceCoordinator(config.model_dump())
    scheduler = JobScheduler(coordinator, config.model_dump())

    scheduler.configure_jobs()
    scheduler.start()

    logger.info("Scheduler started. Press Ctrl+C to stop.")

    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down...")
        scheduler.stop()


async def run_cleanup():
    """Run every maintenance task once."""
    config = get_config()
    setup_logging()

    logger.info("Running maintenance tasks")

    coordinator = MaintenanceCoordinator(config.model_dump())
    results = await coordinator.run_all()

    logger.info(f"Maintenance completed: {results}")


def show_credits(user_id: str):
    """Print a user's credit summary."""
    config = get_config()
    setup_logging()

    manager = CreditManager(Database(config.database.url))
    summary = manager.get_user_credits(user_id)

    print(f"User:       {user_id}")
    print(f"Credits:    {summary.credits}")
    print(f"Membership: {summary.membership_status} ({summary.plan_type})")
    if summary.expires_at:
        print(f"Expires:    {summary.expires_at.isoformat()}")
    print(summary.message)


def grant_credits(user_id: str, amount: int, plan_type: str):
    """Add a credit source for a user, creating the user row if needed."""
    config = get_config()
    setup_logging()

    if amount <= 0:
        raise ValueError("Amount must be positive")

    db = Database(config.database.url)
    db.ensure_user(user_id)
    CreditManager(db).add_credits(user_id, amount, plan_type=plan_type)

    logger.info(f"Granted {amount} {plan_type} credits to {user_id}")


def run_api():
    """Run the FastAPI server."""
    import uvicorn

    from .api.main import app

    config = get_config()
    setup_logging()

    logger.info("=" * 80)
    logger.info("PackStudio API - Starting")
    logger.info("=" * 80)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="PackStudio")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # API command
    subparsers.add_parser("api", help="Run the API server")

    # Scheduler command
    subparsers.add_parser("scheduler", help="Run the maintenance scheduler")

    # Cleanup command
    subparsers.add_parser("cleanup", help="Run maintenance tasks once")

    # Credits command
    credits_parser = subparsers.add_parser("credits", help="Show a user's credit summary")
    credits_parser.add_argument("user_id", help="User ID")

    # Grant command
    grant_parser = subparsers.add_parser("grant-credits", help="Give credits to a user")
    grant_parser.add_argument("user_id", help="User ID")
    grant_parser.add_argument("amount", type=int, help="Number of credits")
    grant_parser.add_argument(
        "--plan-type",
        choices=["one_time", "subscription"],
        default="one_time",
        help="Kind of credit source to create",
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "api":
            run_api()
        elif args.command == "scheduler":
            asyncio.run(run_scheduler())
        elif args.command == "cleanup":
            asyncio.run(run_cleanup())
        elif args.command == "credits":
            show_credits(args.user_id)
        elif args.command == "grant-credits":
            grant_credits(args.user_id, args.amount, args.plan_type)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
