"""
Customer Intelligence - Worker Entry Point

Wires the database-backed collaborators, the durable store, the notification
dispatcher, the workflow engine and the intelligence service, then runs the
scheduler loop until interrupted.

Usage:
    python -m customer_intel.main            # run the scheduler
    python -m customer_intel.main --once     # run every sweep once and exit
"""

import argparse
import asyncio
import signal
from typing import Optional, Sequence

from customer_intel.automation.engine import WorkflowEngine
from customer_intel.automation.notifications import create_dispatcher
from customer_intel.cache.redis_store import create_durable_store
from customer_intel.core.config import get_settings
from customer_intel.core.database import close_db, create_engine_from_settings, create_session_factory, init_db
from customer_intel.jobs.scheduler import SchedulerLoop
from customer_intel.middleware.logging_config import configure_logging, get_logger
from customer_intel.repositories.customers import SqlCustomerDirectory
from customer_intel.repositories.events import SqlEventHistory
from customer_intel.repositories.orders import SqlOrderHistory
from customer_intel.services.intelligence_service import IntelligenceService

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Customer intelligence and marketing automation worker")
    parser.add_argument("--once", action="store_true", help="Run every sweep a single time and exit")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the customers/orders/tracked_events tables if missing (development only)",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()

    # ==================== Startup ====================
    db_engine = create_engine_from_settings(settings)
    try:
        await init_db(db_engine, create_tables=args.create_tables)
    except Exception as e:
        logger.error("database_unavailable", error=str(e))
        await close_db(db_engine)
        return 1

    session_factory = create_session_factory(db_engine)
    store = await create_durable_store(settings)
    dispatcher = create_dispatcher(settings)

    orders = SqlOrderHistory(session_factory)
    customers = SqlCustomerDirectory(session_factory)
    events = SqlEventHistory(session_factory)

    engine = WorkflowEngine(store, orders, customers, events, dispatcher, settings=settings)
    service = IntelligenceService(orders, customers, events, engine, settings=settings)
    loop = SchedulerLoop(service, engine, settings=settings)

    logger.info(
        "worker_starting",
        environment=settings.environment,
        store=type(store).__name__,
        dispatcher=type(dispatcher).__name__,
        once=args.once,
    )

    try:
        if args.once:
            results = await loop.run_once()
            logger.info(
                "worker_run_once_complete",
                abandoned_carts=results.get("abandoned_carts"),
                at_risk_vips=results.get("at_risk_vips"),
                due_jobs=results.get("due_jobs"),
            )
            return 0

        await loop.run_recompute()
        loop.start()

        stop = asyncio.Event()
        running_loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                running_loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass
        await stop.wait()
        logger.info("worker_stopping")
        return 0

    # ==================== Shutdown ====================
    finally:
        loop.shutdown()
        await dispatcher.close()
        await store.close()
        await close_db(db_engine)
        logger.info("worker_stopped")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(
        log_level=args.log_level or settings.log_level,
        json_logs=settings.json_logs or settings.is_production,
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
