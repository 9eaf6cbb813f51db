"""
Background Scheduler for ProphetX

Handles automatic tasks:
- Locking markets at lock_time and settling them at end_time
- Creating the daily market
- Backfilling missing opening prices
- Health checks

Uses asyncio for non-blocking background tasks. The market core is
synchronous, so each task runs it in a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("ProphetX-Scheduler")


@dataclass
class TaskRecord:
    """Run bookkeeping for one periodic task, reported by /health."""
    interval_seconds: float
    runs: int = 0
    failures: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "failures": self.failures,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
        }


class BackgroundScheduler:
    """
    Periodic market tasks on the API's event loop.
    A failing run is recorded and logged; the task keeps its schedule.
    """

    def __init__(self):
        self.tasks: Dict[str, asyncio.Task] = {}
        self.records: Dict[str, TaskRecord] = {}
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def start(self):
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        logger.info("Background scheduler started")

    async def stop(self):
        """Cancel every task and wait for it to finish."""
        self.running = False
        if self._stop_event:
            self._stop_event.set()

        for task in self.tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.tasks.clear()
        logger.info("Background scheduler stopped")

    def schedule_periodic(
        self,
        name: str,
        coro_func: Callable,
        interval_seconds: float,
        run_immediately: bool = False
    ):
        """
        Run coro_func every interval_seconds until stop().
        Rescheduling an existing name replaces its task and resets its record.
        """
        if name in self.tasks:
            self.tasks[name].cancel()

        record = TaskRecord(interval_seconds=interval_seconds)
        self.records[name] = record

        async def periodic_wrapper():
            if not run_immediately:
                await asyncio.sleep(interval_seconds)

            while self.running:
                record.runs += 1
                record.last_run = datetime.now(timezone.utc)
                try:
                    await coro_func()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    record.failures += 1
                    record.last_error = str(e)
                    logger.error(f"Error in scheduled task '{name}': {e}", exc_info=True)

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                except asyncio.TimeoutError:
                    pass

        self.tasks[name] = asyncio.create_task(periodic_wrapper())
        logger.info(f"Scheduled task '{name}' to run every {interval_seconds}s")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "tasks": {name: record.to_dict() for name, record in self.records.items()},
        }


# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler()
    return _scheduler


# ==================== Scheduled Tasks ====================

async def sweep_markets():
    """
    Lock markets past lock_time and settle markets past end_time.
    Runs every sweep_interval_seconds (5 minutes by default).
    """
    from service import get_prophet_service

    service = get_prophet_service()
    summary = await asyncio.to_thread(service.lifecycle.sweep)

    if summary["locked"] or summary["settled"]:
        logger.info(f"Sweep: locked {summary['locked']}, settled {summary['settled']}")
    if summary["failed"]:
        logger.error(f"Sweep failed for market(s) {summary['failed']}")
    return summary


async def ensure_daily_market():
    """
    Create today's market if none exists yet.
    Runs every hour.
    """
    from service import get_prophet_service

    service = get_prophet_service()
    market = await asyncio.to_thread(service.lifecycle.ensure_daily_market)

    if market:
        logger.info(f"Daily market #{market.market_id} created: {market.asset_name}")
    return market


async def backfill_prices():
    """
    Fill in opening prices for markets created without one.
    Runs every 15 minutes.
    """
    from service import get_prophet_service

    service = get_prophet_service()
    fixed = await asyncio.to_thread(service.lifecycle.backfill_opening_prices)

    if fixed:
        logger.info(f"Backfilled price0 for {len(fixed)} market(s)")
    return fixed


async def health_check():
    """
    Periodic health check to ensure storage is responsive.
    Runs every minute.
    """
    from service import get_prophet_service

    try:
        service = get_prophet_service()
        market = await asyncio.to_thread(service.lifecycle.get_today_market)
        logger.debug(f"Health check OK - latest market: {market.market_id if market else 'none'}")
    except Exception as e:
        logger.error(f"Health check failed: {e}")


# ==================== Setup Function ====================

async def setup_scheduler(sweep_interval_seconds: int = 300):
    """
    Setup and start the background scheduler with all tasks.
    Call this when the API starts.
    """
    scheduler = get_scheduler()
    await scheduler.start()

    scheduler.schedule_periodic(
        name="ensure_daily_market",
        coro_func=ensure_daily_market,
        interval_seconds=3600,  # Every hour
        run_immediately=True
    )

    scheduler.schedule_periodic(
        name="sweep_markets",
        coro_func=sweep_markets,
        interval_seconds=sweep_interval_seconds,
        run_immediately=True
    )

    scheduler.schedule_periodic(
        name="backfill_prices",
        coro_func=backfill_prices,
        interval_seconds=900,  # Every 15 minutes
        run_immediately=False
    )

    scheduler.schedule_periodic(
        name="health_check",
        coro_func=health_check,
        interval_seconds=60,  # Every minute
        run_immediately=False
    )

    logger.info("All background tasks scheduled")
    return scheduler


async def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    scheduler = get_scheduler()
    await scheduler.stop()
