"""
Generic periodic-task runner.

Each worker is an independently configured (schedule, run_fn) pair running in
its own asyncio task. A boolean guard keeps at most one run of a given worker
active: a tick that overlaps the previous run is skipped, not queued, and the
guard is always cleared when a run ends.
"""
import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from followup_engine.core.clock import Clock, utcnow
from followup_engine.core.exceptions import raise_not_found, raise_validation_error
from followup_engine.schemas.worker import WorkerResult

logger = logging.getLogger(__name__)

RunFn = Callable[[], Awaitable[WorkerResult]]


class PeriodicWorker:
    """One named job run every `interval`, or once a day at `daily_at` (UTC)."""

    def __init__(
        self,
        name: str,
        run_fn: RunFn,
        interval: Optional[timedelta] = None,
        daily_at: Optional[time] = None,
        clock: Clock = utcnow
    ):
        if (interval is None) == (daily_at is None):
            raise_validation_error("Give exactly one of interval or daily_at", "schedule")
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.daily_at = daily_at
        self.clock = clock
        self.running = False
        self.last_run_at: Optional[datetime] = None
        self.last_result: Optional[WorkerResult] = None

    def seconds_until_next(self, now: datetime) -> float:
        if self.interval is not None:
            return self.interval.total_seconds()
        target = datetime.combine(now.date(), self.daily_at)
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    async def run_once(self) -> Optional[WorkerResult]:
        """Run now unless a run is already in progress; returns None when skipped."""
        if self.running:
            logger.warning(f"Worker {self.name} still running, skipping this tick")
            return None

        self.running = True
        try:
            result = await self.run_fn()
            self.last_result = result
            return result
        finally:
            self.running = False
            self.last_run_at = self.clock()

    async def loop(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_next(self.clock()))
            try:
                await self.run_once()
            except Exception:
                logger.exception(f"Worker {self.name} run failed")

    def status(self) -> dict:
        return {
            "name": self.name,
            "interval_seconds": self.interval.total_seconds() if self.interval else None,
            "daily_at": self.daily_at.strftime("%H:%M") if self.daily_at else None,
            "running": self.running,
            "last_run_at": self.last_run_at,
            "last_result": self.last_result,
        }


class WorkerRunner:
    """Starts, stops and manually triggers a set of PeriodicWorkers."""

    def __init__(self, workers: List[PeriodicWorker]):
        self.workers: Dict[str, PeriodicWorker] = {w.name: w for w in workers}
        self._tasks: List[asyncio.Task] = []

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            logger.warning("Workers already started")
            return
        for worker in self.workers.values():
            self._tasks.append(asyncio.create_task(worker.loop(), name=f"worker:{worker.name}"))
        logger.info(f"Started {len(self._tasks)} workers: {', '.join(self.workers)}")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Workers stopped")

    def get(self, name: str) -> PeriodicWorker:
        worker = self.workers.get(name)
        if worker is None:
            raise_not_found("Worker", name)
        return worker

    async def run_once(self, name: str) -> WorkerResult:
        worker = self.get(name)
        result = await worker.run_once()
        if result is None:
            return WorkerResult(worker=name, skipped=1, details={"reason": "already running"})
        return result

    def status(self) -> List[dict]:
        return [worker.status() for worker in self.workers.values()]
