"""
Background weather sync.

SyncEngine owns the timer and the counters. One instance is built at
process start and handed to the HTTP layer; nothing here is a module
global.

A cycle walks the active locations one at a time (the provider rate-limits
and the store should not see concurrent inserts for the same location),
records one outcome per location, and only then folds the outcomes into
the stats.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from sqlalchemy.orm import Session

from . import crud
from .models import utcnow
from .schemas import StoredSnapshot, SyncStats
from .weather_clients import ErrorKind, OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncTarget:
    """What a cycle needs from one active location, read once up front."""
    location_id: int
    name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class SyncOutcome:
    """Result of syncing one location inside a cycle."""
    location_id: int
    location_name: str
    snapshot_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SyncResult:
    """Result of an on-demand refresh."""
    success: bool
    snapshot: Optional[StoredSnapshot] = None
    error: Optional[str] = None
    error_type: Optional[ErrorKind] = None


class SyncEngine:
    """Periodically fetches current weather for every active location."""

    def __init__(
        self,
        client: OpenWeatherClient,
        session_factory: Callable[[], Session],
        interval_minutes: float = 15,
        retention_days: int = crud.DEFAULT_RETENTION_DAYS,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes
        self.retention_days = retention_days

        self._stats = SyncStats(interval_minutes=interval_minutes)
        self._timer: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()
        self._cycle_in_progress = False

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self, interval_minutes: Optional[float] = None) -> None:
        """
        Run one cycle right away, then every interval_minutes.
        Must be called with an event loop running. A second call is a no-op.
        """
        if self.is_running:
            logger.info("Sync service is already running")
            return

        if interval_minutes is not None:
            self.interval_minutes = interval_minutes
        logger.info("Starting sync service with interval: %s minutes", self.interval_minutes)

        self._stats.is_running = True
        self._stats.interval_minutes = self.interval_minutes
        self._spawn_cycle()
        self._timer = asyncio.create_task(self._tick_forever(self.interval_minutes * 60))

    def stop(self) -> None:
        """Disarm the timer and cancel any cycle still in flight. Safe to call repeatedly."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._cycles):
            task.cancel()
        self._stats.is_running = False
        logger.info("Sync service stopped")

    async def _tick_forever(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self._spawn_cycle()

    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self.run_sync())
        self._cycles.add(task)
        task.add_done_callback(self._cycle_done)

    def _cycle_done(self, task: asyncio.Task) -> None:
        self._cycles.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync cycle crashed: %s", exc, exc_info=exc)

    # -------------------------
    # Cycles
    # -------------------------

    async def run_sync(self) -> List[SyncOutcome]:
        """
        One full pass over the active locations. Never raises: per-location
        failures become outcomes, a registry failure becomes one failed sync.
        """
        if self._cycle_in_progress:
            logger.warning("Previous sync cycle still running; skipping this one")
            return []

        self._cycle_in_progress = True
        started = time.monotonic()
        logger.info("Starting weather data sync...")
        self._stats.total_syncs += 1
        try:
            with self.session_factory() as db:
                try:
                    # Plain values: every snapshot commit expires the ORM rows,
                    # and a row deleted mid-cycle could no longer be reloaded.
                    targets = [
                        SyncTarget(loc.id, loc.name, loc.latitude, loc.longitude)
                        for loc in crud.list_active_locations(db)
                    ]
                except Exception as e:
                    logger.error("Sync run failed: %s", e)
                    self._stats.failed_syncs += 1
                    return []

                logger.info("Found %s active locations to sync", len(targets))
                outcomes: List[SyncOutcome] = []
                for target in targets:
                    outcomes.append(await self._sync_location(db, target))

                succeeded = sum(1 for o in outcomes if o.ok)
                failed = len(outcomes) - succeeded
                self._stats.successful_syncs += succeeded
                self._stats.failed_syncs += failed
                self._stats.last_sync_time = utcnow()

                logger.info(
                    "Sync completed in %dms. Success: %s, Failed: %s",
                    (time.monotonic() - started) * 1000,
                    succeeded,
                    failed,
                )
                self._purge(db)
                return outcomes
        finally:
            self._cycle_in_progress = False

    async def _sync_location(self, db: Session, target: SyncTarget) -> SyncOutcome:
        try:
            row = await self._fetch_and_save(db, target.location_id, target.latitude, target.longitude)
            snapshot_id = row.id
        except Exception as e:
            db.rollback()
            logger.error("Failed to sync location %s: %s", target.name, e)
            return SyncOutcome(location_id=target.location_id, location_name=target.name, error=str(e))
        return SyncOutcome(location_id=target.location_id, location_name=target.name, snapshot_id=snapshot_id)

    async def _fetch_and_save(self, db: Session, location_id: int, latitude: float, longitude: float):
        weather = await self.client.fetch_current_weather_by_coords(latitude, longitude)
        return crud.save_snapshot(db, location_id, weather)

    def _purge(self, db: Session) -> None:
        try:
            crud.purge_expired_snapshots(db, self.retention_days)
        except Exception as e:
            db.rollback()
            logger.error("Snapshot retention purge failed: %s", e)

    async def sync_single_location(self, location_id: int) -> SyncResult:
        """
        Out-of-band refresh for one location (user-triggered). Errors are
        returned to the caller; the cycle counters are not touched.
        """
        try:
            with self.session_factory() as db:
                location = crud.get_location(db, location_id)
                if location is None:
                    raise WeatherError(
                        f"Location not found: {location_id}", kind=ErrorKind.NOT_FOUND, status_code=404
                    )
                row = await self._fetch_and_save(db, location.id, location.latitude, location.longitude)
                snapshot = crud.snapshot_to_schema(row, location)
        except WeatherError as e:
            logger.error("Manual sync failed for location %s: %s", location_id, e.message)
            return SyncResult(success=False, error=e.message, error_type=e.kind)
        except Exception as e:
            logger.error("Manual sync failed for location %s: %s", location_id, e)
            return SyncResult(success=False, error=str(e), error_type=ErrorKind.UNKNOWN)
        return SyncResult(success=True, snapshot=snapshot)

    def get_stats(self) -> SyncStats:
        """A copy of the counters; callers cannot mutate engine state through it."""
        return self._stats.model_copy()
