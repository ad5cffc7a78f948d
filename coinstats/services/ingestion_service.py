import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping

from coinstats.core.errors import FetchError, StorageError
from coinstats.core.metrics import (
    ingestion_cycles_total,
    ingestion_cycles_skipped_total,
    ingestion_samples_written_total,
    ingestion_cycle_duration,
    ingestion_last_success_ts,
)

logger = logging.getLogger(__name__)

IDLE = "idle"
FETCHING = "fetching"
WRITING = "writing"


@dataclass
class CycleResult:
    status: str  # success | failed
    samples_written: int = 0
    captured_at: datetime | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class IngestionScheduler:
    """Runs fetch-then-write once at start and then every ``interval`` seconds.

    At most one cycle is in flight at a time: a trigger that arrives while a
    cycle is running is skipped, not queued.
    """

    def __init__(
        self,
        fetcher,
        store,
        tracked_coins: Mapping[str, str],
        interval: float = 7200,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.fetcher = fetcher
        self.store = store
        self.tracked_coins = dict(tracked_coins)
        self.interval = interval

        self.state = IDLE
        self.last_result: CycleResult | None = None
        self.last_success_at: datetime | None = None
        self.last_failure_at: datetime | None = None

        self._cycle_guard = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ---------------- CYCLE ----------------

    def _record_failure(self, result: CycleResult):
        ingestion_cycles_total.labels("failed").inc()
        self.last_failure_at = datetime.now(timezone.utc)
        self.last_result = result

    def run_cycle(self) -> CycleResult:
        start_ts = time.monotonic()
        result = CycleResult(status="failed")

        try:
            self.state = FETCHING
            logger.info("[INGEST] Fetching %d coins", len(self.tracked_coins))
            samples = self.fetcher.fetch(self.tracked_coins)

            self.state = WRITING
            written = self.store.upsert_batch(samples)

        except FetchError as e:
            result.error = str(e)
            logger.error("[INGEST] Fetch failed, cycle dropped: %s", e)
            self._record_failure(result)
            return result
        except StorageError as e:
            result.error = str(e)
            logger.error("[INGEST] Write failed, cycle dropped: %s", e)
            self._record_failure(result)
            return result
        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            self._record_failure(result)
            raise
        finally:
            self.state = IDLE
            ingestion_cycle_duration.observe(time.monotonic() - start_ts)

        result.status = "success"
        result.samples_written = written
        if samples:
            # every sample in a batch shares one capture time
            result.captured_at = next(iter(samples.values())).captured_at

        ingestion_cycles_total.labels("success").inc()
        self.last_success_at = datetime.now(timezone.utc)
        ingestion_last_success_ts.set(self.last_success_at.timestamp())
        for coin in samples:
            ingestion_samples_written_total.labels(coin).inc()

        logger.info(
            "[INGEST] Wrote %d samples captured at %s",
            result.samples_written,
            result.captured_at.isoformat() if result.captured_at else None,
        )

        self.last_result = result
        return result

    def trigger(self) -> CycleResult | None:
        if not self._cycle_guard.acquire(blocking=False):
            ingestion_cycles_skipped_total.inc()
            logger.warning("[INGEST] Previous cycle still running, skipping tick")
            return None

        try:
            return self.run_cycle()
        finally:
            self._cycle_guard.release()

    # ---------------- LIFECYCLE ----------------

    def _loop(self):
        while True:
            try:
                self.trigger()
            except Exception:
                # keep the worker alive; the next tick retries
                logger.exception("[INGEST] Unexpected error in ingestion cycle")

            if self._stop.wait(self.interval):
                break

        logger.info("[INGEST] Scheduler stopped")

    def start(self):
        if self.is_running:
            if self._stop.is_set():
                raise RuntimeError(
                    "previous ingestion worker is still finishing its cycle"
                )
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="coinstats-ingestion",
            daemon=True,
        )
        self._thread.start()
        logger.info("[INGEST] Scheduler started, interval=%ss", self.interval)

    def stop(self, timeout: float | None = None) -> bool:
        """Signal the worker and wait for it. Returns True once it has exited.

        A worker that outlives ``timeout`` is kept referenced, so
        ``is_running`` stays true until its in-flight cycle finishes.
        """
        self._stop.set()
        if self._thread is None:
            return True

        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("[INGEST] Cycle still in flight at shutdown")
            return False

        self._thread = None
        return True

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> dict:
        last = self.last_result
        return {
            "running": self.is_running,
            "state": self.state,
            "interval_seconds": self.interval,
            "last_status": last.status if last else None,
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "last_error": last.error if last else None,
        }
