from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, List, Optional

import requests

from .config import AppSettings
from .errors import ConversionError, FilesystemError
from .ingest.cache import CacheStore
from .ingest.converter import GribConverter
from .ingest.fetcher import RemoteFetcher
from .models import CacheEntry, FetchOutcome, OutcomeKind, ServeResult
from .resolver import NearestResolver
from .util.http import create_session
from .util.time import INTERVAL_HOURS, format_key, latest_available, now_utc, parse_key, step

LOGGER = logging.getLogger(__name__)


class SnapshotService:
    """Serve GFS snapshots from the local cache, fetching and converting on a miss.

    ``get_latest`` and ``get_nearest`` are the entry points for the route
    layer. Backfill of older cycles and freshness refreshes run on
    ``executor``; their failures are logged and never reach a caller.

    Conversions are de-duplicated per key inside this process: a caller that
    finds its key already being converted gets a ``PENDING`` result instead of
    starting a second converter run.
    """

    def __init__(
        self,
        cache: CacheStore,
        fetcher: RemoteFetcher,
        converter: GribConverter,
        executor: Executor,
        lookback: timedelta = timedelta(days=10),
        interval_hours: int = INTERVAL_HOURS,
        max_age_hours: float = 24,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.cache = cache
        self.fetcher = fetcher
        self.converter = converter
        self.executor = executor
        self.lookback = lookback
        self.interval_hours = interval_hours
        self.max_age_hours = max_age_hours
        self.clock = clock
        self._lock = threading.Lock()
        self._converting: set[str] = set()
        self._backfilling: set[str] = set()
        self._stopping = threading.Event()
        self.resolver = NearestResolver(
            cache,
            fetcher,
            materialize=self.materialize,
            on_hit=self.schedule_backfill,
            lookback=lookback,
            interval_hours=interval_hours,
            clock=clock,
        )

    def __enter__(self) -> "SnapshotService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """Stop background work.

        With ``cancel_pending`` queued tasks are dropped and running harvests
        stop after the cycle they are on.
        """
        if cancel_pending:
            self._stopping.set()
        self.executor.shutdown(wait=wait, cancel_futures=cancel_pending)

    # served contract

    def get_latest(self) -> ServeResult:
        latest = latest_available(self.clock(), self.interval_hours)
        key = format_key(latest, self.interval_hours)
        if self.cache.exists(key):
            self.schedule_backfill(latest)
            return ServeResult.ready(key, latest, self.cache.structured_path(key))

        outcome = self.fetcher.fetch(latest)
        if not outcome.available:
            LOGGER.warning("No data available within the lookback window")
            return ServeResult.unavailable()
        return self.materialize(outcome)

    def get_nearest(self, when: datetime, search_limit_days: Optional[float] = None) -> ServeResult:
        return self.resolver.resolve(when, search_limit_days)

    # conversion

    def materialize(self, outcome: FetchOutcome) -> ServeResult:
        """Turn a successful fetch into a servable result, converting if needed."""
        if not outcome.available:
            raise ValueError("cannot materialize an unavailable outcome")
        key, valid_time = outcome.key, outcome.valid_time
        if outcome.kind is OutcomeKind.ALREADY_CACHED and self.cache.exists(key):
            return ServeResult.ready(key, valid_time, self.cache.structured_path(key))

        if not self.convert(key):
            return ServeResult.pending(key, valid_time)
        self.schedule_backfill(valid_time)
        return ServeResult.ready(key, valid_time, self.cache.structured_path(key))

    def convert(self, key: str) -> bool:
        """Convert the raw artifact for ``key``.

        Returns False when another caller is already converting the key.
        """
        if not self._claim(self._converting, key):
            LOGGER.info("Conversion of %s already in progress", key)
            return False
        try:
            if self.cache.exists(key):
                # another caller finished this key while we were downloading it
                LOGGER.info("%s was converted meanwhile, skipping", key)
                raw_path = self.cache.raw_path(key)
                try:
                    raw_path.unlink(missing_ok=True)
                except OSError as exc:
                    raise FilesystemError(f"Unable to delete {raw_path}: {exc}") from exc
            else:
                self._convert_claimed(key)
        finally:
            self._release(self._converting, key)
        return True

    def _convert_claimed(self, key: str) -> None:
        raw_path = self.cache.raw_path(key)
        if not raw_path.is_file():
            LOGGER.error("Input file %s does not exist. Attempting to re-download.", raw_path.name)
            outcome = self.fetcher.fetch(parse_key(key), step_back=False, force=True)
            if outcome.kind is not OutcomeKind.DOWNLOADED:
                raise ConversionError(f"Failed to download data for {key}")

        self.cache.ensure_dirs()
        try:
            self.converter.convert(raw_path, self.cache.structured_path(key))
        except ConversionError:
            LOGGER.error("Error converting %s, keeping %s for inspection", key, raw_path.name)
            raise
        LOGGER.info("Successfully converted %s", key)

        try:
            raw_path.unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Unable to delete {raw_path}: {exc}") from exc

    # background work

    def schedule_backfill(self, valid_time: datetime) -> Optional[Future]:
        key = format_key(valid_time, self.interval_hours)
        if not self._claim(self._backfilling, key):
            return None

        def _run() -> None:
            try:
                self.backfill(valid_time)
            finally:
                self._release(self._backfilling, key)

        try:
            return self._submit(f"backfill from {key}", _run)
        except RuntimeError:
            # executor already shut down
            self._release(self._backfilling, key)
            return None

    def backfill(self, valid_time: datetime) -> int:
        """Harvest cycles older than ``valid_time`` until one is already cached.

        Best effort: errors are logged and end the harvest. Returns the number
        of cycles converted.
        """
        converted = 0
        current = step(valid_time, -1, self.interval_hours)
        horizon = self.clock() - self.lookback
        try:
            while current >= horizon and not self._stopping.is_set():
                key = format_key(current, self.interval_hours)
                if self.cache.exists(key):
                    LOGGER.info("Got %s, no need to harvest further", key)
                    break
                LOGGER.info("Attempting to harvest older data %s", key)
                outcome = self.fetcher.fetch(current)
                if outcome.kind is not OutcomeKind.DOWNLOADED:
                    break
                if not self.convert(outcome.key):
                    break
                converted += 1
                current = step(outcome.valid_time, -1, self.interval_hours)
        except Exception:
            LOGGER.exception("Error harvesting older data before %s", format_key(valid_time, self.interval_hours))
        return converted

    def refresh(self, key: str) -> ServeResult:
        """Re-download and reconvert exactly ``key``, replacing the cached file."""
        valid_time = parse_key(key)
        if not self._claim(self._converting, key):
            LOGGER.info("Refresh of %s skipped, conversion already in progress", key)
            return ServeResult.pending(key, valid_time)
        try:
            outcome = self.fetcher.fetch(valid_time, step_back=False, force=True)
            if outcome.kind is not OutcomeKind.DOWNLOADED:
                LOGGER.warning("Unable to re-download %s, keeping cached copy", key)
                return ServeResult.unavailable()
            self._convert_claimed(key)
        finally:
            self._release(self._converting, key)
        return ServeResult.ready(key, valid_time, self.cache.structured_path(key))

    def check_freshness(self, max_age_hours: Optional[float] = None) -> List[CacheEntry]:
        threshold = self.max_age_hours if max_age_hours is None else max_age_hours

        def _on_stale(entry: CacheEntry) -> None:
            self._submit(f"refresh of {entry.key}", self.refresh, entry.key)

        return self.cache.check_freshness(threshold, on_stale=_on_stale)

    def reconcile(self) -> List[Path]:
        with self._lock:
            pending = set(self._converting)
        return self.cache.reconcile_orphans(pending=pending)

    # helpers

    def _claim(self, registry: set[str], key: str) -> bool:
        with self._lock:
            if key in registry:
                return False
            registry.add(key)
            return True

    def _release(self, registry: set[str], key: str) -> None:
        with self._lock:
            registry.discard(key)

    def _submit(self, label: str, func: Callable[..., Any], *args: Any) -> Future:
        def _guarded() -> Any:
            try:
                return func(*args)
            except Exception:
                LOGGER.exception("Background %s failed", label)
                return None

        return self.executor.submit(_guarded)


def build_service(
    settings: AppSettings,
    session: requests.Session | None = None,
    clock: Callable[[], datetime] = now_utc,
) -> SnapshotService:
    session = session or create_session(settings.user_agent, timeout=settings.request_timeout)
    lookback = timedelta(days=settings.lookback_days)
    cache = CacheStore(settings.raw_dir, settings.json_dir, clock=clock)
    fetcher = RemoteFetcher(
        session,
        cache,
        settings.provider,
        max_retries=settings.max_retries,
        backoff_seconds=settings.backoff_seconds,
        lookback=lookback,
        interval_hours=settings.interval_hours,
        request_timeout=settings.request_timeout,
        clock=clock,
    )
    converter = GribConverter(settings.converter_argv, timeout=settings.converter_timeout)
    executor = ThreadPoolExecutor(max_workers=settings.background_workers, thread_name_prefix="gfscache-bg")
    return SnapshotService(
        cache,
        fetcher,
        converter,
        executor,
        lookback=lookback,
        interval_hours=settings.interval_hours,
        max_age_hours=settings.max_age_hours,
        clock=clock,
    )
