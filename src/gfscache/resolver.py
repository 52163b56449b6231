from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from .errors import ConversionError
from .ingest.cache import CacheStore
from .ingest.fetcher import RemoteFetcher
from .models import FetchOutcome, ServeResult
from .util.time import INTERVAL_HOURS, format_key, latest_available, now_utc, step, to_utc, truncate

LOGGER = logging.getLogger(__name__)


class NearestResolver:
    """Find the snapshot closest to a requested time.

    Candidates are walked backward from the requested cycle first. With a
    search limit, once a candidate is more than ``limit`` before the request
    the walk restarts forward from ``requested + limit`` and may cover another
    ``limit`` from there. Without one there is no forward leg, and past the
    lookback horizon the walk only jumps to the newest cached key, if any.

    The horizon bounds fetching, not cache lookups: a candidate older than it
    is served when cached and skipped otherwise.
    """

    def __init__(
        self,
        cache: CacheStore,
        fetcher: RemoteFetcher,
        materialize: Callable[[FetchOutcome], ServeResult],
        on_hit: Callable[[datetime], None],
        lookback: timedelta = timedelta(days=10),
        interval_hours: int = INTERVAL_HOURS,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.cache = cache
        self.fetcher = fetcher
        self.materialize = materialize
        self.on_hit = on_hit
        self.lookback = lookback
        self.interval_hours = interval_hours
        self.clock = clock

    def candidates(self, requested: datetime, limit: Optional[timedelta], now: datetime) -> Iterator[datetime]:
        requested = to_utc(requested)
        current = truncate(requested, self.interval_hours)
        horizon = now - self.lookback
        latest = latest_available(now, self.interval_hours)
        while True:
            if limit is not None:
                if requested - current > limit:
                    break
            elif current < horizon:
                cached = self._newest_cached_before(current)
                if cached is not None:
                    yield cached
                return
            yield current
            # unpublished cycles in between are never cached; jump to the newest one
            current = min(step(current, -1, self.interval_hours), latest)

        origin = requested + limit
        current = truncate(origin, self.interval_hours)
        LOGGER.info("Nothing within %s before %s, searching forward from %s", limit, requested.isoformat(), format_key(current))
        while current - origin <= limit and current <= latest:
            yield current
            current = step(current, 1, self.interval_hours)

    def resolve(self, requested: datetime, search_limit_days: Optional[float] = None) -> ServeResult:
        if search_limit_days is not None and search_limit_days <= 0:
            raise ValueError("search_limit_days must be positive")
        now = self.clock()
        limit = timedelta(days=search_limit_days) if search_limit_days is not None else None
        latest = latest_available(now, self.interval_hours)
        horizon = now - self.lookback

        for candidate in self.candidates(requested, limit, now):
            result = self._attempt(candidate, latest, horizon)
            if result is not None:
                return result

        LOGGER.info("No data near %s within the search bounds", to_utc(requested).isoformat())
        return ServeResult.not_found()

    def _newest_cached_before(self, current: datetime) -> Optional[datetime]:
        older = [entry.valid_time for entry in self.cache.entries() if entry.valid_time <= current]
        return max(older, default=None)

    def _attempt(self, candidate: datetime, latest: datetime, horizon: datetime) -> Optional[ServeResult]:
        key = format_key(candidate, self.interval_hours)
        if self.cache.exists(key):
            LOGGER.debug("Cache hit for %s", key)
            self.on_hit(candidate)
            return ServeResult.ready(key, candidate, self.cache.structured_path(key))
        if candidate > latest:
            LOGGER.debug("%s is not published yet, skipping", key)
            return None
        if candidate < horizon:
            LOGGER.debug("%s is past the lookback horizon and not cached, skipping", key)
            return None

        outcome = self.fetcher.fetch(candidate, step_back=False)
        if not outcome.available:
            LOGGER.info("%s doesn't exist upstream, trying next interval", key)
            return None
        try:
            return self.materialize(outcome)
        except ConversionError as exc:
            LOGGER.warning("Conversion of %s failed, trying next interval: %s", key, exc)
            return None
