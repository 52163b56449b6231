from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

import requests

from ..config import ProviderSettings
from ..errors import FilesystemError, TransportError, UpstreamUnavailable
from ..models import FetchOutcome
from ..util.time import INTERVAL_HOURS, format_key, latest_available, now_utc, step, truncate
from .cache import CacheStore
from .provider import build_params

LOGGER = logging.getLogger(__name__)
CHUNK_SIZE = 65536


class RemoteFetcher:
    """Download GFS cycles from the grib filter, stepping back when a cycle is missing.

    Every key gets one request plus ``max_retries`` retries with exponential
    backoff. When a key is exhausted the fetcher moves one interval back and
    starts over, until a cycle downloads or the key falls outside the
    lookback horizon.
    """

    def __init__(
        self,
        session: requests.Session,
        cache: CacheStore,
        provider: ProviderSettings,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        lookback: timedelta = timedelta(days=10),
        interval_hours: int = INTERVAL_HOURS,
        request_timeout: float = 60.0,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.cache = cache
        self.provider = provider
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.lookback = lookback
        self.interval_hours = interval_hours
        self.request_timeout = request_timeout
        self.clock = clock
        self.sleep = sleep

    def fetch(
        self,
        target: datetime,
        *,
        step_back: bool = True,
        force: bool = False,
        floor: Optional[datetime] = None,
    ) -> FetchOutcome:
        now = self.clock()
        current = truncate(target, self.interval_hours)
        latest = latest_available(now, self.interval_hours)
        if current > latest:
            LOGGER.info(
                "Data for %s not available yet. Using latest available: %s",
                f"{current:%Y-%m-%d %H:%M}",
                f"{latest:%Y-%m-%d %H:%M}",
            )
            current = latest

        while True:
            if now - current > self.lookback:
                LOGGER.info("Hit lookback limit at %s, no older data will be fetched", format_key(current))
                return FetchOutcome.unavailable()
            if floor is not None and current < floor:
                LOGGER.info("Reached search floor at %s", format_key(current))
                return FetchOutcome.unavailable()

            key = format_key(current, self.interval_hours)
            response = self._request_with_retry(key, current)
            if response is not None:
                return self._store(response, key, current, force)
            if not step_back:
                return FetchOutcome.unavailable()
            current = step(current, -1, self.interval_hours)

    def _request_with_retry(self, key: str, cycle: datetime) -> Optional[requests.Response]:
        params = build_params(cycle, self.provider)
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.get(
                    self.provider.base_url,
                    params=params,
                    stream=True,
                    timeout=self.request_timeout,
                )
                if response.status_code != 200:
                    response.close()
                    raise UpstreamUnavailable(key, response.status_code)
                return response
            except UpstreamUnavailable as exc:
                LOGGER.info("Failed to fetch data for %s, status: %s", key, exc.status_code)
            except requests.RequestException as exc:
                LOGGER.warning("Error fetching GRIB data for %s: %s", key, exc)

            if attempt < self.max_retries:
                delay = self.backoff_seconds * (2**attempt)
                LOGGER.info("Retrying %s in %.1fs...", key, delay)
                self.sleep(delay)

        LOGGER.info("Giving up on %s after %d retries", key, self.max_retries)
        return None

    def _store(self, response: requests.Response, key: str, cycle: datetime, force: bool) -> FetchOutcome:
        with response:
            if not force and self.cache.exists(key):
                LOGGER.info("Already have %s, not looking further", key)
                return FetchOutcome.already_cached(key, cycle)

            LOGGER.info("Downloading %s", key)
            self.cache.ensure_dirs()
            target = self.cache.raw_path(key)
            tmp_path = self.cache.partial_path(target)
            try:
                with open(tmp_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
                tmp_path.replace(target)
            except requests.RequestException as exc:
                tmp_path.unlink(missing_ok=True)
                raise TransportError(f"Download of {key} interrupted: {exc}") from exc
            except OSError as exc:
                tmp_path.unlink(missing_ok=True)
                raise FilesystemError(f"Error writing file {key}: {exc}") from exc

        LOGGER.info("Successfully downloaded %s", key)
        return FetchOutcome.downloaded(key, cycle)
