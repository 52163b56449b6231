from __future__ import annotations

import json
import os
from concurrent.futures import Future
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence

import pytest
import requests

from gfscache.config import ProviderSettings
from gfscache.errors import ConversionError
from gfscache.ingest.cache import CacheStore
from gfscache.ingest.fetcher import RemoteFetcher
from gfscache.service import SnapshotService

# latest_available(NOW) == 2024-03-01 06:00Z
NOW = datetime(2024, 3, 1, 12, 30, tzinfo=UTC)


class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"GRIB....7777", fail_midway: bool = False) -> None:
        self.status_code = status_code
        self.body = body
        self.fail_midway = fail_midway
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        half = max(len(self.body) // 2, 1)
        yield self.body[:half]
        if self.fail_midway:
            raise requests.ConnectionError("connection reset by peer")
        yield self.body[half:]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class FakeSession:
    """Scripted grib filter. Keys absent from ``script`` answer 404."""

    def __init__(self, script: Dict[str, Sequence[Any]] | None = None) -> None:
        self.script = {key: list(items) for key, items in (script or {}).items()}
        self.calls: List[str] = []

    @staticmethod
    def key_of(params: Dict[str, str]) -> str:
        _, day, hour, _ = params["dir"].split("/")
        return day.replace("gfs.", "") + hour

    def get(self, url: str, params: Dict[str, str], stream: bool = False, timeout: float | None = None):
        key = self.key_of(params)
        self.calls.append(key)
        items = self.script.get(key)
        if not items:
            return FakeResponse(404)
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, FakeResponse):
            return item
        return FakeResponse(item)

    def calls_for(self, key: str) -> int:
        return self.calls.count(key)


class FakeConverter:
    def __init__(self, failing: Sequence[str] = ()) -> None:
        self.failing = set(failing)
        self.converted: List[str] = []

    def convert(self, raw_path: Path, output_path: Path) -> Path:
        key = raw_path.name.split(".")[0]
        if key in self.failing:
            raise ConversionError(f"grib2json exited with status 1 for {raw_path.name}")
        self.converted.append(key)
        output_path.write_text(json.dumps([{"header": {"refTime": key}, "data": [1.0, 2.0]}]))
        return output_path


class DeferredExecutor:
    """Queues background tasks until the test runs them."""

    def __init__(self) -> None:
        self.queue: List[Callable[[], Any]] = []
        self.shutdown_calls: List[Dict[str, bool]] = []

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()

        def _task() -> None:
            future.set_result(fn(*args, **kwargs))

        self.queue.append(_task)
        return future

    def run_pending(self) -> int:
        ran = 0
        while self.queue:
            self.queue.pop(0)()
            ran += 1
        return ran

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        self.shutdown_calls.append({"wait": wait, "cancel_futures": cancel_futures})


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def cache(tmp_path: Path, clock) -> CacheStore:
    return CacheStore(tmp_path / "grib-data", tmp_path / "json-data", clock=clock)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_fetcher(cache, clock, sleeps):
    def _make(session: FakeSession, **overrides: Any) -> RemoteFetcher:
        options: Dict[str, Any] = {
            "max_retries": 3,
            "backoff_seconds": 1.0,
            "lookback": timedelta(days=10),
            "clock": clock,
            "sleep": sleeps.append,
        }
        options.update(overrides)
        return RemoteFetcher(session, cache, ProviderSettings(), **options)

    return _make


@pytest.fixture
def executor() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture
def make_service(cache, clock, make_fetcher, executor):
    def _make(session: FakeSession, converter: FakeConverter | None = None) -> SnapshotService:
        return SnapshotService(
            cache,
            make_fetcher(session),
            converter or FakeConverter(),
            executor,
            lookback=timedelta(days=10),
            clock=clock,
        )

    return _make


@pytest.fixture
def seed(cache):
    """Write a structured artifact for a key, optionally backdated."""

    def _seed(key: str, age: timedelta = timedelta(0)) -> Path:
        cache.ensure_dirs()
        path = cache.structured_path(key)
        path.write_text("[]")
        mtime = (NOW - age).timestamp()
        os.utime(path, (mtime, mtime))
        return path

    return _seed
