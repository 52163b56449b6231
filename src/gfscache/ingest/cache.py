from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Optional
from uuid import uuid4

from ..errors import FilesystemError
from ..models import CacheEntry
from ..util.time import now_utc, parse_key

LOGGER = logging.getLogger(__name__)

RAW_SUFFIX = ".f000"
STRUCTURED_SUFFIX = ".json"
PARTIAL_SUFFIX = ".part"


class CacheStore:
    """Filesystem-backed key -> artifact mapping.

    Raw GRIB downloads live in ``raw_dir`` until converted; converted JSON lives
    in ``json_dir`` and is what gets served. A structured artifact is only ever
    created by renaming a finished ``.part`` file, so its presence means the key
    is servable.
    """

    def __init__(self, raw_dir: Path, json_dir: Path, clock: Callable[[], datetime] = now_utc) -> None:
        self.raw_dir = raw_dir
        self.json_dir = json_dir
        self.clock = clock

    def ensure_dirs(self) -> None:
        try:
            self.raw_dir.mkdir(parents=True, exist_ok=True)
            self.json_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Unable to create cache directories: {exc}") from exc

    def raw_path(self, key: str) -> Path:
        return self.raw_dir / f"{key}{RAW_SUFFIX}"

    def structured_path(self, key: str) -> Path:
        return self.json_dir / f"{key}{STRUCTURED_SUFFIX}"

    @staticmethod
    def partial_path(path: Path) -> Path:
        """Unique scratch name next to ``path``; concurrent writers never share one."""
        return path.with_name(f"{path.name}.{uuid4().hex[:12]}{PARTIAL_SUFFIX}")

    def exists(self, key: str) -> bool:
        return self.structured_path(key).is_file()

    @staticmethod
    def _list(directory: Path, suffix: str) -> List[Path]:
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file() and p.name.endswith(suffix))

    @staticmethod
    def _key_of(path: Path, suffix: str) -> Optional[str]:
        stem = path.name[: -len(suffix)]
        try:
            parse_key(stem)
        except ValueError:
            return None
        return stem

    def entries(self) -> List[CacheEntry]:
        found: List[CacheEntry] = []
        for path in self._list(self.json_dir, STRUCTURED_SUFFIX):
            key = self._key_of(path, STRUCTURED_SUFFIX)
            if key is None:
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
            found.append(CacheEntry(key=key, valid_time=parse_key(key), modified=modified, path=path))
        return found

    def _remove(self, path: Path, label: str) -> None:
        LOGGER.info("Deleting orphaned %s file: %s", label, path.name)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Unable to delete {path}: {exc}") from exc

    def reconcile_orphans(self, pending: Iterable[str] = ()) -> List[Path]:
        """Remove files that no conversion will ever complete or serve.

        Keys in ``pending`` are mid-conversion in this process and left alone.
        A raw artifact without a structured counterpart is the leftover of a
        crashed conversion. Partial ``.part`` files are leftovers of interrupted
        writes in either area.
        """
        pending_keys = set(pending)
        removed: List[Path] = []

        for path in self._list(self.raw_dir, RAW_SUFFIX):
            key = self._key_of(path, RAW_SUFFIX)
            if key in pending_keys or (key is not None and self.exists(key)):
                continue
            self._remove(path, "GRIB")
            removed.append(path)

        for directory, label in ((self.raw_dir, "partial GRIB"), (self.json_dir, "partial JSON")):
            for path in self._list(directory, PARTIAL_SUFFIX):
                if path.name.split(".", 1)[0] in pending_keys:
                    continue
                self._remove(path, label)
                removed.append(path)

        return removed

    def check_freshness(
        self,
        max_age_hours: float = 24,
        on_stale: Callable[[CacheEntry], None] | None = None,
    ) -> List[CacheEntry]:
        max_age = timedelta(hours=max_age_hours)
        now = self.clock()
        stale: List[CacheEntry] = []
        for entry in self.entries():
            if entry.age(now) <= max_age:
                continue
            LOGGER.info("Data for %s is older than %s hours", entry.key, max_age_hours)
            stale.append(entry)
            if on_stale is not None:
                on_stale(entry)
        return stale

    def purge(self, key: str) -> None:
        for path in (self.structured_path(key), self.raw_path(key)):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise FilesystemError(f"Unable to delete {path}: {exc}") from exc
        LOGGER.info("Purged %s", key)
