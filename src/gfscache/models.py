from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Optional


class OutcomeKind(str, Enum):
    DOWNLOADED = "downloaded"
    ALREADY_CACHED = "already_cached"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    kind: OutcomeKind
    key: Optional[str] = None
    valid_time: Optional[datetime] = None

    @classmethod
    def downloaded(cls, key: str, valid_time: datetime) -> "FetchOutcome":
        return cls(OutcomeKind.DOWNLOADED, key, valid_time)

    @classmethod
    def already_cached(cls, key: str, valid_time: datetime) -> "FetchOutcome":
        return cls(OutcomeKind.ALREADY_CACHED, key, valid_time)

    @classmethod
    def unavailable(cls) -> "FetchOutcome":
        return cls(OutcomeKind.UNAVAILABLE)

    @property
    def available(self) -> bool:
        return self.kind is not OutcomeKind.UNAVAILABLE


@dataclass(slots=True)
class CacheEntry:
    key: str
    valid_time: datetime
    modified: datetime
    path: Path

    def age(self, now: datetime) -> timedelta:
        return now - self.modified


class ServeStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True)
class ServeResult:
    status: ServeStatus
    key: Optional[str] = None
    valid_time: Optional[datetime] = None
    path: Optional[Path] = None

    @classmethod
    def ready(cls, key: str, valid_time: datetime, path: Path) -> "ServeResult":
        return cls(ServeStatus.READY, key, valid_time, path)

    @classmethod
    def pending(cls, key: str, valid_time: datetime) -> "ServeResult":
        return cls(ServeStatus.PENDING, key, valid_time)

    @classmethod
    def not_found(cls) -> "ServeResult":
        return cls(ServeStatus.NOT_FOUND)

    @classmethod
    def unavailable(cls) -> "ServeResult":
        return cls(ServeStatus.UNAVAILABLE)

    def as_dict(self) -> dict[str, Optional[str]]:
        return {
            "status": self.status.value,
            "key": self.key,
            "valid_time": self.valid_time.isoformat() if self.valid_time else None,
            "path": str(self.path) if self.path else None,
        }
