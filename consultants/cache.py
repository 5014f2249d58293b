"""Fingerprint-keyed response cache with lazy TTL expiry and pluggable stores."""

import asyncio
import hashlib
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from consultants.models import CacheMetadata, Category, Response

logger = logging.getLogger(__name__)

ALL_AGENTS = "all"

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_question(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.casefold()).strip()


def fingerprint(question: str, category: Category | str, context: bytes | None = None) -> str:
    """sha256 of ``normalized_question|CATEGORY[|sha256(context)]``."""
    category_name = category.value if isinstance(category, Category) else str(category).upper()
    material = f"{normalize_question(question)}|{category_name}"
    if context is not None:
        material += "|" + hashlib.sha256(context).hexdigest()
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    agent: str
    payload: dict
    created_at: float           # epoch seconds
    ttl_hours: float

    def age_sec(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age_sec(now) >= self.ttl_hours * 3600

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "agent": self.agent,
            "created_at": self.created_at,
            "ttl_hours": self.ttl_hours,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            fingerprint=str(data["fingerprint"]),
            agent=str(data["agent"]),
            payload=dict(data["payload"]),
            created_at=float(data["created_at"]),
            ttl_hours=float(data["ttl_hours"]),
        )


class CacheStore(ABC):
    """Where cache entries live. One entry per (agent, fingerprint)."""

    @abstractmethod
    def load(self, agent: str, fp: str) -> CacheEntry | None: ...

    @abstractmethod
    def save(self, entry: CacheEntry) -> None: ...

    @abstractmethod
    def delete(self, agent: str, fp: str) -> bool: ...

    @abstractmethod
    def entries(self) -> list[CacheEntry]: ...


class MemoryCacheStore(CacheStore):
    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], CacheEntry] = {}

    def load(self, agent: str, fp: str) -> CacheEntry | None:
        return self._entries.get((agent, fp))

    def save(self, entry: CacheEntry) -> None:
        self._entries[(entry.agent, entry.fingerprint)] = entry

    def delete(self, agent: str, fp: str) -> bool:
        return self._entries.pop((agent, fp), None) is not None

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())


class FileCacheStore(CacheStore):
    """One JSON file per entry: ``{agent}_{fingerprint}.json``.

    The directory is created with mode 0700 and files are written with 0600.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _ensure_dir(self) -> None:
        if not self.directory.exists():
            self.directory.mkdir(parents=True, mode=0o700)
            os.chmod(self.directory, 0o700)

    def _path(self, agent: str, fp: str) -> Path:
        return self.directory / f"{agent}_{fp}.json"

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            return CacheEntry.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Dropping unreadable cache file %s: %s", path.name, exc)
            path.unlink(missing_ok=True)
            return None

    def load(self, agent: str, fp: str) -> CacheEntry | None:
        return self._read(self._path(agent, fp))

    def save(self, entry: CacheEntry) -> None:
        self._ensure_dir()
        path = self._path(entry.agent, entry.fingerprint)
        tmp = path.with_suffix(".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(entry.to_dict(), f)
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)

    def delete(self, agent: str, fp: str) -> bool:
        path = self._path(agent, fp)
        if path.exists():
            path.unlink(missing_ok=True)
            return True
        return False

    def entries(self) -> list[CacheEntry]:
        if not self.directory.is_dir():
            return []
        found = []
        for path in sorted(self.directory.glob("*.json")):
            entry = self._read(path)
            if entry is not None:
                found.append(entry)
        return found


class SemanticCache:
    """Response cache keyed by (question fingerprint, agent id).

    Expiry is lazy: an expired entry is deleted when read. ``cleanup`` forces
    it for every entry. A disabled cache always misses and never stores.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_hours: float = 24.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_hours = ttl_hours
        self.enabled = enabled
        self._clock = clock
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def _locked(self, agent: str, fp: str) -> AsyncIterator[None]:
        """Per-key lock, dropped once nobody holds or waits for it."""
        key = (agent, fp)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def get(self, fp: str, agent: str = ALL_AGENTS) -> Response | None:
        if not self.enabled:
            return None
        async with self._locked(agent, fp):
            entry = self.store.load(agent, fp)
            if entry is None:
                logger.debug("Cache miss: %s %s", agent, fp[:12])
                return None
            if entry.is_expired(self._clock()):
                logger.debug("Cache entry expired: %s %s", agent, fp[:12])
                self.store.delete(agent, fp)
                return None
            logger.info("Cache hit: %s %s", agent, fp[:12])
            return Response.model_validate(entry.payload)

    async def put(self, fp: str, agent: str, response: Response) -> Response:
        """Store ``response`` (overwriting) and return it with cache_metadata attached."""
        if not self.enabled:
            return response
        now = self._clock()
        stamped = response.model_copy(
            update={
                "cache_metadata": CacheMetadata(
                    fingerprint=fp,
                    cached_at=datetime.fromtimestamp(now, timezone.utc).isoformat(),
                    from_cache=False,
                )
            }
        )
        entry = CacheEntry(
            fingerprint=fp,
            agent=agent,
            payload=stamped.model_dump(mode="json"),
            created_at=now,
            ttl_hours=self.ttl_hours,
        )
        async with self._locked(agent, fp):
            self.store.save(entry)
        return stamped

    def invalidate(self, fp: str, agent: str | None = None) -> int:
        """Remove one agent's entry, or every agent's entry for ``fp``."""
        if agent is not None:
            return int(self.store.delete(agent, fp))
        removed = 0
        for entry in self.store.entries():
            if entry.fingerprint == fp and self.store.delete(entry.agent, fp):
                removed += 1
        return removed

    def cleanup(self) -> int:
        now = self._clock()
        removed = 0
        for entry in self.store.entries():
            if entry.is_expired(now) and self.store.delete(entry.agent, entry.fingerprint):
                removed += 1
        if removed:
            logger.info("Cache cleanup removed %d expired entries", removed)
        return removed

    def clear(self) -> int:
        removed = 0
        for entry in self.store.entries():
            if self.store.delete(entry.agent, entry.fingerprint):
                removed += 1
        return removed

    def stats(self) -> dict:
        now = self._clock()
        entries = self.store.entries()
        return {
            "total": len(entries),
            "expired": sum(1 for e in entries if e.is_expired(now)),
            "ttl_hours": self.ttl_hours,
            "enabled": self.enabled,
        }

    @staticmethod
    def mark_from_cache(response: Response) -> Response:
        meta = response.cache_metadata
        if meta is None:
            return response
        return response.model_copy(update={"cache_metadata": meta.model_copy(update={"from_cache": True})})
