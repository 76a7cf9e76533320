"""Tiered cache: process memory, shared disk store, permanent store."""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import diskcache

from stock_leaderboard.data.freshness import DataKind, FreshnessPolicy
from stock_leaderboard.data.market_calendar import MarketCalendar

logger = logging.getLogger(__name__)


class TTLClass(str, Enum):
    """Expiry class of a cache entry."""

    EPHEMERAL = "ephemeral"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cached value. Tiers replace whole entries, never mutate them."""

    key: str
    value: Any
    written_at: datetime | None
    ttl_class: TTLClass = TTLClass.EPHEMERAL
    kind: DataKind = DataKind.QUOTES
    ttl_seconds: int | None = None

    def to_record(self) -> dict[str, Any]:
        """Plain dict for the disk tiers."""
        return {
            "value": self.value,
            "written_at": self.written_at.isoformat() if self.written_at else None,
            "ttl_class": self.ttl_class.value,
            "kind": self.kind.value,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_record(cls, key: str, record: Any) -> "CacheEntry":
        """
        Rebuild an entry read from a disk tier.

        Values placed in the shared store by something other than this class
        carry no write timestamp. They are never fresh but still count as the
        last known value.
        """
        if not isinstance(record, dict) or "value" not in record or "written_at" not in record:
            return cls(key=key, value=record, written_at=None)

        written_at = record.get("written_at")
        return cls(
            key=key,
            value=record["value"],
            written_at=datetime.fromisoformat(written_at) if written_at else None,
            ttl_class=TTLClass(record.get("ttl_class", TTLClass.EPHEMERAL.value)),
            kind=DataKind(record.get("kind", DataKind.QUOTES.value)),
            ttl_seconds=record.get("ttl_seconds"),
        )


def is_empty(value: Any) -> bool:
    """None, or an empty container/string."""
    if value is None:
        return True
    if isinstance(value, (list, dict, tuple, set, str)) and len(value) == 0:
        return True
    return False


def merge_permanent(existing: Any, new: Any) -> Any:
    """
    Combine a permanent value with a newer write.

    Returns None when the write must be dropped. Map values are merged so a
    member that already has a value is never replaced by None.
    """
    if is_empty(new):
        return None
    if isinstance(existing, dict) and isinstance(new, dict):
        merged = dict(existing)
        for k, v in new.items():
            if v is not None or k not in merged:
                merged[k] = v
        return merged
    return new


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TieredCache:
    """
    Read-through cache over three tiers.

    1. Process memory: dict of immutable CacheEntry, last writer wins.
    2. Shared store: a diskcache directory visible to every process on the
       host. Read-mostly; writes are best effort and can be disabled.
    3. Permanent store: a separate diskcache directory without expiry, only
       for values that never change (baseline prices).

    Ephemeral freshness is judged by FreshnessPolicy against the current
    market status. Stale entries are kept around so they can still be served
    when a refresh fails (see last_known).
    """

    def __init__(
        self,
        shared: diskcache.Cache | None = None,
        permanent: diskcache.Cache | None = None,
        policy: FreshnessPolicy | None = None,
        calendar: MarketCalendar | None = None,
        shared_writes: bool | None = None,
        stale_retention: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.shared = shared
        self.permanent = permanent
        self.policy = policy or FreshnessPolicy()
        self.calendar = calendar or MarketCalendar()
        if shared_writes is None:
            shared_writes = os.environ.get("CACHE_SHARED_WRITES", "1").lower() not in ("0", "false", "no")
        self.shared_writes = shared_writes
        if stale_retention is None:
            stale_retention = timedelta(
                seconds=int(os.environ.get("CACHE_STALE_RETENTION", str(7 * 24 * 60 * 60)))
            )
        self.stale_retention = stale_retention
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}

    @classmethod
    def from_env(cls, **kwargs: Any) -> "TieredCache":
        """Build with disk tiers at CACHE_DIR / PERMANENT_CACHE_DIR."""
        shared_dir = os.environ.get("CACHE_DIR", ".cache/leaderboard")
        permanent_dir = os.environ.get("PERMANENT_CACHE_DIR", ".cache/permanent")
        return cls(
            shared=diskcache.Cache(shared_dir),
            permanent=diskcache.Cache(permanent_dir),
            **kwargs,
        )

    def now(self) -> datetime:
        return self._clock()

    def market_open(self) -> bool:
        return self.calendar.is_market_open(self.now())

    # ------------------------------------------------------------------
    # Tier access
    # ------------------------------------------------------------------

    def _read_tier(self, tier: diskcache.Cache | None, key: str) -> CacheEntry | None:
        if tier is None:
            return None
        try:
            record = tier.get(key)
        except Exception as e:
            logger.warning(f"cache read failed for {key}: {e}")
            return None
        if record is None:
            return None
        return CacheEntry.from_record(key, record)

    def _write_tier(
        self,
        tier: diskcache.Cache | None,
        entry: CacheEntry,
        expire: float | None = None,
    ) -> bool:
        if tier is None:
            return False
        try:
            tier.set(entry.key, entry.to_record(), expire=expire)
            return True
        except Exception as e:
            logger.warning(f"cache write failed for {entry.key}: {e}")
            return False

    def _is_fresh(self, entry: CacheEntry, now: datetime, is_open: bool) -> bool:
        if entry.ttl_class is TTLClass.PERMANENT:
            return not is_empty(entry.value)
        return self.policy.should_use_cache(entry.written_at, is_open, now=now, kind=entry.kind)

    def _entries(self, key: str) -> list[CacheEntry]:
        """Entries for key from every tier, newest first."""
        found = [
            e
            for e in (
                self._memory.get(key),
                self._read_tier(self.shared, key),
                self._read_tier(self.permanent, key),
            )
            if e is not None
        ]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(found, key=lambda e: e.written_at or oldest, reverse=True)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """
        Fresh value for key, or None.

        Lookup order: memory, shared store (promoted into memory on a fresh
        hit), permanent store. Permanent entries skip the freshness check.
        """
        now = self.now()
        is_open = self.calendar.is_market_open(now)

        entry = self._memory.get(key)
        if entry is not None and self._is_fresh(entry, now, is_open):
            logger.debug(f"cache hit (memory): {key}")
            return entry.value

        for tier_name, tier in (("shared", self.shared), ("permanent", self.permanent)):
            candidate = self._read_tier(tier, key)
            if candidate is None or not self._is_fresh(candidate, now, is_open):
                continue
            if entry is None or _newer(candidate, entry):
                self._memory[key] = candidate
                logger.debug(f"cache hit ({tier_name}), promoted to memory: {key}")
            return candidate.value

        logger.debug(f"cache miss: {key}")
        return None

    def set(
        self,
        key: str,
        value: Any,
        ttl_class: TTLClass = TTLClass.EPHEMERAL,
        kind: DataKind = DataKind.QUOTES,
    ) -> bool:
        """
        Store a value.

        Memory is always written. Ephemeral values also go to the shared
        store when writes are enabled (failures are logged, not raised).
        Permanent values go to the permanent store and never regress: an
        empty write is dropped and map members keep existing prices.

        Returns:
            False if a permanent write was dropped, True otherwise
        """
        now = self.now()

        if ttl_class is TTLClass.PERMANENT:
            existing = self._permanent_value(key)
            merged = merge_permanent(existing, value)
            if merged is None:
                logger.debug(f"dropping empty permanent write: {key}")
                return False
            entry = CacheEntry(
                key=key,
                value=merged,
                written_at=now,
                ttl_class=TTLClass.PERMANENT,
                kind=kind,
            )
            self._memory[key] = entry
            self._write_tier(self.permanent, entry)
            return True

        ttl = self.policy.ttl_for(self.calendar.is_market_open(now), kind)
        entry = CacheEntry(
            key=key,
            value=value,
            written_at=now,
            ttl_class=TTLClass.EPHEMERAL,
            kind=kind,
            ttl_seconds=int(ttl.total_seconds()),
        )
        self._memory[key] = entry
        if self.shared_writes:
            # Keep stale copies around long enough to be served after failures
            self._write_tier(self.shared, entry, expire=(ttl + self.stale_retention).total_seconds())
        return True

    def _permanent_value(self, key: str) -> Any | None:
        entry = self._memory.get(key)
        if entry is not None and entry.ttl_class is TTLClass.PERMANENT:
            return entry.value
        stored = self._read_tier(self.permanent, key)
        return stored.value if stored is not None else None

    def last_known(self, key: str) -> Any | None:
        """Newest value in any tier, regardless of staleness."""
        for entry in self._entries(key):
            if not is_empty(entry.value):
                return entry.value
        return None

    def last_update(self, key: str) -> datetime | None:
        """Write timestamp of the newest entry for key."""
        entries = self._entries(key)
        return entries[0].written_at if entries else None

    def should_use_cache(self, key: str) -> bool:
        """Combine the newest entry's write time with the freshness policy."""
        entries = self._entries(key)
        if not entries:
            return False
        now = self.now()
        return self._is_fresh(entries[0], now, self.calendar.is_market_open(now))

    def entry(self, key: str) -> CacheEntry | None:
        """Newest entry for key (any tier), for metadata."""
        entries = self._entries(key)
        return entries[0] if entries else None

    def clear(self) -> None:
        """Drop memory and shared tiers. The permanent store is left alone."""
        self._memory.clear()
        if self.shared is not None:
            self.shared.clear()


def _newer(a: CacheEntry, b: CacheEntry) -> bool:
    if a.written_at is None:
        return False
    if b.written_at is None:
        return True
    return a.written_at > b.written_at
