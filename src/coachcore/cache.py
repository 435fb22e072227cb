import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Mapping

import structlog

from coachcore.models import CacheEntry

logger = structlog.get_logger()

_DEFAULT_SHARDS = 16


def make_fingerprint(
    user_id: "str",
    kind: "str",
    params: "Mapping[str, Any] | None" = None,
) -> "str":
    """
    constructs a stable key for a request from its user, artifact kind and
    salient parameters. Parameter order never matters, any changed value
    changes the key.
    """
    canonical = json.dumps(
        dict(params or {}),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{user_id}|{kind}|{digest}"


class _Shard:
    def __init__(self, capacity: "int | None") -> "None":
        self.lock: "threading.Lock" = threading.Lock()
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.capacity = capacity


class ResponseCache:
    """
    ResponseCache: Is a thread-safe TTL store mapping request
    fingerprints to serialized artifacts.

    Keys are spread over independently locked shards so a burst of
    traffic on one fingerprint never blocks lookups on another. Each
    shard keeps least-recently-used order and drops its oldest entry
    once its share of the capacity is reached. Expired entries are
    removed when a lookup meets them, or in bulk by evict_expired().
    """

    def __init__(
        self,
        capacity: "int | None" = 1024,
        clock: "Callable[[], float]" = time.monotonic,
        shards: "int" = _DEFAULT_SHARDS,
    ) -> "None":
        if shards < 1:
            raise ValueError("shards must be >= 1")
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be >= 1 or None")
        per_shard = None
        if capacity is not None:
            # ceil so that the total never drops below the requested capacity
            per_shard = max(1, -(-capacity // shards))
        self._shards: "list[_Shard]" = [_Shard(per_shard) for _ in range(shards)]
        self._clock = clock

    def _shard(self, fingerprint: "str") -> "_Shard":
        # hash() of str is salted per process, which is fine for an
        # in-process partition
        return self._shards[hash(fingerprint) % len(self._shards)]

    def get(self, fingerprint: "str") -> "str | None":
        """
        returns the live value for the fingerprint, or None on a miss.
        An expired entry counts as a miss and is removed.
        """
        shard = self._shard(fingerprint)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(fingerprint)
            if entry is None:
                return None
            if not entry.is_live(now):
                del shard.entries[fingerprint]
                logger.debug("cache_entry_expired", fingerprint=fingerprint)
                return None
            shard.entries.move_to_end(fingerprint)
            return entry.value

    def set(self, fingerprint: "str", value: "str", ttl: "float") -> "None":
        """
        stores value under fingerprint for ttl seconds, replacing any
        previous entry.
        """
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        entry = CacheEntry(
            fingerprint=fingerprint,
            value=value,
            created_at=self._clock(),
            ttl=ttl,
        )
        shard = self._shard(fingerprint)
        with shard.lock:
            shard.entries[fingerprint] = entry
            shard.entries.move_to_end(fingerprint)
            if shard.capacity is not None:
                while len(shard.entries) > shard.capacity:
                    evicted, _ = shard.entries.popitem(last=False)
                    logger.debug("cache_entry_evicted", fingerprint=evicted)

    def delete(self, fingerprint: "str") -> "bool":
        shard = self._shard(fingerprint)
        with shard.lock:
            return shard.entries.pop(fingerprint, None) is not None

    def clear(self) -> "None":
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def evict_expired(self) -> "int":
        """
        removes all entries whose TTL has elapsed.
        Returns the number of evicted entries.
        """
        now = self._clock()
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                expired = [
                    k for k, entry in shard.entries.items() if not entry.is_live(now)
                ]
                for k in expired:
                    del shard.entries[k]
                evicted += len(expired)
        return evicted

    def __len__(self) -> "int":
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
