from __future__ import annotations

"""Duplicate detection.

Two layers:
- The durable check is the content read repository (``find_by_hash``); it spans
  processes and restarts and is what decides whether an item is saved.
- ``DuplicateDetectionService`` keeps a process-local cache of hashes seen during
  this process's lifetime plus a log of duplicate sightings, for metrics and ops.

The digest itself comes from an injected ``HashService``; nothing else in the
domain calls hashlib. Do not log raw content. Hashes are safe for ops/audit.
"""

import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from ingestion.core.time_common import utc_now
from ingestion.core.value_objects import ContentHash


class HashService(Protocol):
    def sha256(self, text: str) -> str:
        """Hex digest of ``text`` encoded as UTF-8."""
        ...


class Sha256HashService:
    def sha256(self, text: str) -> str:
        return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


class ContentHashGenerator:
    def __init__(self, hash_service: HashService):
        self._hash_service = hash_service

    def generate(self, content: str) -> ContentHash:
        return ContentHash.create(self._hash_service.sha256(content))

    @staticmethod
    def from_string(value: str) -> ContentHash:
        return ContentHash.create(value)


class SeenHashCache:
    """Thread-safe set of hashes seen by this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hashes: set[str] = set()

    def contains(self, content_hash: ContentHash) -> bool:
        with self._lock:
            return content_hash.value in self._hashes

    def add(self, content_hash: ContentHash) -> bool:
        """Insert the hash. Returns False if it was already present."""
        with self._lock:
            if content_hash.value in self._hashes:
                return False
            self._hashes.add(content_hash.value)
            return True

    def discard(self, content_hash: ContentHash) -> None:
        with self._lock:
            self._hashes.discard(content_hash.value)

    def clear(self) -> None:
        with self._lock:
            self._hashes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hashes)


@dataclass(frozen=True, slots=True)
class DuplicateEvent:
    content_hash: ContentHash
    detected_at: datetime


class DuplicateDetectionService:
    def __init__(self, hash_service: HashService, cache: Optional[SeenHashCache] = None):
        self._generator = ContentHashGenerator(hash_service)
        self._cache = cache if cache is not None else SeenHashCache()
        self._events_lock = threading.Lock()
        self._events: list[DuplicateEvent] = []

    def compute_hash(self, content: str) -> ContentHash:
        return self._generator.generate(content)

    def is_duplicate(self, content_hash: ContentHash) -> bool:
        return self._cache.contains(content_hash)

    def record_hash(self, content_hash: ContentHash) -> bool:
        """Remember the hash; log a duplicate event if it was already known.

        Returns True when this call was a duplicate sighting.
        """
        if self._cache.add(content_hash):
            return False
        with self._events_lock:
            self._events.append(DuplicateEvent(content_hash=content_hash, detected_at=utc_now()))
        return True

    def forget(self, content_hash: ContentHash) -> None:
        """Drop a hash whose item never made it to storage."""
        self._cache.discard(content_hash)

    def duplicate_events(self) -> list[DuplicateEvent]:
        with self._events_lock:
            return list(self._events)

    def unique_hash_count(self) -> int:
        return len(self._cache)

    def duplicate_count(self) -> int:
        with self._events_lock:
            return len(self._events)

    def clear(self) -> None:
        self._cache.clear()
        with self._events_lock:
            self._events.clear()
