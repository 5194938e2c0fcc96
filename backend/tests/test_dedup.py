from __future__ import annotations

import hashlib
from concurrent.futures import ThreadPoolExecutor

from ingestion.core.dedup import (
    ContentHashGenerator,
    DuplicateDetectionService,
    SeenHashCache,
    Sha256HashService,
)
from ingestion.core.value_objects import ContentHash


def test_hash_matches_sha256_of_utf8():
    gen = ContentHashGenerator(Sha256HashService())
    text = "Bitcoin ₿ rallies"
    assert gen.generate(text).value == hashlib.sha256(text.encode("utf-8")).hexdigest()
    assert gen.generate(text) == gen.generate(text)
    assert gen.generate(text) != gen.generate(text + " ")


def test_from_string_validates():
    h = ContentHashGenerator.from_string("f" * 64)
    assert isinstance(h, ContentHash)


def test_first_sighting_is_not_a_duplicate():
    svc = DuplicateDetectionService(Sha256HashService())
    h = svc.compute_hash("some normalized content")

    assert not svc.is_duplicate(h)
    assert svc.record_hash(h) is False
    assert svc.is_duplicate(h)
    assert svc.duplicate_count() == 0

    assert svc.record_hash(h) is True
    assert svc.duplicate_count() == 1
    assert svc.duplicate_events()[0].content_hash == h
    assert svc.unique_hash_count() == 1


def test_forget_and_clear():
    svc = DuplicateDetectionService(Sha256HashService())
    h = svc.compute_hash("content body")
    svc.record_hash(h)
    svc.forget(h)
    assert not svc.is_duplicate(h)

    svc.record_hash(h)
    svc.record_hash(h)
    svc.clear()
    assert svc.unique_hash_count() == 0
    assert svc.duplicate_count() == 0


def test_injected_cache_is_shared():
    cache = SeenHashCache()
    a = DuplicateDetectionService(Sha256HashService(), cache)
    b = DuplicateDetectionService(Sha256HashService(), cache)
    h = a.compute_hash("shared")
    a.record_hash(h)
    assert b.is_duplicate(h)
    assert len(cache) == 1


def test_concurrent_claims_have_one_winner():
    svc = DuplicateDetectionService(Sha256HashService())
    h = svc.compute_hash("same text everywhere")
    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda _: svc.record_hash(h), range(64)))
    assert outcomes.count(False) == 1
    assert svc.duplicate_count() == 63
