from cityboundary.db import redis_client
from cityboundary.db.redis_client import get_redis
from cityboundary.services.boundary import candidate_cache
from cityboundary.services.boundary.candidate_cache import CandidateCache
from conftest import FakeRedis, make_candidate


def test_cached_candidates_keep_rank_and_score(fake_redis):
    cache = CandidateCache(redis_client=fake_redis, ttl_seconds=60)
    ranked = [
        make_candidate("relation/1").model_copy(update={"score": 0.9}),
        make_candidate("way/2").model_copy(update={"score": 0.7}),
    ]

    cache.set_candidates("city-1", ranked, request_id="req-1")
    cached = cache.get_candidates("city-1")

    assert [c.osm_id for c in cached] == ["relation/1", "way/2"]
    assert cached[0].score == 0.9
    assert "boundary_candidates:city-1" in fake_redis.store
    assert cache.get_candidates("city-2") is None


def test_invalidate(fake_redis):
    cache = CandidateCache(redis_client=fake_redis)
    cache.set_candidates("city-1", [make_candidate()])
    cache.invalidate("city-1")
    assert cache.get_candidates("city-1") is None


def test_redis_errors_degrade_to_cache_miss():
    cache = CandidateCache(redis_client=FakeRedis(fail=True))
    cache.set_candidates("city-1", [make_candidate()])
    cache.invalidate("city-1")
    assert cache.get_candidates("city-1") is None


def test_disabled_cache_without_client():
    cache = CandidateCache()
    assert not cache.is_enabled()
    assert cache.get_candidates("city-1") is None


def test_default_cache_uses_shared_client(monkeypatch, fake_redis):
    monkeypatch.setattr(candidate_cache.settings, "candidate_cache_enabled", True)
    monkeypatch.setattr(candidate_cache, "get_redis", lambda: fake_redis)

    cache = CandidateCache()
    assert cache.is_enabled()
    assert cache.redis_client is fake_redis


def test_shared_client_is_a_singleton():
    assert get_redis() is redis_client.redis_client
