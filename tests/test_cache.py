import base64
import json
import threading
import time

import pytest

from placemerge.cache import ResponseCache, SingleFlight, make_search_cache_key
from placemerge.categories import POICategory
from placemerge.models import Place, PlaceMetadata, ResponseMetadata, SearchRequest, SearchResponse


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_response(name="Cafe", provider="osm"):
    place = Place(
        id="osm_node_1",
        name=name,
        category="cafe",
        subcategory="cafe",
        latitude=40.0,
        longitude=-73.0,
        metadata=PlaceMetadata(source="osm", external_id="node/1", verified=True),
    )
    return SearchResponse(places=[place], metadata=ResponseMetadata(provider=provider, total_results=1))


def make_request(**overrides):
    data = dict(
        latitude=40.71284,
        longitude=-74.00601,
        radius=1000,
        categories=[POICategory.RESTAURANT, POICategory.CAFE],
        mood="hungry",
        limit=10,
    )
    data.update(overrides)
    return SearchRequest(**data)


def test_cache_key_is_base64_of_canonical_request():
    key = make_search_cache_key(make_request())
    payload = json.loads(base64.b64decode(key))
    assert payload == {
        "lat": 40.713,
        "lng": -74.006,
        "radius": 1000,
        "categories": ["cafe", "restaurant"],
        "mood": "hungry",
        "limit": 10,
    }


def test_cache_key_ignores_small_moves_and_category_order():
    a = make_search_cache_key(make_request())
    b = make_search_cache_key(
        make_request(latitude=40.71301, categories=[POICategory.CAFE, POICategory.RESTAURANT])
    )
    c = make_search_cache_key(make_request(limit=11))
    assert a == b
    assert a != c


def test_hit_returns_clone_marked_cached():
    cache = ResponseCache(clock=FakeClock())
    cache.set("k", make_response())

    first = cache.get("k")
    assert first.metadata.cached is True
    first.places[0].name = "mutated"

    second = cache.get("k")
    assert second.places[0].name == "Cafe"


def test_stored_entry_is_isolated_from_caller():
    cache = ResponseCache(clock=FakeClock())
    response = make_response()
    response.metadata.cached = True
    cache.set("k", response)
    response.places.clear()

    hit = cache.get("k")
    assert len(hit.places) == 1


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=300, clock=clock)
    cache.set("k", make_response())

    clock.now += 300
    assert cache.get("k") is not None
    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_fifo_eviction_removes_oldest_inserted():
    cache = ResponseCache(max_entries=100, clock=FakeClock())
    for i in range(100):
        cache.set(f"k{i}", make_response())
    # Reads do not refresh position.
    assert cache.get("k0") is not None

    cache.set("k100", make_response())

    assert len(cache) == 100
    assert "k0" not in cache
    assert "k1" in cache
    assert "k100" in cache


def test_overwrite_moves_key_to_newest():
    cache = ResponseCache(max_entries=2, clock=FakeClock())
    cache.set("a", make_response("A"))
    cache.set("b", make_response("B"))
    cache.set("a", make_response("A2"))
    cache.set("c", make_response("C"))

    assert "b" not in cache
    assert cache.get("a").places[0].name == "A2"


def test_clear_and_stats():
    cache = ResponseCache(ttl_seconds=60, max_entries=5, clock=FakeClock())
    cache.set("a", make_response())
    cache.get("a")
    cache.get("missing")

    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1

    cache.clear()
    assert len(cache) == 0


def test_single_flight_shares_one_computation():
    flight = SingleFlight()
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = []

    def compute():
        calls.append(1)
        started.set()
        release.wait(5)
        return "value"

    leader = threading.Thread(target=lambda: results.append(flight.do("key", compute)))
    leader.start()
    assert started.wait(5)

    followers = [
        threading.Thread(target=lambda: results.append(flight.do("key", compute))) for _ in range(3)
    ]
    for t in followers:
        t.start()
    # Give followers time to park on the leader's future.
    time.sleep(0.2)
    assert flight.in_flight() == 1
    release.set()
    for t in [leader, *followers]:
        t.join(5)

    assert results == ["value"] * 4
    assert len(calls) == 1
    assert flight.in_flight() == 0


def test_single_flight_propagates_errors_and_resets():
    flight = SingleFlight()

    def boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        flight.do("key", boom)

    assert flight.do("key", lambda: 42) == 42
