import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from placemerge.categories import POICategory
from placemerge.config import LocationServiceConfig
from placemerge.errors import (
    ConfigurationError,
    ProviderResult,
    ServiceUnavailableError,
    UpstreamError,
    ValidationError,
)
from placemerge.models import (
    GoogleDetail,
    OsmDetail,
    Place,
    PlaceMetadata,
    ResponseMetadata,
    SearchResponse,
    utc_now,
)
from placemerge.providers import BaseLocationProvider
from placemerge.service import LocationService
from placemerge.store import LocationStore


def cafe(element_id=1, name="Cafe", lat=40.0, **meta):
    return Place(
        id=f"osm_node_{element_id}",
        name=name,
        category=POICategory.CAFE,
        subcategory="cafe",
        latitude=lat,
        longitude=-73.0,
        metadata=PlaceMetadata(
            source="osm",
            external_id=f"node/{element_id}",
            verified=True,
            osm=OsmDetail(id=f"node/{element_id}", element_type="node", tags={"amenity": "cafe"}),
            merge_status="osm-only",
            **meta,
        ),
    )


class FakeProvider(BaseLocationProvider):
    name = "osm"

    def __init__(self, results=(), details=None):
        self.results = list(results)
        self.details = details or {}
        self.calls = []
        self.detail_calls = []
        self.closed = False

    def search_nearby(self, request):
        self.calls.append(request)
        return self.results.pop(0)

    def get_place_details(self, place_id):
        self.detail_calls.append(place_id)
        return self.details.get(place_id)

    def validate_config(self):
        return True

    def close(self):
        self.closed = True


def ok(*places):
    return ProviderResult.ok(
        SearchResponse(
            places=list(places),
            metadata=ResponseMetadata(provider="osm", total_results=len(places), search_radius=1000),
        )
    )


REQUEST = {"latitude": 40.0, "longitude": -73.0, "radius": 1000, "categories": ["cafe"], "limit": 2}


@pytest.fixture()
def store(tmp_path):
    return LocationStore(str(tmp_path / "locations.db"))


def make_service(provider, store=None, **config_overrides):
    return LocationService(provider, store=store, service_config=LocationServiceConfig(**config_overrides))


def test_provider_result_is_cached_and_persisted(store):
    provider = FakeProvider([ok(cafe(1), cafe(2, "Second", lat=40.001))])
    with make_service(provider, store) as service:
        first = service.search_nearby(REQUEST)
        service.wait_for_background(5)
        second = service.search_nearby(REQUEST)

        assert first.metadata.provider == "osm"
        assert first.metadata.cached is False
        assert second.metadata.cached is True
        assert [p.id for p in second.places] == ["osm_node_1", "osm_node_2"]
        assert len(provider.calls) == 1
        assert store.count() == 2
        assert service.cache_stats()["hits"] == 1
    assert provider.closed is True


def test_request_is_normalized_before_provider_call():
    provider = FakeProvider([ok(cafe())])
    with make_service(provider) as service:
        service.search_nearby({"latitude": 40.0, "longitude": -73.0, "mood": "hungry"})
    request = provider.calls[0]
    assert request.radius == 2000
    assert request.limit == 10
    assert POICategory.RESTAURANT in request.categories


def test_invalid_request_raises_validation_error():
    with make_service(FakeProvider()) as service:
        with pytest.raises(ValidationError):
            service.search_nearby({"latitude": 100, "longitude": 0})


def test_enough_stored_places_skip_the_provider(store):
    store.upsert_location(cafe(1), 0.6)
    store.upsert_location(cafe(2, "Second", lat=40.001), 0.9)
    provider = FakeProvider()
    with make_service(provider, store) as service:
        response = service.search_nearby(REQUEST)

    assert provider.calls == []
    assert response.metadata.provider == "database"
    assert [p.name for p in response.places] == ["Second", "Cafe"]


def test_recoverable_failure_falls_back_to_stored_places(store):
    store.upsert_location(cafe(1), 0.6)
    provider = FakeProvider([ProviderResult.failure(UpstreamError("Overpass down", provider="osm"))])
    with make_service(provider, store) as service:
        response = service.search_nearby(REQUEST)

        assert response.metadata.provider == "database-fallback"
        assert response.metadata.fallback_reason == "Overpass down"
        assert [p.id for p in response.places] == ["osm_node_1"]
        # Fallback answers are not cached.
        assert service.cache_stats()["size"] == 0


def test_recoverable_failure_without_stored_places_is_unavailable(store):
    provider = FakeProvider([ProviderResult.failure(UpstreamError("down"))])
    with make_service(provider, store) as service:
        with pytest.raises(ServiceUnavailableError):
            service.search_nearby(REQUEST)


def test_fatal_failure_is_raised_unchanged(store):
    store.upsert_location(cafe(1), 0.6)
    error = ConfigurationError("bad key")
    provider = FakeProvider([ProviderResult.failure(error)])
    with make_service(provider, store) as service:
        with pytest.raises(ConfigurationError) as exc_info:
            service.search_nearby(REQUEST)
    assert exc_info.value is error


def test_caching_disabled():
    provider = FakeProvider([ok(cafe()), ok(cafe())])
    with make_service(provider, enable_caching=False) as service:
        service.search_nearby(REQUEST)
        service.search_nearby(REQUEST)
        assert service.cache_stats() == {"enabled": False}
    assert len(provider.calls) == 2


def test_get_place_details_prefers_store(store):
    store.upsert_location(cafe(1, "Stored"), 0.5)
    provider = FakeProvider(details={"osm_node_9": cafe(9, "Live")})
    with make_service(provider, store) as service:
        assert service.get_place_details("osm_node_1").name == "Stored"
        assert service.get_place_details("osm_node_9").name == "Live"
        assert service.get_place_details("osm_node_404") is None
    assert provider.detail_calls == ["osm_node_9", "osm_node_404"]


def test_refresh_stale_locations(store):
    old = utc_now() - timedelta(hours=30)
    store.upsert_location(cafe(1, "Old name", last_updated=old), 0.5)
    store.upsert_location(cafe(2, "Gone", lat=40.001, last_updated=old), 0.5)
    fresh = cafe(1, "New name")
    provider = FakeProvider(details={"node/1": fresh})

    with make_service(provider, store) as service:
        refreshed = service.refresh_stale_locations(older_than_hours=24)

        assert refreshed == 1
        assert store.find_by_id("osm_node_1").name == "New name"
        assert [p.name for p in store.find_stale_locations(24)] == ["Gone"]


def test_refresh_merges_when_both_sources_answer(store):
    old = utc_now() - timedelta(hours=30)
    stored = cafe(1, "Cafe", last_updated=old)
    stored.metadata.google = GoogleDetail(place_id="g1")
    store.upsert_location(stored, 0.5)

    google_fresh = Place(
        id="google_g1",
        name="Cafe Central",
        category=POICategory.CAFE,
        subcategory="cafe",
        latitude=40.0,
        longitude=-73.0,
        metadata=PlaceMetadata(
            source="google",
            external_id="g1",
            verified=True,
            google=GoogleDetail(place_id="g1", rating=4.7, review_count=120),
        ),
    )
    osm_provider = FakeProvider(details={"node/1": cafe(1, "Cafe")})
    google_provider = FakeProvider(details={"google_g1": google_fresh})
    google_provider.name = "google"
    service = LocationService(
        osm_provider,
        store=store,
        providers={"osm": osm_provider, "google": google_provider},
    )
    with service:
        assert service.refresh_stale_locations(older_than_hours=24) == 1
        refreshed = store.find_by_id("osm_node_1")
        assert refreshed.metadata.source == "merged"
        assert refreshed.metadata.rating == 4.7
    assert service.available_providers() == ["osm", "google"]


class BlockingProvider(FakeProvider):
    def __init__(self, results=()):
        super().__init__(results)
        self.entered = threading.Event()
        self.release = threading.Event()

    def search_nearby(self, request):
        self.entered.set()
        self.release.wait(5)
        return super().search_nearby(request)


def test_concurrent_identical_searches_share_one_provider_call():
    provider = BlockingProvider([ok(cafe(1))])
    with make_service(provider) as service:
        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [pool.submit(service.search_nearby, REQUEST) for _ in range(4)]
            assert provider.entered.wait(5)
            provider.release.set()
            responses = [f.result(timeout=5) for f in futures]

    assert len(provider.calls) == 1
    assert [[p.id for p in r.places] for r in responses] == [["osm_node_1"]] * 4
