"""Location search orchestration: cache, store, provider and fallbacks."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Mapping, Optional, Union

from . import config
from .cache import ResponseCache, SingleFlight, make_search_cache_key
from .config import LocationServiceConfig
from .errors import PersistenceError, ServiceUnavailableError
from .http import HttpClient
from .merge import build_merged_place
from .models import Place, ResponseMetadata, SearchRequest, SearchResponse
from .providers import BaseLocationProvider, build_provider
from .scoring import quality_score
from .store import LocationStore

logger = logging.getLogger(__name__)


class LocationService:
    """Answer nearby searches from the cache, the store or a live provider.

    Order of preference: cached response, stored places when there are
    enough of them, the provider, and stored places again if the provider
    fails with a recoverable error.
    """

    def __init__(
        self,
        provider: BaseLocationProvider,
        store: Optional[LocationStore] = None,
        cache: Optional[ResponseCache] = None,
        service_config: Optional[LocationServiceConfig] = None,
        providers: Optional[Mapping[str, BaseLocationProvider]] = None,
        background_executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.config = service_config or LocationServiceConfig()
        self.provider = provider
        self.providers: Dict[str, BaseLocationProvider] = dict(providers or {provider.name: provider})
        self.store = store
        if cache is None and self.config.enable_caching:
            cache = ResponseCache(self.config.cache_ttl_seconds, self.config.cache_max_entries)
        self.cache = cache if self.config.enable_caching else None
        self._single_flight = SingleFlight()
        self._owns_executor = background_executor is None
        self._executor = background_executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="persist"
        )
        self._background: List[Future] = []
        self._background_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        service_config: LocationServiceConfig,
        http_client: Optional[HttpClient] = None,
        provider_name: Optional[str] = None,
    ) -> "LocationService":
        provider = build_provider(provider_name or service_config.provider, service_config, http_client)
        store = LocationStore(service_config.db_path)
        return cls(provider, store=store, service_config=service_config)

    def __enter__(self) -> "LocationService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --- search ---

    def search_nearby(self, request: Union[SearchRequest, Dict[str, Any]]) -> SearchResponse:
        if isinstance(request, dict):
            request = SearchRequest.from_dict(request)
        else:
            request.validate()
        request = request.normalized(
            default_radius=self.config.default_radius,
            max_radius=self.config.max_radius,
            default_limit=self.config.results_per_category,
        )

        key = make_search_cache_key(request)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Cache hit for %s", key)
                return cached

        return self._single_flight.do(key, lambda: self._search_uncached(request, key))

    def _search_uncached(self, request: SearchRequest, key: str) -> SearchResponse:
        started = time.monotonic()

        # A concurrent leader may have filled the cache while we queued.
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        stored = self._find_stored(request)
        if len(stored) >= request.limit:
            logger.info("Serving %s places from the location store", len(stored))
            response = self._stored_response(request, stored, started, "database")
            self._cache_set(key, response)
            return response

        result = self.provider.search_nearby(request)
        if result.is_ok:
            response: SearchResponse = result.response
            self._persist_async(response.places)
            self._cache_set(key, response)
            return response

        if not result.is_recoverable:
            raise result.error

        if stored:
            logger.warning(
                "Provider %s failed (%s); serving %s stored places",
                self.provider.name,
                result.error,
                len(stored),
            )
            response = self._stored_response(request, stored, started, "database-fallback")
            response.metadata.fallback_reason = str(result.error)
            return response

        raise ServiceUnavailableError(
            f"Location providers unavailable and no stored places nearby: {result.error}"
        ) from result.error

    def _find_stored(self, request: SearchRequest) -> List[Place]:
        if self.store is None:
            return []
        try:
            return self.store.find_nearby(
                request.latitude,
                request.longitude,
                request.radius,
                request.categories,
                request.limit,
            )
        except PersistenceError as exc:
            logger.warning("Location store lookup failed: %s", exc)
            return []

    def _stored_response(
        self, request: SearchRequest, places: List[Place], started: float, provider: str
    ) -> SearchResponse:
        places = places[: request.limit]
        return SearchResponse(
            places=places,
            metadata=ResponseMetadata(
                provider=provider,
                response_time_ms=int((time.monotonic() - started) * 1000),
                total_results=len(places),
                search_radius=request.radius,
                categories_searched=request.category_values(),
            ),
        )

    def _cache_set(self, key: str, response: SearchResponse) -> None:
        if self.cache is not None:
            self.cache.set(key, response)

    # --- persistence ---

    def _persist_async(self, places: List[Place]) -> None:
        if self.store is None or not places:
            return
        future = self._executor.submit(self._persist, list(places))
        with self._background_lock:
            self._background = [f for f in self._background if not f.done()]
            self._background.append(future)

    def _persist(self, places: List[Place]) -> int:
        stored = 0
        for place in places:
            try:
                self.store.upsert_location(place, quality_score(place, self.config.merge))
                stored += 1
            except PersistenceError as exc:
                logger.warning("Failed to store place %s: %s", place.id, exc)
        logger.info("Stored %s of %s places", stored, len(places))
        return stored

    def wait_for_background(self, timeout: Optional[float] = None) -> None:
        with self._background_lock:
            pending = list(self._background)
        if pending:
            wait(pending, timeout=timeout)

    # --- details and maintenance ---

    def get_place_details(self, place_id: str) -> Optional[Place]:
        if self.store is not None:
            try:
                place = self.store.find_by_id(place_id)
            except PersistenceError as exc:
                logger.warning("Location store lookup failed for %s: %s", place_id, exc)
                place = None
            if place is not None:
                return place
        return self._provider_for(place_id).get_place_details(place_id)

    def refresh_stale_locations(
        self,
        older_than_hours: float = config.STALE_AFTER_HOURS,
        provider: Optional[str] = None,
        max_records: int = config.STALE_REFRESH_MAX,
    ) -> int:
        """Re-fetch stale stored places from their providers; returns the refreshed count."""
        if self.store is None:
            return 0
        stale = self.store.find_stale_locations(older_than_hours, provider)
        logger.info("Found %s stale locations to refresh", len(stale))
        refreshed = 0
        for place in stale[:max_records]:
            fresh = self._refetch(place)
            if fresh is None:
                logger.warning("Could not refresh %s (%s)", place.id, place.metadata.external_id)
                continue
            try:
                self.store.upsert_location(fresh, quality_score(fresh, self.config.merge))
            except PersistenceError as exc:
                logger.warning("Failed to store refreshed place %s: %s", place.id, exc)
                continue
            refreshed += 1
        return refreshed

    def _refetch(self, place: Place) -> Optional[Place]:
        meta = place.metadata
        osm_fresh = None
        google_fresh = None
        if meta.osm is not None:
            osm_fresh = self._provider_for("osm_").get_place_details(meta.osm.id)
        if meta.google is not None and meta.google.place_id:
            google_fresh = self._provider_for("google_").get_place_details(f"google_{meta.google.place_id}")
        if osm_fresh is not None and google_fresh is not None:
            return build_merged_place(osm_fresh, google_fresh)
        return osm_fresh or google_fresh

    def _provider_for(self, place_id: str) -> BaseLocationProvider:
        if place_id.startswith("google_") and "google" in self.providers:
            return self.providers["google"]
        if place_id.startswith("osm_") and "osm" in self.providers:
            return self.providers["osm"]
        return self.provider

    # --- housekeeping ---

    def available_providers(self) -> List[str]:
        return list(self.providers)

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        if self.cache is None:
            return {"enabled": False}
        stats = self.cache.stats()
        stats["enabled"] = True
        return stats

    def close(self) -> None:
        self.wait_for_background()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        for provider in {id(p): p for p in [self.provider, *self.providers.values()]}.values():
            provider.close()
        if self.store is not None:
            self.store.close()
