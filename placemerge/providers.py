"""Location provider variants: OSM, Google and the hybrid merge of both.

Providers never raise for upstream trouble; they return a ProviderResult so
the service can decide whether to fall back to stored data.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from enum import Enum
from typing import List, Optional

from .config import LocationServiceConfig
from .enrichment import EnrichmentPolicy
from .errors import ConfigurationError, LocationError, ProviderResult, UpstreamTimeoutError
from .http import HttpClient, RequestBudget, RequestMetrics
from .merge import MergeEngine
from .models import Place, ResponseMetadata, SearchRequest, SearchResponse
from .osm_client import OverpassClient
from .places_client import GooglePlacesClient

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    OSM = "osm"
    GOOGLE = "google"
    HYBRID = "hybrid"


class BaseLocationProvider:
    name = "base"

    def search_nearby(self, request: SearchRequest) -> ProviderResult:
        raise NotImplementedError

    def get_place_details(self, place_id: str) -> Optional[Place]:
        raise NotImplementedError

    def validate_config(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class OsmProvider(BaseLocationProvider):
    name = ProviderKind.OSM.value

    def __init__(self, client: OverpassClient) -> None:
        self.client = client

    def search_nearby(self, request: SearchRequest) -> ProviderResult:
        try:
            return ProviderResult.ok(self.client.search_nearby(request))
        except LocationError as exc:
            logger.warning("OSM search failed: %s", exc)
            return ProviderResult.failure(exc)

    def get_place_details(self, place_id: str) -> Optional[Place]:
        return self.client.get_place_details(_osm_external_id(place_id))

    def validate_config(self) -> bool:
        return self.client.validate_config()


class GoogleProvider(BaseLocationProvider):
    name = ProviderKind.GOOGLE.value

    def __init__(self, client: GooglePlacesClient, max_paid_calls: int = 10) -> None:
        self.client = client
        self.max_paid_calls = max_paid_calls

    def search_nearby(self, request: SearchRequest) -> ProviderResult:
        budget = RequestBudget(max_google=self.max_paid_calls)
        try:
            return ProviderResult.ok(self.client.search_nearby(request, budget))
        except LocationError as exc:
            logger.warning("Google search failed: %s", exc)
            return ProviderResult.failure(exc)

    def get_place_details(self, place_id: str) -> Optional[Place]:
        return self.client.get_place_details(place_id)

    def validate_config(self) -> bool:
        return self.client.validate_config()


class HybridProvider(BaseLocationProvider):
    """OSM for coverage, Google for ratings on a budget, merged into one list."""

    name = ProviderKind.HYBRID.value

    def __init__(
        self,
        osm_client: OverpassClient,
        google_client: Optional[GooglePlacesClient],
        merge_engine: Optional[MergeEngine] = None,
        policy: Optional[EnrichmentPolicy] = None,
        timeout_seconds: float = 10.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.osm_client = osm_client
        self.google_client = google_client
        self.merge_engine = merge_engine or MergeEngine()
        self.policy = policy or EnrichmentPolicy()
        self.timeout_seconds = timeout_seconds
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="hybrid")

    def search_nearby(self, request: SearchRequest) -> ProviderResult:
        started = time.monotonic()
        budget = RequestBudget(max_google=self.policy.config.max_paid_calls)

        decision = self.policy.decide(request)
        google_enabled = self.google_client is not None and decision.enabled

        osm_future = self.executor.submit(self.osm_client.search_nearby, request, budget)
        google_future: Optional[Future] = None
        if google_enabled:
            google_request = replace(request, categories=decision.categories, limit=decision.max_results)
            google_future = self.executor.submit(self.google_client.search_nearby, google_request, budget)

        pending = [f for f in (osm_future, google_future) if f is not None]
        done, not_done = wait(pending, timeout=self.timeout_seconds)
        for future in not_done:
            future.cancel()

        osm_error = _future_error(osm_future, done, "osm", self.timeout_seconds)
        if osm_error is not None:
            logger.warning("Hybrid search failed, OSM unavailable: %s", osm_error)
            return ProviderResult.failure(osm_error)
        osm_response: SearchResponse = osm_future.result()

        google_places: List[Place] = []
        fallback_reason: Optional[str] = None
        if google_future is not None:
            google_error = _future_error(google_future, done, "google", self.timeout_seconds)
            if google_error is None:
                google_places = google_future.result().places
            elif getattr(google_error, "recoverable", False):
                logger.warning("Google enrichment failed, continuing with OSM only: %s", google_error)
                fallback_reason = f"google enrichment unavailable: {google_error}"
            else:
                return ProviderResult.failure(google_error)

        limit = request.limit if request.limit is not None else len(osm_response.places)
        result = self.merge_engine.merge(
            osm_response.places,
            google_places,
            limit,
            min_reviews=self.policy.config.min_reviews_for_enrichment,
        )

        return ProviderResult.ok(
            SearchResponse(
                places=result.places,
                metadata=ResponseMetadata(
                    provider=self.name,
                    response_time_ms=int((time.monotonic() - started) * 1000),
                    total_results=len(result.places),
                    search_radius=osm_response.metadata.search_radius,
                    categories_searched=request.category_values(),
                    osm_places=len(osm_response.places),
                    google_enrichments=result.google_enrichments,
                    cost=self.policy.cost_report(result.google_enrichments),
                    fallback_reason=fallback_reason,
                ),
            )
        )

    def get_place_details(self, place_id: str) -> Optional[Place]:
        if place_id.startswith("google_"):
            if self.google_client is None:
                return None
            return self.google_client.get_place_details(place_id)
        return self.osm_client.get_place_details(_osm_external_id(place_id))

    def validate_config(self) -> bool:
        return self.osm_client.validate_config()

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)


def _future_error(
    future: Future, done: set, provider: str, timeout_seconds: float
) -> Optional[BaseException]:
    if future not in done:
        return UpstreamTimeoutError(
            f"{provider} search exceeded {timeout_seconds}s deadline", provider=provider
        )
    exc = future.exception()
    if exc is None:
        return None
    if isinstance(exc, LocationError):
        return exc
    # Anything else is a bug in our code, not an upstream failure.
    raise exc


def _osm_external_id(place_id: str) -> str:
    """Map "osm_node_123" ids back to the "node/123" form Overpass expects."""
    if place_id.startswith("osm_"):
        parts = place_id[len("osm_"):].split("_", 1)
        if len(parts) == 2:
            return f"{parts[0]}/{parts[1]}"
    return place_id


def build_provider(
    kind: str,
    service_config: LocationServiceConfig,
    http_client: Optional[HttpClient] = None,
    metrics: Optional[RequestMetrics] = None,
) -> BaseLocationProvider:
    """Create the provider named by `kind` ("osm", "google" or "hybrid")."""
    try:
        provider_kind = ProviderKind(str(kind).lower())
    except ValueError:
        raise ConfigurationError(
            f"Invalid provider: {kind}. Must be one of: {', '.join(k.value for k in ProviderKind)}"
        ) from None

    http_client = http_client or HttpClient(timeout=service_config.timeout_seconds)
    osm_client = OverpassClient(
        http_client,
        endpoint=service_config.osm_endpoint,
        user_agent=service_config.osm_user_agent,
        timeout_seconds=service_config.timeout_seconds,
        metrics=metrics,
    )

    if provider_kind is ProviderKind.OSM:
        logger.info("Using OSM provider")
        return OsmProvider(osm_client)

    if provider_kind is ProviderKind.GOOGLE:
        logger.info("Using Google Places provider")
        google_client = GooglePlacesClient(http_client, service_config.google_api_key, metrics=metrics)
        return GoogleProvider(google_client, max_paid_calls=service_config.enrichment.max_paid_calls)

    google_client = None
    if service_config.google_api_key:
        google_client = GooglePlacesClient(http_client, service_config.google_api_key, metrics=metrics)
    else:
        logger.warning("GOOGLE_PLACES_API_KEY not set; hybrid provider will run OSM-only")
    logger.info("Using hybrid provider")
    return HybridProvider(
        osm_client,
        google_client,
        merge_engine=MergeEngine(service_config.merge),
        policy=EnrichmentPolicy(service_config.enrichment),
        timeout_seconds=service_config.timeout_seconds,
    )
