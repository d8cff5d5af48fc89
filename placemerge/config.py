"""Project configuration.

Module-level constants hold the defaults. Environment variables (optionally
loaded from a .env file by run.py) override the service settings, and a JSON
tuning file can override the merge and enrichment heuristics. Keep API
request shapes centralized here.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

OSM_OVERPASS_URL = "https://overpass-api.de/api/interpreter"
OSM_USER_AGENT = "placemerge/1.0"
PLACES_NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
PLACES_DETAILS_URL_TEMPLATE = "https://places.googleapis.com/v1/places/{place_id}"

# --- Field masks ---

PLACES_FIELD_MASK_MIN = (
    "places.id,places.displayName,places.formattedAddress,places.location,"
    "places.types,places.rating,places.userRatingCount,places.priceLevel,"
    "places.businessStatus"
)
PLACES_DETAILS_FIELD_MASK = (
    "id,displayName,formattedAddress,location,types,rating,userRatingCount,"
    "priceLevel,businessStatus,regularOpeningHours,nationalPhoneNumber,websiteUri"
)
PLACES_MAX_RESULT_COUNT = 20

# --- Search request bounds ---

MIN_RADIUS_M = 100
MAX_RADIUS_M = 10000
DEFAULT_RADIUS_M = 2000
MIN_LIMIT = 1
MAX_LIMIT = 50
DEFAULT_LIMIT = 10

# --- Providers ---

PROVIDER_NAMES: Tuple[str, ...] = ("osm", "google", "hybrid")
DEFAULT_PROVIDER = "hybrid"
PROVIDER_TIMEOUT_SECONDS = 10.0

# --- Response cache ---

CACHE_TTL_SECONDS = 300
CACHE_MAX_ENTRIES = 100
CACHE_COORD_PRECISION = 3  # ~100 m

# --- HTTP ---

HTTP_RETRY_MAX = 2
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 4.0

# --- Persistence ---

LOCATION_DB_PATH = "locations.db"
STALE_AFTER_HOURS = 24
STALE_REFRESH_MAX = 25

# --- Outputs ---

OUTPUT_DIR = "out"


@dataclass(frozen=True)
class MergeConfig:
    proximity_threshold_m: float = 200.0
    merge_confidence_threshold: float = 0.7
    distance_weight: float = 0.4
    name_weight: float = 0.4
    category_weight: float = 0.2
    category_mismatch_score: float = 0.3
    tag_richness_threshold: int = 5


@dataclass(frozen=True)
class EnrichmentConfig:
    max_paid_calls: int = 10
    min_reviews_for_enrichment: int = 5
    max_radius_m: int = 5000
    cost_effective_categories: Tuple[str, ...] = ("restaurant", "cafe", "bar", "attraction")
    default_categories: Tuple[str, ...] = ("restaurant",)
    skip_moods_without_restaurant: Tuple[str, ...] = ("curious",)


@dataclass(frozen=True)
class LocationServiceConfig:
    provider: str = DEFAULT_PROVIDER
    enable_caching: bool = True
    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    cache_max_entries: int = CACHE_MAX_ENTRIES
    default_radius: int = DEFAULT_RADIUS_M
    max_radius: int = MAX_RADIUS_M
    results_per_category: int = DEFAULT_LIMIT
    osm_endpoint: str = OSM_OVERPASS_URL
    osm_user_agent: str = OSM_USER_AGENT
    timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS
    google_api_key: Optional[str] = None
    db_path: str = LOCATION_DB_PATH
    merge: MergeConfig = field(default_factory=MergeConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "LocationServiceConfig":
        """Read LOCATION_* / OSM_* / GOOGLE_PLACES_API_KEY settings."""
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            value = env.get(name)
            return value.strip() if value and value.strip() else default

        def get_int(name: str, default: int) -> int:
            raw = get(name, str(default))
            try:
                return int(raw)
            except ValueError:
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None

        provider = get("LOCATION_PROVIDER", DEFAULT_PROVIDER).lower()
        if provider not in PROVIDER_NAMES:
            raise ConfigurationError(
                f"Invalid LOCATION_PROVIDER: {provider}. Must be one of: {', '.join(PROVIDER_NAMES)}"
            )

        return cls(
            provider=provider,
            enable_caching=get("LOCATION_ENABLE_CACHING", "true").lower() == "true",
            cache_ttl_seconds=get_int("LOCATION_CACHE_TIMEOUT", CACHE_TTL_SECONDS),
            cache_max_entries=get_int("LOCATION_CACHE_MAX_ENTRIES", CACHE_MAX_ENTRIES),
            default_radius=get_int("LOCATION_DEFAULT_RADIUS", DEFAULT_RADIUS_M),
            max_radius=get_int("LOCATION_MAX_RADIUS", MAX_RADIUS_M),
            results_per_category=get_int("LOCATION_RESULTS_PER_CATEGORY", DEFAULT_LIMIT),
            osm_endpoint=get("OSM_ENDPOINT", OSM_OVERPASS_URL),
            osm_user_agent=get("OSM_USER_AGENT", OSM_USER_AGENT),
            # LOCATION_TIMEOUT is expressed in milliseconds.
            timeout_seconds=get_int("LOCATION_TIMEOUT", int(PROVIDER_TIMEOUT_SECONDS * 1000)) / 1000.0,
            google_api_key=get("GOOGLE_PLACES_API_KEY", "") or None,
            db_path=get("LOCATION_DB_PATH", LOCATION_DB_PATH),
        )


def load_tuning_config(
    base: LocationServiceConfig, path: Optional[str] = None
) -> LocationServiceConfig:
    """Apply merge/enrichment overrides from a JSON file.

    Returns `base` unchanged when the file does not exist.
    """
    if path is None:
        path = str(_REPO_ROOT / "tuning_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return base

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    merge_overrides: Dict[str, Any] = {}
    merge_data = data.get("merge", {})
    for key in (
        "proximity_threshold_m",
        "merge_confidence_threshold",
        "distance_weight",
        "name_weight",
        "category_weight",
        "category_mismatch_score",
    ):
        if key in merge_data:
            merge_overrides[key] = float(merge_data[key])
    if "tag_richness_threshold" in merge_data:
        merge_overrides["tag_richness_threshold"] = int(merge_data["tag_richness_threshold"])

    enrichment_overrides: Dict[str, Any] = {}
    enrichment_data = data.get("enrichment", {})
    for key in ("max_paid_calls", "min_reviews_for_enrichment", "max_radius_m"):
        if key in enrichment_data:
            enrichment_overrides[key] = int(enrichment_data[key])
    for key in ("cost_effective_categories", "default_categories", "skip_moods_without_restaurant"):
        if key in enrichment_data:
            enrichment_overrides[key] = tuple(enrichment_data[key])

    cache_data = data.get("cache", {})
    service_overrides: Dict[str, Any] = {}
    if "ttl_seconds" in cache_data:
        service_overrides["cache_ttl_seconds"] = float(cache_data["ttl_seconds"])
    if "max_entries" in cache_data:
        service_overrides["cache_max_entries"] = int(cache_data["max_entries"])

    return replace(
        base,
        merge=replace(base.merge, **merge_overrides),
        enrichment=replace(base.enrichment, **enrichment_overrides),
        **service_overrides,
    )
