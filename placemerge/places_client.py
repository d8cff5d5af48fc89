"""Google Places (New) client and response parsing."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .categories import POICategory, all_categories, category_from_google_types, google_types_for
from .errors import ConfigurationError, MalformedElementError, UpstreamError
from .geo import haversine_m
from .http import HttpClient, RequestBudget, RequestMetrics
from .models import Contact, GoogleDetail, Place, PlaceMetadata, ResponseMetadata, SearchRequest, SearchResponse

logger = logging.getLogger(__name__)

PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}
DEFAULT_PRICE_LEVEL = 2
# Google numbers days from Sunday.
DAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
DEFAULT_CLOSE_TIME = "23:59"


class GooglePlacesClient:
    def __init__(
        self,
        http_client: HttpClient,
        api_key: Optional[str],
        field_mask: str = config.PLACES_FIELD_MASK_MIN,
        details_field_mask: str = config.PLACES_DETAILS_FIELD_MASK,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("GOOGLE_PLACES_API_KEY is required but not configured")
        self.http = http_client
        self.api_key = api_key
        self.field_mask = field_mask
        self.details_field_mask = details_field_mask
        self.metrics = metrics

    def validate_config(self) -> bool:
        return bool(self.api_key)

    def search_nearby(
        self, request: SearchRequest, budget: Optional[RequestBudget] = None
    ) -> SearchResponse:
        started = time.monotonic()
        radius = request.radius if request.radius is not None else config.DEFAULT_RADIUS_M
        limit = request.limit if request.limit is not None else config.PLACES_MAX_RESULT_COUNT

        body = build_nearby_search_body(
            request.latitude,
            request.longitude,
            radius,
            list(request.categories or all_categories()),
            limit,
        )
        self._consume(budget)
        try:
            response = self.http.post_json(
                config.PLACES_NEARBY_SEARCH_URL, body, headers=self._headers(self.field_mask)
            )
        except UpstreamError as exc:
            self._failed(exc)
            raise
        places = parse_places_response(response, request.latitude, request.longitude)
        places = places[:limit]

        return SearchResponse(
            places=places,
            metadata=ResponseMetadata(
                provider="google",
                response_time_ms=int((time.monotonic() - started) * 1000),
                total_results=len(places),
                search_radius=radius,
                categories_searched=[c.value for c in (request.categories or [])],
            ),
        )

    def get_place_details(self, place_id: str) -> Optional[Place]:
        if place_id.startswith("google_"):
            place_id = place_id[len("google_"):]
        url = config.PLACES_DETAILS_URL_TEMPLATE.format(place_id=place_id)
        self._consume(None)
        try:
            raw = self.http.get_json(url, headers=self._headers(self.details_field_mask))
        except UpstreamError as exc:
            self._failed(exc)
            logger.warning("Failed to get Google place details for %s: %s", place_id, exc)
            return None
        try:
            return google_place_to_place(raw, 0.0)
        except MalformedElementError as exc:
            logger.warning("Unusable Google place details for %s: %s", place_id, exc)
            return None

    def _headers(self, field_mask: str) -> Dict[str, str]:
        return {"X-Goog-Api-Key": self.api_key, "X-Goog-FieldMask": field_mask}

    def _consume(self, budget: Optional[RequestBudget]) -> None:
        if budget is not None:
            budget.consume("google")
        elif self.metrics is not None:
            self.metrics.inc_network("google")

    def _failed(self, exc: UpstreamError) -> None:
        if self.metrics is not None:
            self.metrics.inc_failure("google")
        exc.provider = "google"


def build_nearby_search_body(
    lat: float,
    lon: float,
    radius_m: int,
    categories: List[POICategory],
    limit: int,
) -> Dict[str, Any]:
    return {
        "includedTypes": google_types_for(categories),
        "maxResultCount": max(1, min(int(limit), config.PLACES_MAX_RESULT_COUNT)),
        "locationRestriction": {
            "circle": {
                "center": {"latitude": lat, "longitude": lon},
                "radius": radius_m,
            }
        },
    }


# Adapter/mapper for Places response fields

def parse_places_response(
    response: Dict[str, Any], center_lat: float, center_lon: float
) -> List[Place]:
    places: List[Place] = []
    for raw in response.get("places") or []:
        if not isinstance(raw, dict):
            logger.warning("Skipping Google place: not an object (%r)", raw)
            continue
        try:
            lat, lon = place_coordinates(raw)
            place = google_place_to_place(raw, haversine_m(center_lat, center_lon, lat, lon))
        except MalformedElementError as exc:
            logger.warning("Skipping Google place %s: %s", raw.get("id"), exc)
            continue
        if place is not None:
            places.append(place)
    places.sort(key=lambda p: p.distance)
    return places


def place_coordinates(raw: Dict[str, Any]) -> Tuple[float, float]:
    location = raw.get("location")
    if not isinstance(location, dict):
        raise MalformedElementError("place has no location")
    lat, lon = location.get("latitude"), location.get("longitude")
    if lat is None or lon is None:
        raise MalformedElementError("place has no coordinates")
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError):
        raise MalformedElementError(f"invalid coordinates {lat!r},{lon!r}") from None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
        raise MalformedElementError(f"coordinates out of range {lat_f},{lon_f}")
    return lat_f, lon_f


def google_place_to_place(raw: Dict[str, Any], distance: float) -> Optional[Place]:
    """Normalize one Places entry; None when it has no id or display name.

    Raises MalformedElementError for unusable coordinates or field values.
    """
    place_id = raw.get("id")
    display = raw.get("displayName")
    name = display.get("text") if isinstance(display, dict) else display
    if not place_id or not name:
        return None
    lat, lon = place_coordinates(raw)

    try:
        types = [str(t) for t in raw.get("types") or []]
        rating = raw.get("rating")
        review_count = raw.get("userRatingCount")
        price_level = raw.get("priceLevel")
        google = GoogleDetail(
            place_id=str(place_id),
            rating=float(rating) if rating else None,
            review_count=int(review_count) if review_count else None,
            price_level=map_price_level(price_level) if price_level else None,
        )
        hours = convert_opening_hours(raw.get("regularOpeningHours"))
    except (TypeError, ValueError, AttributeError) as exc:
        raise MalformedElementError(f"invalid field value: {exc}") from exc

    contact = Contact(phone=raw.get("nationalPhoneNumber"), website=raw.get("websiteUri"))
    features = ["operational"] if raw.get("businessStatus") == "OPERATIONAL" else []

    return Place(
        id=f"google_{place_id}",
        name=str(name),
        category=category_from_google_types(types),
        subcategory=types[0] if types else "unknown",
        latitude=lat,
        longitude=lon,
        distance=distance,
        address=raw.get("formattedAddress") or None,
        metadata=PlaceMetadata(
            source="google",
            external_id=str(place_id),
            verified=True,
            google=google,
            contact=None if contact.is_empty() else contact,
            hours=hours,
            features=features,
        ),
    )


def map_price_level(value: str) -> int:
    return PRICE_LEVELS.get(value, DEFAULT_PRICE_LEVEL)


def _hhmm(point: Dict[str, Any]) -> str:
    return f"{int(point.get('hour', 0)):02d}:{int(point.get('minute', 0)):02d}"


def convert_opening_hours(opening_hours: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """Flatten regularOpeningHours periods into {day: "HH:MM-HH:MM"}."""
    if not opening_hours:
        return None
    hours: Dict[str, str] = {}
    for period in opening_hours.get("periods") or []:
        opened = period.get("open")
        if not opened:
            continue
        day = opened.get("day")
        day_name = DAY_NAMES[day] if isinstance(day, int) and 0 <= day < len(DAY_NAMES) else "unknown"
        closed = period.get("close")
        close_time = _hhmm(closed) if closed else DEFAULT_CLOSE_TIME
        hours[day_name] = f"{_hhmm(opened)}-{close_time}"
    return hours or None
