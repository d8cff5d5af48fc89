"""OpenStreetMap Overpass client and element normalization."""
from __future__ import annotations

import logging
import math
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .categories import OSM_TAGS, POICategory, all_categories, category_from_osm_tags, osm_subcategory
from .errors import MalformedElementError, UpstreamError
from .geo import haversine_m
from .http import HttpClient, RequestBudget, RequestMetrics
from .models import Contact, OsmDetail, Place, PlaceMetadata, ResponseMetadata, SearchRequest, SearchResponse

logger = logging.getLogger(__name__)

NAME_TAGS = ("name", "brand", "operator")
ADDRESS_TAGS = ("addr:housenumber", "addr:street", "addr:city", "addr:postcode")
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
ELEMENT_TYPES = ("node", "way", "relation")

_EXTERNAL_ID_RE = re.compile(r"^(?:(node|way|relation)/)?(\d+)$")


class OverpassClient:
    def __init__(
        self,
        http_client: HttpClient,
        endpoint: str = config.OSM_OVERPASS_URL,
        user_agent: str = config.OSM_USER_AGENT,
        timeout_seconds: float = config.PROVIDER_TIMEOUT_SECONDS,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.endpoint = endpoint
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics

    def validate_config(self) -> bool:
        return bool(self.endpoint and self.user_agent)

    def search_nearby(
        self, request: SearchRequest, budget: Optional[RequestBudget] = None
    ) -> SearchResponse:
        started = time.monotonic()
        radius = request.radius if request.radius is not None else config.DEFAULT_RADIUS_M
        limit = request.limit if request.limit is not None else config.DEFAULT_LIMIT
        categories = list(request.categories or all_categories())

        query = build_overpass_query(
            request.latitude, request.longitude, radius, categories, self.timeout_seconds
        )
        data = self._execute(query, budget)
        places = parse_overpass_response(data, request.latitude, request.longitude)
        places.sort(key=lambda p: p.distance)
        places = places[:limit]

        return SearchResponse(
            places=places,
            metadata=ResponseMetadata(
                provider="osm",
                response_time_ms=int((time.monotonic() - started) * 1000),
                total_results=len(places),
                search_radius=radius,
                categories_searched=[c.value for c in (request.categories or [])],
            ),
        )

    def get_place_details(self, external_id: str) -> Optional[Place]:
        match = _EXTERNAL_ID_RE.match(str(external_id).strip())
        if not match:
            logger.warning("Invalid OSM id %r", external_id)
            return None
        element_type, element_id = match.groups()
        types = [element_type] if element_type else list(ELEMENT_TYPES)
        body = "\n".join(f"  {t}({element_id});" for t in types)
        query = (
            f"[out:json][timeout:{_timeout_value(self.timeout_seconds)}];\n"
            f"(\n{body}\n);\nout center meta;"
        )
        try:
            data = self._execute(query, None)
        except UpstreamError as exc:
            logger.warning("Failed to get OSM place details for %s: %s", external_id, exc)
            return None

        for element in data.get("elements") or []:
            try:
                return element_to_place(element, 0.0)
            except MalformedElementError as exc:
                logger.warning("Skipping OSM element %s: %s", element.get("id"), exc)
        return None

    def _execute(self, query: str, budget: Optional[RequestBudget]) -> Dict[str, Any]:
        if budget is not None:
            budget.consume("osm")
        elif self.metrics is not None:
            self.metrics.inc_network("osm")
        try:
            data = self.http.post_text(self.endpoint, query, headers={"User-Agent": self.user_agent})
        except UpstreamError as exc:
            if self.metrics is not None:
                self.metrics.inc_failure("osm")
            exc.provider = "osm"
            raise
        if not isinstance(data, dict) or "elements" not in data:
            raise UpstreamError("Invalid OSM response format", provider="osm")
        return data


def _timeout_value(timeout_seconds: float) -> int:
    return max(1, int(math.floor(timeout_seconds)))


def build_overpass_query(
    lat: float,
    lon: float,
    radius_m: int,
    categories: List[POICategory],
    timeout_seconds: float,
) -> str:
    lines: List[str] = []
    seen: set[Tuple[str, str]] = set()
    for category in categories:
        for key, value in OSM_TAGS.get(category, []):
            if (key, value) in seen:
                continue
            seen.add((key, value))
            for element_type in ELEMENT_TYPES:
                lines.append(f'  {element_type}["{key}"="{value}"](around:{radius_m},{lat},{lon});')
    body = "\n".join(lines)
    return f"[out:json][timeout:{_timeout_value(timeout_seconds)}];\n(\n{body}\n);\nout center meta;"


# Adapter/mapper for Overpass elements

def parse_overpass_response(
    response: Dict[str, Any], center_lat: float, center_lon: float
) -> List[Place]:
    places: List[Place] = []
    for element in response.get("elements") or []:
        try:
            lat, lon = element_coordinates(element)
            place = element_to_place(element, haversine_m(center_lat, center_lon, lat, lon))
        except MalformedElementError as exc:
            logger.warning("Skipping OSM element %s: %s", element.get("id"), exc)
            continue
        if place is not None:
            places.append(place)
    return places


def element_coordinates(element: Dict[str, Any]) -> Tuple[float, float]:
    if element.get("type") == "node":
        lat, lon = element.get("lat"), element.get("lon")
    else:
        center = element.get("center") or {}
        lat, lon = center.get("lat"), center.get("lon")
    if lat is None or lon is None:
        raise MalformedElementError("element has no coordinates")
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError):
        raise MalformedElementError(f"invalid coordinates {lat!r},{lon!r}") from None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
        raise MalformedElementError(f"coordinates out of range {lat_f},{lon_f}")
    return lat_f, lon_f


def element_to_place(element: Dict[str, Any], distance: float) -> Optional[Place]:
    """Normalize one Overpass element; unnamed elements yield None."""
    element_type = element.get("type")
    element_id = element.get("id")
    if element_type not in ELEMENT_TYPES or element_id is None:
        raise MalformedElementError(f"unexpected element type/id {element_type!r}/{element_id!r}")
    tags = element.get("tags") or {}
    if not isinstance(tags, dict):
        raise MalformedElementError("tags is not an object")

    name = extract_name(tags)
    if not name:
        return None

    lat, lon = element_coordinates(element)
    osm_id = f"{element_type}/{element_id}"
    return Place(
        id=f"osm_{element_type}_{element_id}",
        name=name,
        category=category_from_osm_tags(tags),
        subcategory=osm_subcategory(tags),
        latitude=lat,
        longitude=lon,
        distance=distance,
        address=extract_address(tags),
        description=tags.get("description") or tags.get("note") or None,
        metadata=PlaceMetadata(
            source="osm",
            external_id=osm_id,
            verified=True,
            osm=OsmDetail(id=osm_id, element_type=element_type, tags=dict(tags)),
            contact=extract_contact(tags),
            hours=extract_hours(tags),
            features=extract_features(tags),
        ),
    )


def extract_name(tags: Dict[str, str]) -> Optional[str]:
    for key in NAME_TAGS:
        value = (tags.get(key) or "").strip()
        if value:
            return value
    return None


def extract_address(tags: Dict[str, str]) -> Optional[str]:
    parts = [tags[key] for key in ADDRESS_TAGS if tags.get(key)]
    return ", ".join(parts) if parts else None


def extract_contact(tags: Dict[str, str]) -> Optional[Contact]:
    contact = Contact(
        phone=tags.get("phone") or tags.get("contact:phone") or None,
        website=tags.get("website") or tags.get("contact:website") or None,
        email=tags.get("email") or tags.get("contact:email") or None,
    )
    return None if contact.is_empty() else contact


def extract_hours(tags: Dict[str, str]) -> Optional[Dict[str, str]]:
    hours: Dict[str, str] = {}
    if tags.get("opening_hours"):
        hours["general"] = tags["opening_hours"]
    for day in DAYS:
        value = tags.get(f"opening_hours:{day}")
        if value:
            hours[day] = value
    return hours or None


def extract_features(tags: Dict[str, str]) -> List[str]:
    features: List[str] = []
    if tags.get("wifi") == "yes" or tags.get("internet_access") == "wlan":
        features.append("wifi")
    if tags.get("wheelchair") == "yes":
        features.append("wheelchair_accessible")
    if tags.get("outdoor_seating") == "yes":
        features.append("outdoor_seating")
    if tags.get("smoking") == "no":
        features.append("non_smoking")
    if tags.get("takeaway") == "yes":
        features.append("takeaway")
    if tags.get("delivery") == "yes":
        features.append("delivery")
    return features
