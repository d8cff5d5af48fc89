"""Normalized place records and search request/response shapes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import config
from .categories import (
    DEFAULT_MOOD,
    MOODS,
    POICategory,
    all_categories,
    categories_for_mood,
    coerce_category,
    parse_category,
)
from .errors import ValidationError

SOURCES = ("osm", "google", "manual", "merged")
MERGE_STATUSES = ("osm-only", "google-only", "merged", "pending")


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return utc_now()
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class Contact:
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.phone or self.website or self.email)

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in (("phone", self.phone), ("website", self.website), ("email", self.email)) if v}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Contact"]:
        if not data:
            return None
        contact = cls(phone=data.get("phone"), website=data.get("website"), email=data.get("email"))
        return None if contact.is_empty() else contact


@dataclass
class OsmDetail:
    id: str
    element_type: str
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.element_type, "tags": dict(self.tags)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OsmDetail":
        return cls(
            id=str(data.get("id", "")),
            element_type=str(data.get("type") or data.get("element_type") or "node"),
            tags=dict(data.get("tags") or {}),
        )


@dataclass
class GoogleDetail:
    place_id: str
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"placeId": self.place_id}
        if self.rating is not None:
            out["rating"] = self.rating
        if self.review_count is not None:
            out["reviewCount"] = self.review_count
        if self.price_level is not None:
            out["priceLevel"] = self.price_level
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoogleDetail":
        rating = data.get("rating")
        review_count = data.get("reviewCount", data.get("review_count"))
        price_level = data.get("priceLevel", data.get("price_level"))
        return cls(
            place_id=str(data.get("placeId") or data.get("place_id") or ""),
            rating=float(rating) if rating is not None else None,
            review_count=int(review_count) if review_count is not None else None,
            price_level=int(price_level) if price_level is not None else None,
        )


@dataclass
class PlaceMetadata:
    source: str
    external_id: str
    last_updated: datetime = field(default_factory=utc_now)
    verified: bool = False
    osm: Optional[OsmDetail] = None
    google: Optional[GoogleDetail] = None
    contact: Optional[Contact] = None
    hours: Optional[Dict[str, str]] = None
    features: List[str] = field(default_factory=list)
    merge_status: Optional[str] = None
    ai_context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if self.source not in SOURCES:
            raise ValueError(f"Unknown place source: {self.source}")
        if self.merge_status is not None and self.merge_status not in MERGE_STATUSES:
            raise ValueError(f"Unknown merge status: {self.merge_status}")
        if self.source == "merged" and not self.verified:
            raise ValueError("Merged places must be verified")

    @property
    def rating(self) -> Optional[float]:
        return self.google.rating if self.google else None

    @property
    def review_count(self) -> Optional[int]:
        return self.google.review_count if self.google else None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "source": self.source,
            "externalId": self.external_id,
            "lastUpdated": self.last_updated.isoformat(),
            "verified": self.verified,
            "features": list(self.features),
        }
        if self.osm is not None:
            out["osm"] = self.osm.to_dict()
        if self.google is not None:
            out["google"] = self.google.to_dict()
        if self.contact is not None and not self.contact.is_empty():
            out["contact"] = self.contact.to_dict()
        if self.hours:
            out["hours"] = dict(self.hours)
        if self.merge_status:
            out["mergeStatus"] = self.merge_status
        if self.ai_context:
            out["aiContext"] = dict(self.ai_context)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaceMetadata":
        osm = data.get("osm")
        google = data.get("google")
        return cls(
            source=str(data.get("source") or "manual"),
            external_id=str(data.get("externalId") or data.get("external_id") or ""),
            last_updated=_parse_datetime(data.get("lastUpdated") or data.get("last_updated")),
            verified=bool(data.get("verified", False)),
            osm=OsmDetail.from_dict(osm) if osm else None,
            google=GoogleDetail.from_dict(google) if google else None,
            contact=Contact.from_dict(data.get("contact")),
            hours=dict(data["hours"]) if data.get("hours") else None,
            features=list(data.get("features") or []),
            merge_status=data.get("mergeStatus") or data.get("merge_status") or None,
            ai_context=dict(data["aiContext"]) if data.get("aiContext") else None,
        )


@dataclass
class Place:
    id: str
    name: str
    category: POICategory
    subcategory: str
    latitude: float
    longitude: float
    metadata: PlaceMetadata
    distance: float = 0.0
    address: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        self.category = coerce_category(self.category)
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")
        if self.distance is None or self.distance < 0:
            self.distance = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "subcategory": self.subcategory,
            "coordinates": {"latitude": self.latitude, "longitude": self.longitude},
            "distance": self.distance,
            "metadata": self.metadata.to_dict(),
        }
        if self.address:
            out["address"] = self.address
        if self.description:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Place":
        coords = data.get("coordinates") or {}
        lat = coords.get("latitude", data.get("latitude"))
        lon = coords.get("longitude", data.get("longitude"))
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            category=coerce_category(data.get("category")),
            subcategory=str(data.get("subcategory") or data.get("category") or "unknown"),
            latitude=float(lat),
            longitude=float(lon),
            distance=float(data.get("distance") or 0.0),
            address=data.get("address") or None,
            description=data.get("description") or None,
            metadata=PlaceMetadata.from_dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class MergeCandidate:
    osm_place: Place
    google_place: Place
    distance: float
    name_similarity: float
    confidence: float


@dataclass
class SearchRequest:
    latitude: float
    longitude: float
    radius: Optional[int] = None
    categories: Optional[List[POICategory]] = None
    mood: Optional[str] = None
    limit: Optional[int] = None
    # Accepted but not applied to any filtering.
    exclude_chains: bool = False

    def validate(self) -> "SearchRequest":
        errors: List[Dict[str, Any]] = []
        if not -90.0 <= self.latitude <= 90.0:
            errors.append({"field": "latitude", "message": "must be between -90 and 90", "value": self.latitude})
        if not -180.0 <= self.longitude <= 180.0:
            errors.append({"field": "longitude", "message": "must be between -180 and 180", "value": self.longitude})
        if self.radius is not None and not config.MIN_RADIUS_M <= self.radius <= config.MAX_RADIUS_M:
            errors.append(
                {
                    "field": "radius",
                    "message": f"must be between {config.MIN_RADIUS_M} and {config.MAX_RADIUS_M}",
                    "value": self.radius,
                }
            )
        if self.limit is not None and not config.MIN_LIMIT <= self.limit <= config.MAX_LIMIT:
            errors.append(
                {
                    "field": "limit",
                    "message": f"must be between {config.MIN_LIMIT} and {config.MAX_LIMIT}",
                    "value": self.limit,
                }
            )
        if self.mood is not None and self.mood not in MOODS:
            errors.append({"field": "mood", "message": f"must be one of {', '.join(MOODS)}", "value": self.mood})
        if errors:
            raise ValidationError("Invalid search request", errors)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchRequest":
        """Build and validate a request from loosely-typed input."""
        errors: List[Dict[str, Any]] = []

        def number(name: str, cast, required: bool = False):
            raw = data.get(name)
            if raw is None:
                if required:
                    errors.append({"field": name, "message": "is required"})
                return None
            if isinstance(raw, bool):
                errors.append({"field": name, "message": "must be a number", "value": raw})
                return None
            try:
                return cast(raw)
            except (TypeError, ValueError):
                errors.append({"field": name, "message": "must be a number", "value": raw})
                return None

        lat = number("latitude", float, required=True)
        lon = number("longitude", float, required=True)
        radius = number("radius", int)
        limit = number("limit", int)

        categories: Optional[List[POICategory]] = None
        raw_categories = data.get("categories")
        if raw_categories is not None:
            if isinstance(raw_categories, str) or not isinstance(raw_categories, (list, tuple)):
                errors.append({"field": "categories", "message": "must be a list", "value": raw_categories})
            else:
                categories = []
                for raw in raw_categories:
                    try:
                        categories.append(parse_category(raw))
                    except ValueError:
                        errors.append({"field": "categories", "message": "unknown category", "value": raw})

        exclude_chains = data.get("excludeChains", data.get("exclude_chains", False))
        if not isinstance(exclude_chains, bool):
            errors.append({"field": "excludeChains", "message": "must be a boolean", "value": exclude_chains})
            exclude_chains = False

        if errors:
            raise ValidationError("Invalid search request", errors)

        request = cls(
            latitude=lat,
            longitude=lon,
            radius=radius,
            categories=categories,
            mood=data.get("mood"),
            limit=limit,
            exclude_chains=exclude_chains,
        )
        return request.validate()

    def normalized(
        self,
        default_radius: int = config.DEFAULT_RADIUS_M,
        max_radius: int = config.MAX_RADIUS_M,
        default_limit: int = config.DEFAULT_LIMIT,
    ) -> "SearchRequest":
        """Return a copy with every optional field filled in.

        Radius is clamped to [0, max_radius]. Categories come from the mood
        table when none are given, and from the whole taxonomy when there is
        no mood either.
        """
        radius = self.radius if self.radius is not None else default_radius
        radius = max(0, min(int(radius), int(max_radius)))
        categories = list(self.categories) if self.categories else categories_for_mood(self.mood)
        if not categories:
            categories = all_categories()
        return SearchRequest(
            latitude=self.latitude,
            longitude=self.longitude,
            radius=radius,
            categories=categories,
            mood=self.mood or DEFAULT_MOOD,
            limit=self.limit if self.limit is not None else default_limit,
            exclude_chains=bool(self.exclude_chains),
        )

    def category_values(self) -> List[str]:
        return [c.value for c in (self.categories or [])]


@dataclass
class ResponseMetadata:
    provider: str
    response_time_ms: int = 0
    total_results: int = 0
    search_radius: int = 0
    categories_searched: List[str] = field(default_factory=list)
    cached: bool = False
    osm_places: Optional[int] = None
    google_enrichments: Optional[int] = None
    cost: Optional[Dict[str, Any]] = None
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "provider": self.provider,
            "responseTime": self.response_time_ms,
            "totalResults": self.total_results,
            "searchRadius": self.search_radius,
            "categoriesSearched": list(self.categories_searched),
            "cached": self.cached,
        }
        if self.osm_places is not None:
            out["osmPlaces"] = self.osm_places
        if self.google_enrichments is not None:
            out["googleEnrichments"] = self.google_enrichments
        if self.cost is not None:
            out["costOptimization"] = dict(self.cost)
        if self.fallback_reason:
            out["fallbackReason"] = self.fallback_reason
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseMetadata":
        return cls(
            provider=str(data.get("provider") or ""),
            response_time_ms=int(data.get("responseTime") or 0),
            total_results=int(data.get("totalResults") or 0),
            search_radius=int(data.get("searchRadius") or 0),
            categories_searched=list(data.get("categoriesSearched") or []),
            cached=bool(data.get("cached", False)),
            osm_places=data.get("osmPlaces"),
            google_enrichments=data.get("googleEnrichments"),
            cost=dict(data["costOptimization"]) if data.get("costOptimization") else None,
            fallback_reason=data.get("fallbackReason"),
        )


@dataclass
class SearchResponse:
    places: List[Place]
    metadata: ResponseMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "places": [p.to_dict() for p in self.places],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchResponse":
        return cls(
            places=[Place.from_dict(p) for p in data.get("places") or []],
            metadata=ResponseMetadata.from_dict(data.get("metadata") or {}),
        )
