"""Matching and merging of OSM and Google places."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Set

from rapidfuzz.distance import Levenshtein

from .categories import categories_compatible
from .config import MergeConfig
from .geo import haversine_m
from .models import Contact, MergeCandidate, Place, PlaceMetadata, utc_now
from .scoring import quality_score

logger = logging.getLogger(__name__)


def levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def name_similarity(name1: str, name2: str) -> float:
    """Similarity in [0, 1] of two place names, case-insensitive."""
    a = (name1 or "").lower().strip()
    b = (name2 or "").lower().strip()
    # Two empty names count as an exact match; unnamed elements never get here.
    if a == b:
        return 1.0
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))
    longest = max(len(a), len(b))
    return 1.0 - levenshtein(a, b) / longest


def merge_confidence(
    distance_m: float,
    similarity: float,
    category_match: bool,
    merge_config: MergeConfig,
) -> float:
    distance_score = max(0.0, 1.0 - distance_m / merge_config.proximity_threshold_m)
    category_score = 1.0 if category_match else merge_config.category_mismatch_score
    return (
        distance_score * merge_config.distance_weight
        + similarity * merge_config.name_weight
        + category_score * merge_config.category_weight
    )


def find_best_match(
    osm_place: Place,
    google_places: Sequence[Place],
    merge_config: MergeConfig,
) -> Optional[MergeCandidate]:
    best: Optional[MergeCandidate] = None
    for google_place in google_places:
        distance = haversine_m(
            osm_place.latitude, osm_place.longitude, google_place.latitude, google_place.longitude
        )
        if distance > merge_config.proximity_threshold_m:
            continue
        similarity = name_similarity(osm_place.name, google_place.name)
        confidence = merge_confidence(
            distance,
            similarity,
            categories_compatible(osm_place.category, google_place.category),
            merge_config,
        )
        # Strictly greater: the first candidate wins exact ties.
        if best is None or confidence > best.confidence:
            best = MergeCandidate(
                osm_place=osm_place,
                google_place=google_place,
                distance=distance,
                name_similarity=similarity,
                confidence=confidence,
            )
    return best


def choose_name(osm_name: str, google_name: str) -> str:
    if len(google_name) > len(osm_name) and osm_name in google_name:
        return google_name
    if len(osm_name) > len(google_name) and google_name in osm_name:
        return osm_name
    return osm_name


def merge_contact(osm: Optional[Contact], google: Optional[Contact]) -> Optional[Contact]:
    osm = osm or Contact()
    google = google or Contact()
    contact = Contact(
        phone=google.phone or osm.phone,
        website=google.website or osm.website,
        email=google.email or osm.email,
    )
    return None if contact.is_empty() else contact


def build_merged_place(osm_place: Place, google_place: Place) -> Place:
    """Combine a matched pair, keeping OSM identity and location."""
    osm_meta = osm_place.metadata
    google_meta = google_place.metadata

    features: List[str] = []
    for feature in list(osm_meta.features) + list(google_meta.features):
        if feature not in features:
            features.append(feature)

    # A pending review status survives a merge; anything else becomes "merged".
    merge_status = "pending" if osm_meta.merge_status == "pending" else "merged"

    metadata = PlaceMetadata(
        source="merged",
        external_id=osm_meta.external_id,
        last_updated=utc_now(),
        verified=True,
        osm=osm_meta.osm,
        google=google_meta.google,
        contact=merge_contact(osm_meta.contact, google_meta.contact),
        hours=dict(google_meta.hours or osm_meta.hours or {}) or None,
        features=features,
        merge_status=merge_status,
        ai_context=osm_meta.ai_context,
    )
    return Place(
        id=osm_place.id,
        name=choose_name(osm_place.name, google_place.name),
        category=osm_place.category,
        subcategory=osm_place.subcategory,
        latitude=osm_place.latitude,
        longitude=osm_place.longitude,
        distance=osm_place.distance,
        address=google_place.address or osm_place.address,
        description=osm_place.description or google_place.description,
        metadata=metadata,
    )


def _with_status(place: Place, source: str, merge_status: str) -> Place:
    return replace(place, metadata=replace(place.metadata, source=source, merge_status=merge_status))


@dataclass
class MergeResult:
    places: List[Place]
    merged_count: int = 0
    google_enrichments: int = 0
    candidates: List[MergeCandidate] = field(default_factory=list)


class MergeEngine:
    def __init__(self, merge_config: Optional[MergeConfig] = None) -> None:
        self.config = merge_config or MergeConfig()

    def merge(
        self,
        osm_places: Sequence[Place],
        google_places: Sequence[Place],
        limit: int,
        min_reviews: int = 0,
    ) -> MergeResult:
        """Merge two result lists into one ranked list of at most `limit` places.

        Every OSM place is matched against the full Google list, so one Google
        place can enrich several OSM records of the same venue. Google places
        that merged nowhere are appended as google-only, except those with a
        known review count below `min_reviews`.
        """
        logger.info("Merging %s OSM places with %s Google places", len(osm_places), len(google_places))
        results: List[Place] = []
        candidates: List[MergeCandidate] = []
        used: Set[str] = set()
        merged_count = 0
        google_enrichments = 0

        for osm_place in osm_places:
            match = find_best_match(osm_place, google_places, self.config)
            if match is not None and match.confidence > self.config.merge_confidence_threshold:
                logger.debug(
                    "Merging %r with %r (confidence %.2f)",
                    osm_place.name,
                    match.google_place.name,
                    match.confidence,
                )
                results.append(build_merged_place(osm_place, match.google_place))
                candidates.append(match)
                used.add(match.google_place.id)
                merged_count += 1
                google_enrichments += 1
            else:
                results.append(_with_status(osm_place, "osm", "osm-only"))

        for google_place in google_places:
            if google_place.id in used:
                continue
            reviews = google_place.metadata.review_count
            if reviews is not None and reviews < min_reviews:
                continue
            results.append(_with_status(google_place, "google", "google-only"))
            google_enrichments += 1

        # sorted() is stable, so equal scores keep insertion order.
        ranked = sorted(results, key=lambda p: quality_score(p, self.config), reverse=True)
        logger.info("Merged %s places, %s Google enrichments", merged_count, google_enrichments)
        return MergeResult(
            places=ranked[:limit],
            merged_count=merged_count,
            google_enrichments=google_enrichments,
            candidates=candidates,
        )
