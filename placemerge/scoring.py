"""Quality scoring for merged search results."""
from __future__ import annotations

from typing import Optional

from .config import MergeConfig
from .models import Place

BASE_SCORE = 0.5
RATING_WEIGHT = 0.3
REVIEW_WEIGHT_CAP = 0.2
MERGED_BONUS = 0.1
TAG_RICHNESS_BONUS = 0.1


def rating_component(rating: Optional[float]) -> float:
    if not rating:
        return 0.0
    return (rating / 5.0) * RATING_WEIGHT


def review_component(review_count: Optional[int]) -> float:
    if not review_count:
        return 0.0
    return min(review_count / 100.0, REVIEW_WEIGHT_CAP)


def quality_score(place: Place, merge_config: Optional[MergeConfig] = None) -> float:
    """Score in [0, 1]: rating, review volume, merge and OSM tag richness bonuses."""
    merge_config = merge_config or MergeConfig()
    meta = place.metadata
    score = BASE_SCORE
    score += rating_component(meta.rating)
    score += review_component(meta.review_count)
    if meta.source == "merged":
        score += MERGED_BONUS
    if meta.osm is not None and len(meta.osm.tags) > merge_config.tag_richness_threshold:
        score += TAG_RICHNESS_BONUS
    return max(0.0, min(1.0, score))
