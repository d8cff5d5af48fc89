"""Gating of paid Google enrichment calls."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .categories import POICategory, coerce_category
from .config import DEFAULT_RADIUS_M, EnrichmentConfig
from .models import SearchRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentDecision:
    enabled: bool
    reason: str
    categories: List[POICategory]
    max_results: int


class EnrichmentPolicy:
    def __init__(self, enrichment_config: Optional[EnrichmentConfig] = None) -> None:
        self.config = enrichment_config or EnrichmentConfig()

    def decide(self, request: SearchRequest) -> EnrichmentDecision:
        radius = request.radius if request.radius is not None else DEFAULT_RADIUS_M
        requested = list(request.categories or [])

        if radius > self.config.max_radius_m:
            logger.info("Skipping Google enrichment: radius %s exceeds %s", radius, self.config.max_radius_m)
            return EnrichmentDecision(False, "radius_too_large", [], 0)

        if request.mood in self.config.skip_moods_without_restaurant and POICategory.RESTAURANT not in requested:
            logger.info("Skipping Google enrichment: %s search without restaurants", request.mood)
            return EnrichmentDecision(False, "mood_without_restaurant", [], 0)

        allowed = {coerce_category(c) for c in self.config.cost_effective_categories}
        categories = [c for c in requested if c in allowed]
        if not categories:
            categories = [coerce_category(c) for c in self.config.default_categories]
        return EnrichmentDecision(True, "enabled", categories, self.config.max_paid_calls)

    def cost_report(self, actual_google_calls: int) -> Dict[str, Any]:
        max_calls = self.config.max_paid_calls
        if max_calls > 0:
            savings = round((max_calls - actual_google_calls) / max_calls * 100)
        else:
            savings = 0
        return {
            "max_google_calls": max_calls,
            "actual_google_calls": actual_google_calls,
            "cost_savings": f"{savings}%",
        }
