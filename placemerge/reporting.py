"""Output reporting helpers."""
from __future__ import annotations

import csv
import json
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO

from .models import Place, SearchResponse

PLACE_CSV_FIELDS = [
    "id",
    "name",
    "category",
    "subcategory",
    "lat",
    "lon",
    "distance_m",
    "address",
    "source",
    "merge_status",
    "rating",
    "review_count",
    "price_level",
    "osm_id",
    "google_place_id",
    "phone",
    "website",
    "features",
]


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_text(path: str, text: str) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        f.write(text)


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def build_place_row(place: Place) -> Dict[str, Any]:
    meta = place.metadata
    contact = meta.contact
    return {
        "id": place.id,
        "name": place.name,
        "category": place.category.value,
        "subcategory": place.subcategory,
        "lat": place.latitude,
        "lon": place.longitude,
        "distance_m": round(place.distance, 1),
        "address": place.address or "",
        "source": meta.source,
        "merge_status": meta.merge_status or "",
        "rating": meta.rating if meta.rating is not None else "",
        "review_count": meta.review_count if meta.review_count is not None else "",
        "price_level": meta.google.price_level if meta.google and meta.google.price_level is not None else "",
        "osm_id": meta.osm.id if meta.osm else "",
        "google_place_id": meta.google.place_id if meta.google else "",
        "phone": contact.phone or "" if contact else "",
        "website": contact.website or "" if contact else "",
        "features": json.dumps(list(meta.features), ensure_ascii=False),
    }


def write_places_csv(path: str, places: Iterable[Place]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=PLACE_CSV_FIELDS)
        writer.writeheader()
        for place in places:
            writer.writerow(build_place_row(place))


def render_search_summary(response: SearchResponse) -> List[str]:
    meta = response.metadata
    lines = [
        f"provider: {meta.provider}",
        f"results: {meta.total_results}",
        f"radius_m: {meta.search_radius}",
        f"categories: {', '.join(meta.categories_searched) or 'all'}",
        f"cached: {meta.cached}",
        f"response_time_ms: {meta.response_time_ms}",
    ]
    if meta.osm_places is not None:
        lines.append(f"osm_places: {meta.osm_places}")
    if meta.google_enrichments is not None:
        lines.append(f"google_enrichments: {meta.google_enrichments}")
    if meta.cost:
        lines.append(
            "google_calls: {actual}/{maximum} (savings {savings})".format(
                actual=meta.cost.get("actual_google_calls"),
                maximum=meta.cost.get("max_google_calls"),
                savings=meta.cost.get("cost_savings"),
            )
        )
    if meta.fallback_reason:
        lines.append(f"fallback_reason: {meta.fallback_reason}")
    for idx, place in enumerate(response.places, start=1):
        rating = place.metadata.rating
        rating_text = f" {rating:.1f}*" if rating is not None else ""
        lines.append(
            f"{idx:>3}. {place.name} [{place.category.value}] {place.distance:.0f} m"
            f"{rating_text} ({place.metadata.merge_status or place.metadata.source})"
        )
    return lines


def write_summary(path: str, summary_lines: List[str]) -> None:
    atomic_write_text(path, "\n".join(summary_lines))
