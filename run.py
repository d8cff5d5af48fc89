"""CLI entrypoint."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv as _load_dotenv

from placemerge import config
from placemerge.categories import MOODS, POICategory
from placemerge.config import LocationServiceConfig, load_tuning_config
from placemerge.errors import ConfigurationError, LocationError, PersistenceError, ValidationError
from placemerge.providers import build_provider
from placemerge.reporting import (
    ensure_dir,
    render_search_summary,
    write_json_object,
    write_places_csv,
    write_summary,
)
from placemerge.service import LocationService
from placemerge.store import LocationStore


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def _env_len(name: str) -> int:
    return len((os.environ.get(name) or "").strip())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Search nearby places across OSM and Google Places")
    parser.add_argument("--preflight", action="store_true", help="Run offline configuration checks only")
    parser.add_argument("--provider", choices=list(config.PROVIDER_NAMES), default=None)
    parser.add_argument("--db-path", type=str, default=None, help="Location store path")
    parser.add_argument("--tuning-config", type=str, default=None, help="JSON file with merge/enrichment overrides")
    sub = parser.add_subparsers(dest="command")

    search = sub.add_parser("search", help="Search places near a point")
    search.add_argument("--lat", type=float, required=True)
    search.add_argument("--lon", type=float, required=True)
    search.add_argument("--radius", type=int, default=None, help="Search radius in meters")
    search.add_argument(
        "--category",
        dest="categories",
        action="append",
        choices=[c.value for c in POICategory],
        default=None,
        help="Repeat for several categories",
    )
    search.add_argument("--mood", choices=list(MOODS), default=None)
    search.add_argument("--limit", type=int, default=None)
    search.add_argument("--exclude-chains", action="store_true")
    search.add_argument("--no-cache", action="store_true")
    search.add_argument("--out", type=str, default=config.OUTPUT_DIR)
    search.add_argument("--csv", action="store_true", help="Also write results.csv")

    details = sub.add_parser("details", help="Show one place by id")
    details.add_argument("place_id")

    stale = sub.add_parser("stale", help="Refresh stored places older than --hours")
    stale.add_argument("--hours", type=float, default=config.STALE_AFTER_HOURS)
    stale.add_argument("--source", choices=["osm", "google", "merged"], default=None)
    stale.add_argument("--max", dest="max_records", type=int, default=config.STALE_REFRESH_MAX)

    args = parser.parse_args(argv)
    if not args.preflight and not args.command:
        parser.error("a command is required (search, details, stale) unless --preflight is given")
    return args


def build_config(args: argparse.Namespace) -> LocationServiceConfig:
    service_config = load_tuning_config(LocationServiceConfig.from_env(), args.tuning_config)
    overrides = {}
    if args.provider:
        overrides["provider"] = args.provider
    if args.db_path:
        overrides["db_path"] = args.db_path
    if getattr(args, "no_cache", False):
        overrides["enable_caching"] = False
    if overrides:
        service_config = replace(service_config, **overrides)
    return service_config


def build_service(service_config: LocationServiceConfig) -> LocationService:
    return LocationService.from_config(service_config)


def run_preflight(service_config: LocationServiceConfig) -> int:
    ok = True

    print(f"Provider: {service_config.provider}")
    key_len = _env_len("GOOGLE_PLACES_API_KEY")
    if key_len:
        print(f"GOOGLE_PLACES_API_KEY: OK (length {key_len})")
    elif service_config.provider == "google":
        print("GOOGLE_PLACES_API_KEY: MISSING (required for the google provider)")
        ok = False
    else:
        print("GOOGLE_PLACES_API_KEY: MISSING (hybrid runs OSM-only)")

    try:
        provider = build_provider(service_config.provider, service_config)
    except ConfigurationError as exc:
        print(f"Provider config: FAIL ({exc})")
        ok = False
    else:
        valid = provider.validate_config()
        print("Provider config: OK" if valid else "Provider config: FAIL")
        ok = ok and valid
        provider.close()

    try:
        store = LocationStore(service_config.db_path)
    except PersistenceError as exc:
        print(f"Location store: FAIL ({exc})")
        ok = False
    else:
        print(f"Location store: OK ({service_config.db_path}, {store.count()} places)")
        store.close()

    print(
        "Limits: max_radius={radius}, max_paid_calls={calls}, cache_ttl={ttl}s".format(
            radius=service_config.max_radius,
            calls=service_config.enrichment.max_paid_calls,
            ttl=service_config.cache_ttl_seconds,
        )
    )
    print("Preflight: PASS" if ok else "Preflight: FAIL")
    return 0 if ok else 1


def run_search(service: LocationService, args: argparse.Namespace) -> int:
    request = {
        "latitude": args.lat,
        "longitude": args.lon,
        "radius": args.radius,
        "categories": args.categories,
        "mood": args.mood,
        "limit": args.limit,
        "excludeChains": args.exclude_chains,
    }
    response = service.search_nearby(request)
    service.wait_for_background()

    ensure_dir(args.out)
    json_path = os.path.join(args.out, "results.json")
    write_json_object(json_path, response.to_dict())
    if args.csv:
        write_places_csv(os.path.join(args.out, "results.csv"), response.places)
    summary = render_search_summary(response)
    write_summary(os.path.join(args.out, "summary.txt"), summary)
    for line in summary:
        print(line)
    print(f"Done. Results written to {json_path}")
    return 0


def run_details(service: LocationService, place_id: str) -> int:
    place = service.get_place_details(place_id)
    if place is None:
        print(f"Place not found: {place_id}", file=sys.stderr)
        return 1
    print(json.dumps(place.to_dict(), ensure_ascii=False, indent=2))
    return 0


def run_stale(service: LocationService, args: argparse.Namespace) -> int:
    refreshed = service.refresh_stale_locations(
        older_than_hours=args.hours, provider=args.source, max_records=args.max_records
    )
    print(f"Refreshed {refreshed} stale places")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        service_config = build_config(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    if args.preflight:
        return run_preflight(service_config)

    try:
        with build_service(service_config) as service:
            if args.command == "search":
                return run_search(service, args)
            if args.command == "details":
                return run_details(service, args.place_id)
            return run_stale(service, args)
    except ValidationError as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        for detail in exc.details:
            print(f"- {detail.get('field')}: {detail.get('message')}", file=sys.stderr)
        return 2
    except LocationError as exc:
        print(f"Error ({exc.status_code}): {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
