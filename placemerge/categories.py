"""POI taxonomy and the lookup tables that map providers onto it.

Every place that leaves an adapter carries a `POICategory`. Unknown tags and
types never produce None: they resolve to DEFAULT_CATEGORY.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple


class POICategory(str, Enum):
    # Food & dining
    RESTAURANT = "restaurant"
    CAFE = "cafe"
    BAR = "bar"
    FAST_FOOD = "fast_food"
    ICE_CREAM = "ice_cream"
    MARKETPLACE = "marketplace"

    # Culture & attractions
    MUSEUM = "museum"
    GALLERY = "gallery"
    ATTRACTION = "attraction"
    MONUMENT = "monument"
    CASTLE = "castle"
    THEATRE = "theatre"
    CINEMA = "cinema"
    LIBRARY = "library"

    # Activities & recreation
    PARK = "park"
    FITNESS_CENTRE = "fitness_centre"
    SWIMMING_POOL = "swimming_pool"
    SPORTS_CENTRE = "sports_centre"
    GOLF_COURSE = "golf_course"
    MARINA = "marina"
    BEACH = "beach"
    VIEWPOINT = "viewpoint"

    # Wellness
    SPA = "spa"
    GARDEN = "garden"
    NATURE_RESERVE = "nature_reserve"

    # Shopping
    SHOP = "shop"
    MALL = "mall"
    MARKET = "market"
    DEPARTMENT_STORE = "department_store"

    # Essential services
    BANK = "bank"
    ATM = "atm"
    PHARMACY = "pharmacy"
    HOSPITAL = "hospital"
    TOILETS = "toilets"
    FUEL = "fuel"
    POST_OFFICE = "post_office"

    # Nightlife
    PUB = "pub"
    NIGHTCLUB = "nightclub"
    CASINO = "casino"

    # Transportation
    BUS_STATION = "bus_station"
    SUBWAY = "subway"
    TAXI = "taxi"
    CAR_RENTAL = "car_rental"
    PARKING = "parking"


DEFAULT_CATEGORY = POICategory.ATTRACTION

MOODS: Tuple[str, ...] = ("energetic", "relaxed", "curious", "hungry", "cultural")
DEFAULT_MOOD = "curious"

# --- OSM tag filters (key, value) per category ---

OSM_TAGS: Dict[POICategory, List[Tuple[str, str]]] = {
    POICategory.RESTAURANT: [("amenity", "restaurant")],
    POICategory.CAFE: [("amenity", "cafe")],
    POICategory.BAR: [("amenity", "bar")],
    POICategory.FAST_FOOD: [("amenity", "fast_food")],
    POICategory.ICE_CREAM: [("amenity", "ice_cream")],
    POICategory.MARKETPLACE: [("amenity", "marketplace")],
    POICategory.MUSEUM: [("tourism", "museum")],
    POICategory.GALLERY: [("tourism", "gallery")],
    POICategory.ATTRACTION: [("tourism", "attraction")],
    POICategory.MONUMENT: [("historic", "monument")],
    POICategory.CASTLE: [("historic", "castle")],
    POICategory.THEATRE: [("amenity", "theatre")],
    POICategory.CINEMA: [("amenity", "cinema")],
    POICategory.LIBRARY: [("amenity", "library")],
    POICategory.PARK: [("leisure", "park")],
    POICategory.FITNESS_CENTRE: [("leisure", "fitness_centre")],
    POICategory.SWIMMING_POOL: [("leisure", "swimming_pool")],
    POICategory.SPORTS_CENTRE: [("leisure", "sports_centre")],
    POICategory.GOLF_COURSE: [("leisure", "golf_course")],
    POICategory.MARINA: [("leisure", "marina")],
    POICategory.BEACH: [("natural", "beach")],
    POICategory.VIEWPOINT: [("tourism", "viewpoint")],
    POICategory.SPA: [("leisure", "spa")],
    POICategory.GARDEN: [("leisure", "garden")],
    POICategory.NATURE_RESERVE: [("leisure", "nature_reserve")],
    POICategory.SHOP: [
        ("shop", "clothes"),
        ("shop", "books"),
        ("shop", "electronics"),
        ("shop", "jewelry"),
    ],
    POICategory.MALL: [("shop", "mall")],
    POICategory.MARKET: [("amenity", "marketplace")],
    POICategory.DEPARTMENT_STORE: [("shop", "department_store")],
    POICategory.BANK: [("amenity", "bank")],
    POICategory.ATM: [("amenity", "atm")],
    POICategory.PHARMACY: [("amenity", "pharmacy")],
    POICategory.HOSPITAL: [("amenity", "hospital")],
    POICategory.TOILETS: [("amenity", "toilets")],
    POICategory.FUEL: [("amenity", "fuel")],
    POICategory.POST_OFFICE: [("amenity", "post_office")],
    POICategory.PUB: [("amenity", "pub")],
    POICategory.NIGHTCLUB: [("amenity", "nightclub")],
    POICategory.CASINO: [("amenity", "casino")],
    POICategory.BUS_STATION: [("amenity", "bus_station")],
    POICategory.SUBWAY: [("railway", "subway_entrance")],
    POICategory.TAXI: [("amenity", "taxi")],
    POICategory.CAR_RENTAL: [("amenity", "car_rental")],
    POICategory.PARKING: [("amenity", "parking")],
}

# Coarse fallbacks for amenity values that have no exact table entry.
OSM_AMENITY_FALLBACK: Dict[str, POICategory] = {
    "restaurant": POICategory.RESTAURANT,
    "cafe": POICategory.RESTAURANT,
    "bar": POICategory.RESTAURANT,
    "pub": POICategory.RESTAURANT,
    "pharmacy": POICategory.PHARMACY,
    "bank": POICategory.BANK,
    "atm": POICategory.ATM,
}

OSM_SUBCATEGORY_KEYS = ("amenity", "tourism", "leisure", "shop", "historic")

# --- Google Places types ---

GOOGLE_TYPE_TO_CATEGORY: Dict[str, POICategory] = {
    "restaurant": POICategory.RESTAURANT,
    "meal_takeaway": POICategory.FAST_FOOD,
    "meal_delivery": POICategory.FAST_FOOD,
    "cafe": POICategory.CAFE,
    "bar": POICategory.BAR,
    "night_club": POICategory.NIGHTCLUB,
    "museum": POICategory.MUSEUM,
    "art_gallery": POICategory.GALLERY,
    "tourist_attraction": POICategory.ATTRACTION,
    "amusement_park": POICategory.ATTRACTION,
    "zoo": POICategory.ATTRACTION,
    "movie_theater": POICategory.CINEMA,
    "library": POICategory.LIBRARY,
    "park": POICategory.PARK,
    "gym": POICategory.FITNESS_CENTRE,
    "spa": POICategory.SPA,
    "golf_course": POICategory.GOLF_COURSE,
    "marina": POICategory.MARINA,
    "shopping_mall": POICategory.MALL,
    "department_store": POICategory.DEPARTMENT_STORE,
    "clothing_store": POICategory.SHOP,
    "book_store": POICategory.SHOP,
    "electronics_store": POICategory.SHOP,
    "bank": POICategory.BANK,
    "atm": POICategory.ATM,
    "pharmacy": POICategory.PHARMACY,
    "hospital": POICategory.HOSPITAL,
    "gas_station": POICategory.FUEL,
    "post_office": POICategory.POST_OFFICE,
    "bus_station": POICategory.BUS_STATION,
    "subway_station": POICategory.SUBWAY,
    "taxi_stand": POICategory.TAXI,
    "car_rental": POICategory.CAR_RENTAL,
    "parking": POICategory.PARKING,
}

CATEGORY_TO_GOOGLE_TYPES: Dict[POICategory, List[str]] = {
    POICategory.RESTAURANT: ["restaurant", "meal_takeaway"],
    POICategory.CAFE: ["cafe"],
    POICategory.BAR: ["bar"],
    POICategory.FAST_FOOD: ["meal_takeaway", "meal_delivery"],
    POICategory.MUSEUM: ["museum"],
    POICategory.GALLERY: ["art_gallery"],
    POICategory.ATTRACTION: ["tourist_attraction", "amusement_park", "zoo"],
    POICategory.PARK: ["park"],
    POICategory.FITNESS_CENTRE: ["gym"],
    POICategory.SPA: ["spa"],
    POICategory.SHOP: ["clothing_store", "book_store", "electronics_store"],
    POICategory.MALL: ["shopping_mall"],
    POICategory.BANK: ["bank"],
    POICategory.ATM: ["atm"],
    POICategory.PHARMACY: ["pharmacy"],
    POICategory.HOSPITAL: ["hospital"],
    POICategory.FUEL: ["gas_station"],
}

GOOGLE_FALLBACK_TYPE = "point_of_interest"

# --- Moods ---

MOOD_CATEGORIES: Dict[str, List[POICategory]] = {
    "energetic": [
        POICategory.PARK, POICategory.FITNESS_CENTRE, POICategory.SWIMMING_POOL,
        POICategory.SPORTS_CENTRE, POICategory.BEACH, POICategory.VIEWPOINT,
        POICategory.RESTAURANT, POICategory.CAFE, POICategory.ATM, POICategory.TOILETS,
    ],
    "relaxed": [
        POICategory.SPA, POICategory.PARK, POICategory.GARDEN, POICategory.NATURE_RESERVE,
        POICategory.CAFE, POICategory.LIBRARY, POICategory.BEACH,
        POICategory.PHARMACY, POICategory.TOILETS,
    ],
    "curious": [
        POICategory.MUSEUM, POICategory.GALLERY, POICategory.ATTRACTION, POICategory.MONUMENT,
        POICategory.CASTLE, POICategory.LIBRARY, POICategory.VIEWPOINT,
        POICategory.CAFE, POICategory.RESTAURANT, POICategory.ATM, POICategory.TOILETS,
    ],
    "hungry": [
        POICategory.RESTAURANT, POICategory.CAFE, POICategory.FAST_FOOD, POICategory.ICE_CREAM,
        POICategory.MARKETPLACE, POICategory.MARKET,
        POICategory.ATM, POICategory.TOILETS,
    ],
    "cultural": [
        POICategory.MUSEUM, POICategory.GALLERY, POICategory.THEATRE, POICategory.CINEMA,
        POICategory.MONUMENT, POICategory.CASTLE, POICategory.LIBRARY,
        POICategory.RESTAURANT, POICategory.CAFE, POICategory.SHOP,
        POICategory.ATM, POICategory.TOILETS,
    ],
}

# --- Cross-source compatibility used by the merge engine ---

COMPATIBLE_CATEGORIES: Dict[POICategory, Tuple[POICategory, ...]] = {
    POICategory.RESTAURANT: (POICategory.RESTAURANT, POICategory.FAST_FOOD, POICategory.CAFE),
    POICategory.CAFE: (POICategory.CAFE, POICategory.RESTAURANT),
    POICategory.BAR: (POICategory.BAR, POICategory.PUB, POICategory.NIGHTCLUB),
}


def all_categories() -> List[POICategory]:
    return list(POICategory)


def coerce_category(value: Optional[str]) -> POICategory:
    """Resolve any string onto the taxonomy, falling back to DEFAULT_CATEGORY."""
    if isinstance(value, POICategory):
        return value
    if not value:
        return DEFAULT_CATEGORY
    try:
        return POICategory(str(value).strip().lower())
    except ValueError:
        return DEFAULT_CATEGORY


def parse_category(value: str) -> POICategory:
    """Strict lookup for request input; raise on unknown values."""
    try:
        return POICategory(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown category: {value}") from None


def categories_for_mood(mood: Optional[str]) -> List[POICategory]:
    if not mood:
        return []
    return list(MOOD_CATEGORIES.get(mood, []))


def categories_compatible(osm_category: POICategory, google_category: POICategory) -> bool:
    compatible = COMPATIBLE_CATEGORIES.get(osm_category)
    if compatible is None:
        return osm_category == google_category
    return google_category in compatible


def google_types_for(categories: List[POICategory]) -> List[str]:
    types: List[str] = []
    for category in categories:
        for google_type in CATEGORY_TO_GOOGLE_TYPES.get(category, []):
            if google_type not in types:
                types.append(google_type)
    return types or [GOOGLE_FALLBACK_TYPE]


def category_from_google_types(types: List[str]) -> POICategory:
    for google_type in types or []:
        category = GOOGLE_TYPE_TO_CATEGORY.get(google_type)
        if category is not None:
            return category
    return DEFAULT_CATEGORY


def category_from_osm_tags(tags: Dict[str, str]) -> POICategory:
    for category, filters in OSM_TAGS.items():
        for key, value in filters:
            if tags.get(key) == value:
                return category

    amenity = tags.get("amenity")
    if amenity:
        return OSM_AMENITY_FALLBACK.get(amenity, DEFAULT_CATEGORY)
    if tags.get("tourism"):
        return POICategory.ATTRACTION
    if tags.get("leisure"):
        return POICategory.PARK
    if tags.get("shop"):
        return POICategory.SHOP
    return DEFAULT_CATEGORY


def osm_subcategory(tags: Dict[str, str]) -> str:
    for key in OSM_SUBCATEGORY_KEYS:
        value = tags.get(key)
        if value:
            return value
    return "unknown"
