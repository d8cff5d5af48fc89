import pytest

from placemerge.categories import (
    POICategory,
    categories_compatible,
    categories_for_mood,
    category_from_google_types,
    category_from_osm_tags,
    coerce_category,
    google_types_for,
    osm_subcategory,
    parse_category,
)


@pytest.mark.parametrize(
    "tags, expected",
    [
        ({"amenity": "cafe"}, POICategory.CAFE),
        ({"tourism": "museum"}, POICategory.MUSEUM),
        ({"historic": "castle"}, POICategory.CASTLE),
        ({"amenity": "biergarten"}, POICategory.ATTRACTION),
        ({"tourism": "hotel"}, POICategory.ATTRACTION),
        ({"leisure": "playground"}, POICategory.PARK),
        ({"shop": "bakery"}, POICategory.SHOP),
        ({"building": "yes"}, POICategory.ATTRACTION),
    ],
)
def test_category_from_osm_tags(tags, expected):
    assert category_from_osm_tags(tags) == expected


def test_osm_subcategory_prefers_amenity():
    assert osm_subcategory({"shop": "books", "amenity": "cafe"}) == "cafe"
    assert osm_subcategory({"historic": "ruins"}) == "ruins"
    assert osm_subcategory({"name": "x"}) == "unknown"


def test_google_types_mapping():
    assert google_types_for([POICategory.RESTAURANT, POICategory.FAST_FOOD]) == [
        "restaurant",
        "meal_takeaway",
        "meal_delivery",
    ]
    assert google_types_for([POICategory.TOILETS]) == ["point_of_interest"]
    assert category_from_google_types(["point_of_interest", "cafe"]) == POICategory.CAFE
    assert category_from_google_types([]) == POICategory.ATTRACTION


def test_compatibility_table():
    assert categories_compatible(POICategory.RESTAURANT, POICategory.FAST_FOOD)
    assert categories_compatible(POICategory.CAFE, POICategory.RESTAURANT)
    assert not categories_compatible(POICategory.CAFE, POICategory.FAST_FOOD)
    assert categories_compatible(POICategory.BAR, POICategory.NIGHTCLUB)
    assert categories_compatible(POICategory.MUSEUM, POICategory.MUSEUM)
    assert not categories_compatible(POICategory.MUSEUM, POICategory.GALLERY)


def test_parse_and_coerce_category():
    assert parse_category(" Cafe ") == POICategory.CAFE
    with pytest.raises(ValueError):
        parse_category("spaceport")
    assert coerce_category("spaceport") == POICategory.ATTRACTION
    assert coerce_category(None) == POICategory.ATTRACTION


def test_mood_categories():
    assert POICategory.MUSEUM in categories_for_mood("curious")
    assert categories_for_mood(None) == []
    assert categories_for_mood("sleepy") == []
