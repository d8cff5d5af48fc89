import json

import pytest

from placemerge import config
from placemerge.categories import POICategory
from placemerge.errors import BudgetExceededError, ConfigurationError, UpstreamError
from placemerge.http import HttpClient, RequestBudget
from placemerge.models import SearchRequest
from placemerge.places_client import (
    GooglePlacesClient,
    build_nearby_search_body,
    convert_opening_hours,
    map_price_level,
    parse_places_response,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.headers = {}

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.calls = []

    def post(self, url, headers=None, timeout=None, data=None):
        self.calls.append({"method": "post", "url": url, "headers": headers, "body": json.loads(data)})
        return FakeResponse(self.payload, self.status_code)

    def get(self, url, headers=None, timeout=None, params=None):
        self.calls.append({"method": "get", "url": url, "headers": headers})
        return FakeResponse(self.payload, self.status_code)


def make_client(payload, status_code=200):
    http_client = HttpClient(timeout=1, retry_max=1, backoff_base=0.0, backoff_max=0.0)
    http_client.session = FakeSession(payload, status_code)
    return GooglePlacesClient(http_client, api_key="dummy"), http_client.session


PLACES = {
    "places": [
        {
            "id": "far",
            "displayName": {"text": "Far Cafe"},
            "location": {"latitude": 40.002, "longitude": -73.0},
            "types": ["cafe", "food"],
            "rating": 4.1,
            "userRatingCount": 30,
        },
        {
            "id": "near",
            "displayName": {"text": "Near Bistro"},
            "formattedAddress": "1 Main St",
            "location": {"latitude": 40.0005, "longitude": -73.0},
            "types": ["restaurant"],
            "priceLevel": "PRICE_LEVEL_EXPENSIVE",
            "businessStatus": "OPERATIONAL",
        },
        {"id": "nolocation", "displayName": {"text": "Ghost"}},
        {"id": "noname", "location": {"latitude": 40.0, "longitude": -73.0}},
    ]
}


def test_missing_api_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        GooglePlacesClient(HttpClient(), api_key="")


def test_build_nearby_search_body():
    body = build_nearby_search_body(40.0, -73.0, 1500, [POICategory.CAFE, POICategory.TOILETS], 50)
    assert body == {
        "includedTypes": ["cafe"],
        "maxResultCount": 20,
        "locationRestriction": {
            "circle": {"center": {"latitude": 40.0, "longitude": -73.0}, "radius": 1500}
        },
    }
    assert build_nearby_search_body(0, 0, 100, [POICategory.TOILETS], 5)["includedTypes"] == [
        "point_of_interest"
    ]


def test_parse_places_response_normalizes_and_sorts():
    places = parse_places_response(PLACES, 40.0, -73.0)

    assert [p.id for p in places] == ["google_near", "google_far"]
    near, far = places
    assert near.category == POICategory.RESTAURANT
    assert near.address == "1 Main St"
    assert near.metadata.google.price_level == 3
    assert near.metadata.features == ["operational"]
    assert near.metadata.google.rating is None
    assert far.category == POICategory.CAFE
    assert far.subcategory == "cafe"
    assert far.metadata.rating == 4.1
    assert far.metadata.review_count == 30
    assert far.metadata.source == "google"
    assert far.metadata.external_id == "far"


def test_malformed_places_are_skipped_with_warning(caplog):
    payload = {
        "places": [
            {"id": "text", "displayName": {"text": "Bad"}, "location": {"latitude": "n/a", "longitude": -73.0}},
            {"id": "polar", "displayName": {"text": "Bad"}, "location": {"latitude": 95.0, "longitude": -73.0}},
            {
                "id": "rating",
                "displayName": {"text": "Bad"},
                "location": {"latitude": 40.0, "longitude": -73.0},
                "rating": "great",
            },
            "not-a-place",
            PLACES["places"][0],
        ]
    }

    with caplog.at_level("WARNING", logger="placemerge.places_client"):
        places = parse_places_response(payload, 40.0, -73.0)

    assert [p.id for p in places] == ["google_far"]
    messages = caplog.text
    assert "Skipping Google place text" in messages
    assert "Skipping Google place polar" in messages
    assert "Skipping Google place rating" in messages


def test_search_nearby_survives_malformed_places():
    payload = {
        "places": [
            {"id": "polar", "displayName": {"text": "Bad"}, "location": {"latitude": 95.0, "longitude": -73.0}},
            PLACES["places"][1],
        ]
    }
    client, _ = make_client(payload)
    request = SearchRequest(latitude=40.0, longitude=-73.0, radius=800, categories=[POICategory.RESTAURANT])

    response = client.search_nearby(request)

    assert [p.id for p in response.places] == ["google_near"]
    assert response.metadata.total_results == 1


def test_price_levels():
    assert map_price_level("PRICE_LEVEL_FREE") == 0
    assert map_price_level("PRICE_LEVEL_VERY_EXPENSIVE") == 4
    assert map_price_level("PRICE_LEVEL_UNSPECIFIED") == 2


def test_opening_hours_conversion():
    hours = convert_opening_hours(
        {
            "periods": [
                {"open": {"day": 0, "hour": 10, "minute": 0}, "close": {"day": 0, "hour": 16, "minute": 30}},
                {"open": {"day": 1, "hour": 8, "minute": 5}},
            ]
        }
    )
    assert hours == {"sunday": "10:00-16:30", "monday": "08:05-23:59"}
    assert convert_opening_hours(None) is None


def test_search_nearby_sends_field_mask_and_consumes_budget():
    client, session = make_client(PLACES)
    budget = RequestBudget(max_google=1)
    request = SearchRequest(
        latitude=40.0, longitude=-73.0, radius=800, categories=[POICategory.RESTAURANT], limit=1
    )

    response = client.search_nearby(request, budget)

    assert [p.id for p in response.places] == ["google_near"]
    assert response.metadata.provider == "google"
    call = session.calls[0]
    assert call["url"] == config.PLACES_NEARBY_SEARCH_URL
    assert call["headers"]["X-Goog-Api-Key"] == "dummy"
    assert call["headers"]["X-Goog-FieldMask"] == config.PLACES_FIELD_MASK_MIN
    assert call["body"]["maxResultCount"] == 1
    assert call["body"]["includedTypes"] == ["restaurant", "meal_takeaway"]
    assert budget.google_count == 1

    with pytest.raises(BudgetExceededError) as exc_info:
        client.search_nearby(request, budget)
    assert exc_info.value.recoverable is True
    assert len(session.calls) == 1


def test_http_error_is_upstream_error_tagged_google():
    client, _ = make_client({"error": {}}, status_code=403)
    with pytest.raises(UpstreamError) as exc_info:
        client.search_nearby(SearchRequest(latitude=40.0, longitude=-73.0, radius=800))
    assert exc_info.value.provider == "google"


def test_get_place_details():
    client, session = make_client(
        {
            "id": "abc",
            "displayName": {"text": "Detail Cafe"},
            "location": {"latitude": 40.0, "longitude": -73.0},
            "types": ["cafe"],
            "nationalPhoneNumber": "555-0100",
            "websiteUri": "https://detail.example",
        }
    )

    place = client.get_place_details("google_abc")

    assert place.id == "google_abc"
    assert place.metadata.contact.phone == "555-0100"
    assert session.calls[0]["url"] == config.PLACES_DETAILS_URL_TEMPLATE.format(place_id="abc")
    assert session.calls[0]["headers"]["X-Goog-FieldMask"] == config.PLACES_DETAILS_FIELD_MASK


def test_get_place_details_failure_returns_none():
    client, _ = make_client({}, status_code=404)
    assert client.get_place_details("abc") is None


def test_get_place_details_with_unusable_location_returns_none():
    client, _ = make_client(
        {"id": "abc", "displayName": {"text": "Detail Cafe"}, "location": {"latitude": None, "longitude": 1.0}}
    )
    assert client.get_place_details("abc") is None
