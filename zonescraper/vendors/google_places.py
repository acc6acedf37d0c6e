"""Client utilities for the Google Places API."""

import logging
from typing import Any, Dict, Iterable, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"
_OK_STATUSES = {"OK", "ZERO_RESULTS"}

DETAIL_FIELDS = (
    "place_id",
    "name",
    "formatted_address",
    "geometry",
    "formatted_phone_number",
    "international_phone_number",
    "website",
    "rating",
    "price_level",
    "types",
    "opening_hours",
    "photos",
)


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def _get(endpoint: str, params: Dict[str, Any], operation: str) -> Dict[str, Any]:
    response = _SESSION.get(f"{_BASE_URL}/{endpoint}/json", params=params, timeout=10)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status not in _OK_STATUSES:
        logger.error("%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message"))
        raise GooglePlacesError(payload.get("error_message") or status)
    return payload


def nearby_search(
    location: str,
    radius: float,
    api_key: str,
    *,
    keyword: Optional[str] = None,
    place_type: Optional[str] = None,
    pagetoken: Optional[str] = None,
) -> Dict[str, Any]:
    # Continuation requests must carry only the token and the key.
    if pagetoken:
        params: Dict[str, Any] = {"pagetoken": pagetoken, "key": api_key}
    else:
        params = {"location": location, "radius": int(radius), "key": api_key}
        if keyword:
            params["keyword"] = keyword
        if place_type:
            params["type"] = place_type
    return _get("nearbysearch", params, "nearby_search")


def place_details(place_id: str, api_key: str, fields: Iterable[str] = DETAIL_FIELDS) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": ",".join(fields)}
    payload = _get("details", params, "place_details")
    return payload.get("result", {})


def check_connection(api_key: str, location: str = "40.7831,-73.9712") -> Dict[str, Any]:
    """Run a small nearby search to confirm the key and quota work."""
    try:
        payload = nearby_search(location, 1000, api_key, place_type="restaurant")
    except (GooglePlacesError, requests.RequestException) as exc:
        return {"success": False, "error": str(exc)}
    return {
        "success": True,
        "status": payload.get("status"),
        "result_count": len(payload.get("results", [])),
    }
