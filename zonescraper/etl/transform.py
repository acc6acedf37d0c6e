"""Utilities for transforming Google Places responses into restaurant records."""

import logging
import re
from typing import Any, Dict, Iterable, Optional, Sequence
from urllib.parse import urlparse

from zonescraper.core.chain import first_success
from zonescraper.models import RestaurantRecord, SearchConfig

logger = logging.getLogger(__name__)

_STATE_ZIP_REGEX = re.compile(r"([A-Z]{2})\s+(\d{5})")
_US_COUNTRY_MARKERS = ("USA", "United States")
MAX_PHOTOS = 3
MIN_PHONE_DIGITS = 10

# Google category tag -> cuisine label, checked in order.
GOOGLE_TYPE_CUISINES = (
    ("chinese_restaurant", "Chinese"),
    ("italian_restaurant", "Italian"),
    ("japanese_restaurant", "Japanese"),
    ("korean_restaurant", "Korean"),
    ("thai_restaurant", "Thai"),
    ("indian_restaurant", "Indian"),
    ("mexican_restaurant", "Mexican"),
    ("pizza_restaurant", "Pizza"),
    ("seafood_restaurant", "Seafood"),
    ("steakhouse", "Steakhouse"),
    ("barbecue_restaurant", "BBQ"),
    ("cafe", "Cafe"),
    ("bakery", "Bakery"),
    ("fast_food_restaurant", "Fast Food"),
    ("meal_delivery", "Delivery"),
    ("meal_takeaway", "Takeaway"),
)

# Substring of the lower-cased name -> cuisine label, checked in order.
NAME_KEYWORD_CUISINES = (
    ("pizza", "Pizza"),
    ("chinese", "Chinese"),
    ("italian", "Italian"),
    ("japanese", "Japanese"),
    ("sushi", "Japanese"),
    ("korean", "Korean"),
    ("thai", "Thai"),
    ("indian", "Indian"),
    ("mexican", "Mexican"),
    ("kosher", "Kosher"),
    ("bbq", "BBQ"),
    ("steakhouse", "Steakhouse"),
    ("seafood", "Seafood"),
    ("cafe", "Cafe"),
    ("deli", "Deli"),
    ("bakery", "Bakery"),
)


def parse_address(formatted_address: Optional[str]) -> Dict[str, Optional[str]]:
    """Split a US-style ``street, city, ST 12345, USA`` address."""
    components: Dict[str, Optional[str]] = {
        "city": None,
        "state": None,
        "country": None,
        "postal_code": None,
    }
    if not formatted_address:
        return components

    parts = [part.strip() for part in formatted_address.split(",")]
    if len(parts) < 3:
        return components

    if not any(marker in parts[-1] for marker in _US_COUNTRY_MARKERS):
        return components

    components["country"] = "US"
    match = _STATE_ZIP_REGEX.search(parts[-2])
    if match:
        components["state"] = match.group(1)
        components["postal_code"] = match.group(2)
    components["city"] = parts[-3]
    return components


def _by_google_type(types: Sequence[str]) -> Optional[str]:
    type_set = set(types)
    for type_name, cuisine in GOOGLE_TYPE_CUISINES:
        if type_name in type_set:
            return cuisine
    return None


def _by_keyword_table(name: str, table: Iterable[Any]) -> Optional[str]:
    lowered = name.lower()
    for keyword, cuisine in table:
        if keyword in lowered:
            return cuisine
    return None


def determine_cuisine_type(types: Sequence[str], name: str, cuisine_focus: Sequence[str] = ()) -> Optional[str]:
    focus_table = [(cuisine.lower(), cuisine[:1].upper() + cuisine[1:]) for cuisine in cuisine_focus if cuisine]
    classifiers = (
        ("google_type", lambda _: _by_google_type(types or ())),
        ("zone_focus", lambda value: _by_keyword_table(value, focus_table)),
        ("name_keyword", lambda value: _by_keyword_table(value, NAME_KEYWORD_CUISINES)),
    )
    matched = first_success(classifiers, name or "")
    return matched[1] if matched else None


def clean_phone_number(*candidates: Optional[str]) -> Optional[str]:
    """Return the first phone with enough digits, keeping its original formatting."""
    for phone in candidates:
        if not phone:
            continue
        digits = re.sub(r"\D", "", phone)
        if len(digits) >= MIN_PHONE_DIGITS:
            return phone
    return None


def _absolute_url(value: str) -> Optional[str]:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc or " " in parsed.netloc:
        return None
    if not parsed.path:
        parsed = parsed._replace(path="/")
    return parsed.geturl()


def clean_website(website: Optional[str]) -> Optional[str]:
    if not website or not website.strip():
        return None
    value = website.strip()
    matched = first_success(
        (
            ("as_is", _absolute_url),
            ("https_prefix", lambda raw: None if "://" in raw else _absolute_url(f"https://{raw}")),
        ),
        value,
    )
    return matched[1] if matched else None


def to_restaurant_record(details: Dict[str, Any], config: SearchConfig) -> RestaurantRecord:
    zone = config.zone
    name = (details.get("name") or "").strip()
    address = details.get("formatted_address")
    components = parse_address(address)
    location = (details.get("geometry") or {}).get("location") or {}
    types = list(details.get("types") or [])

    opening_hours = details.get("opening_hours")
    business_hours = None
    if opening_hours is not None:
        business_hours = list(opening_hours.get("weekday_text") or [])

    return RestaurantRecord(
        name=name,
        google_place_id=details.get("place_id"),
        address=address,
        phone=clean_phone_number(
            details.get("formatted_phone_number"),
            details.get("international_phone_number"),
        ),
        website=clean_website(details.get("website")),
        cuisine_type=determine_cuisine_type(types, name, zone.cuisine_focus),
        rating=details.get("rating"),
        price_level=details.get("price_level"),
        latitude=location.get("lat"),
        longitude=location.get("lng"),
        zone_id=zone.id,
        city=components["city"] or zone.city,
        state=components["state"] or zone.state,
        country=components["country"] or zone.country,
        postal_code=components["postal_code"],
        google_types=types,
        business_hours=business_hours,
        photos=[
            photo["photo_reference"]
            for photo in (details.get("photos") or [])[:MAX_PHOTOS]
            if photo.get("photo_reference")
        ],
    )
