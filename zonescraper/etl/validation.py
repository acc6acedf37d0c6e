"""Zone-derived validation rules for transformed restaurants."""

import logging
import re
from typing import Tuple

from zonescraper.models import CustomRule, FieldRule, RestaurantRecord, ValidationRules, Zone

logger = logging.getLogger(__name__)

KOSHER_KEYWORDS = ("kosher", "glatt", "hebrew", "jewish", "synagogue")
CHAIN_NAMES = (
    "mcdonalds",
    "burger king",
    "subway",
    "starbucks",
    "dunkin",
    "pizza hut",
    "dominos",
    "kfc",
    "taco bell",
    "wendys",
)

FIELD_RULES = {
    "name": FieldRule(min_length=2, max_length=255, pattern=re.compile(r"^[a-zA-Z0-9\s\-'&.()]+$")),
    "email": FieldRule(pattern=re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")),
    "phone": FieldRule(pattern=re.compile(r"^[+]?[\d\s\-().]{10,}$")),
    "website": FieldRule(pattern=re.compile(r"^https?://.+")),
}
REQUIRED_FIELDS = ("name", "address")


def has_kosher_signal(restaurant: RestaurantRecord) -> bool:
    name = restaurant.name.lower()
    if any(keyword in name for keyword in KOSHER_KEYWORDS):
        return True
    return bool(restaurant.cuisine_type and "kosher" in restaurant.cuisine_type.lower())


def is_independent(restaurant: RestaurantRecord) -> bool:
    name = restaurant.name.lower()
    return not any(chain in name for chain in CHAIN_NAMES)


def has_business_hours(restaurant: RestaurantRecord) -> bool:
    return restaurant.business_hours is not None


def custom_rules_for(zone: Zone) -> Tuple[CustomRule, ...]:
    rules = []
    if any(cuisine.lower() == "kosher" for cuisine in zone.cuisine_focus):
        rules.append(CustomRule("kosher_validation", has_kosher_signal))
    rules.append(CustomRule("chain_detection", is_independent))
    rules.append(CustomRule("business_hours", has_business_hours))
    return tuple(rules)


def build_validation_rules(zone: Zone) -> ValidationRules:
    return ValidationRules(
        required=REQUIRED_FIELDS,
        fields=dict(FIELD_RULES),
        custom=custom_rules_for(zone),
    )


def validate_record(restaurant: RestaurantRecord, rules: ValidationRules) -> bool:
    """Return True when the record passes every rule; failures are logged at debug."""
    for field_name in rules.required:
        if not getattr(restaurant, field_name, None):
            logger.debug("Dropping %s: missing %s", restaurant.google_place_id, field_name)
            return False

    for field_name, rule in rules.fields.items():
        value = getattr(restaurant, field_name, None)
        if not value:
            continue
        if rule.min_length is not None and len(value) < rule.min_length:
            logger.debug("Dropping %s: %s too short", restaurant.google_place_id, field_name)
            return False
        if rule.max_length is not None and len(value) > rule.max_length:
            logger.debug("Dropping %s: %s too long", restaurant.google_place_id, field_name)
            return False
        if rule.pattern is not None and not rule.pattern.search(value):
            logger.debug("Dropping %s: %s does not match pattern", restaurant.google_place_id, field_name)
            return False

    for rule in rules.custom:
        if not rule.check(restaurant):
            logger.debug("Dropping %s: failed rule %s", restaurant.google_place_id, rule.name)
            return False

    return True
