"""Per-zone search and scraping configuration with a time-bounded cache."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from zonescraper.etl.validation import build_validation_rules
from zonescraper.models import ScrapingConfig, SearchConfig, SearchQuery, Zone

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
BASE_MAX_RESULTS = 200
BASE_DELAY_SECONDS = 2.0
BASE_CONCURRENCY = 3
SCRAPE_TIMEOUT_SECONDS = 30.0
SCRAPE_MAX_RETRIES = 3
DEFAULT_SEARCH_TERMS = ("restaurant",)
BROADENING_TYPES = ("meal_takeaway", "meal_delivery", "cafe", "bar", "food")
ALL_PRICE_LEVELS = (0, 1, 2, 3, 4)

# Checked in order; the first keyword group found in the zone notes wins.
PRICE_LEVEL_RULES = (
    (("upscale", "luxury", "fine dining"), (2, 3, 4)),
    (("budget", "affordable", "student"), (0, 1, 2)),
    (("tourist", "business district"), (1, 2, 3, 4)),
)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/119.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
)


def generate_queries(search_terms: Tuple[str, ...], cuisine_focus: Tuple[str, ...]) -> Tuple[SearchQuery, ...]:
    queries = [SearchQuery(keyword=term, type="restaurant") for term in (search_terms or DEFAULT_SEARCH_TERMS)]
    queries.extend(
        SearchQuery(keyword=f"{cuisine} restaurant", type="restaurant", cuisine=cuisine)
        for cuisine in cuisine_focus
    )
    queries.extend(SearchQuery(type=place_type) for place_type in BROADENING_TYPES)
    return tuple(queries)


def zone_area_km2(zone: Zone) -> float:
    return math.pi * (zone.radius_meters / 1000) ** 2


def calculate_max_results(zone: Zone) -> int:
    multiplier = 1.0
    if zone.priority == 1:
        multiplier = 1.5
    elif zone.priority == 3:
        multiplier = 0.75

    area = zone_area_km2(zone)
    if area > 100:
        multiplier *= 1.2
    elif area < 10:
        multiplier *= 0.8

    if zone.population:
        density = zone.population / area
        if density > 5000:
            multiplier *= 1.3
        elif density < 1000:
            multiplier *= 0.7

    # Half-up rounding; round() would use banker's rounding.
    return int(math.floor(BASE_MAX_RESULTS * multiplier + 0.5))


def determine_price_levels(notes: Optional[str]) -> Tuple[int, ...]:
    lowered = (notes or "").lower()
    for keywords, levels in PRICE_LEVEL_RULES:
        if any(keyword in lowered for keyword in keywords):
            return levels
    return ALL_PRICE_LEVELS


def calculate_delay(zone: Zone) -> float:
    if zone.priority == 1:
        return BASE_DELAY_SECONDS * 0.75
    if zone.priority == 3:
        return BASE_DELAY_SECONDS * 1.5
    return BASE_DELAY_SECONDS


def calculate_concurrency(zone: Zone) -> int:
    if zone.priority == 1:
        return BASE_CONCURRENCY + 2
    if zone.priority == 3:
        return max(1, BASE_CONCURRENCY - 1)
    return BASE_CONCURRENCY


def build_search_config(zone: Zone) -> SearchConfig:
    return SearchConfig(
        zone=zone,
        location=f"{zone.latitude},{zone.longitude}",
        radius=zone.radius_meters,
        queries=generate_queries(zone.search_terms, zone.cuisine_focus),
        max_results=calculate_max_results(zone),
        price_levels=determine_price_levels(zone.notes),
        scraping=ScrapingConfig(
            delay_seconds=calculate_delay(zone),
            concurrency=calculate_concurrency(zone),
            timeout_seconds=SCRAPE_TIMEOUT_SECONDS,
            max_retries=SCRAPE_MAX_RETRIES,
            user_agents=USER_AGENTS,
        ),
        validation=build_validation_rules(zone),
    )


class ZoneConfigResolver:
    """Resolve zone ids into cached :class:`SearchConfig` objects.

    ``zone_store`` needs a ``get_zone(zone_id)`` method raising
    :class:`~zonescraper.models.ZoneNotFoundError` for unknown ids.
    """

    def __init__(
        self,
        zone_store: Any,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.zone_store = zone_store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, SearchConfig]] = {}
        self._lock = threading.Lock()

    def resolve(self, zone_id: str) -> SearchConfig:
        key = str(zone_id)
        now = self._clock()
        cached = self._cache.get(key)
        if cached and now - cached[0] < self.ttl_seconds:
            return cached[1]

        zone = self.zone_store.get_zone(zone_id)
        config = build_search_config(zone)
        with self._lock:
            self._cache[key] = (now, config)
        logger.debug(
            "Resolved zone %s: %d queries, max_results=%d",
            zone.label,
            len(config.queries),
            config.max_results,
        )
        return config

    def invalidate(self, zone_id: Optional[str] = None) -> None:
        with self._lock:
            if zone_id is None:
                self._cache.clear()
            else:
                # Entries may be keyed by zone code as well as by id.
                key = str(zone_id)
                for cached_key, (_, config) in list(self._cache.items()):
                    if key in (cached_key, config.zone.id, config.zone.code):
                        del self._cache[cached_key]

    def cache_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._cache),
                "entries": sorted(self._cache),
                "ttl_seconds": self.ttl_seconds,
            }
