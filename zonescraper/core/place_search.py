"""Zone-scoped Google Places search: paginate, de-duplicate, enrich, validate."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Set

import requests

from zonescraper.core.chain import run_in_batches
from zonescraper.core.config import ConfigError, Settings, get_settings
from zonescraper.etl.transform import to_restaurant_record
from zonescraper.etl.validation import validate_record
from zonescraper.models import RestaurantRecord, SearchConfig, SearchQuery
from zonescraper.vendors import google_places

logger = logging.getLogger(__name__)

PAGINATION_DELAY_SECONDS = 2.0
DETAIL_BATCH_DELAY_SECONDS = 0.5
QUERY_DELAY_SECONDS = 0.1

_PROVIDER_ERRORS = (google_places.GooglePlacesError, requests.RequestException, ValueError)


class PlaceSearchClient:
    """Collect validated restaurants for one zone pass."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        if not self.settings.google_api_key:
            raise ConfigError("GOOGLE_API_KEY is required")
        self.api_key = self.settings.google_api_key
        self.max_pages = self.settings.max_pages
        self.batch_size = self.settings.detail_batch_size

    def search_zone(self, config: SearchConfig, max_results: Optional[int] = None) -> List[RestaurantRecord]:
        target = config.max_results if max_results is None else min(config.max_results, max_results)
        zone = config.zone
        logger.info(
            "Starting restaurant search in %s: queries=%d target=%d",
            zone.label,
            len(config.queries),
            target,
        )

        seen: Set[str] = set()
        candidates: List[Dict[str, Any]] = []
        for index, query in enumerate(config.queries):
            try:
                found = self._execute_query(config, query, seen, target)
            except _PROVIDER_ERRORS as exc:
                logger.error("Search query %s failed in %s: %s", query.label, zone.label, exc)
                continue
            candidates.extend(found)
            logger.info(
                "Query %s: new=%d total_unique=%d",
                query.label,
                len(found),
                len(seen),
            )
            if index < len(config.queries) - 1:
                time.sleep(QUERY_DELAY_SECONDS)

        restaurants = self._fetch_details(candidates[:target], config)
        logger.info(
            "Zone search completed for %s: candidates=%d restaurants=%d",
            zone.label,
            len(candidates),
            len(restaurants),
        )
        return restaurants

    def _execute_query(
        self,
        config: SearchConfig,
        query: SearchQuery,
        seen: Set[str],
        target: int,
    ) -> List[Dict[str, Any]]:
        found: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        pages = 0

        while True:
            if page_token:
                # Google rejects a next_page_token used before it becomes valid.
                time.sleep(PAGINATION_DELAY_SECONDS)
            try:
                payload = google_places.nearby_search(
                    config.location,
                    config.radius,
                    self.api_key,
                    keyword=query.keyword,
                    place_type=query.type,
                    pagetoken=page_token,
                )
            except _PROVIDER_ERRORS:
                if page_token is None:
                    raise
                logger.warning("Next page request failed for query %s; keeping earlier pages", query.label)
                break
            pages += 1

            for place in self._filter_price(payload.get("results", []), config.price_levels):
                place_id = place.get("place_id")
                if not place_id:
                    logger.debug("Skipping result without place_id: %s", place.get("name"))
                    continue
                if place_id in seen:
                    continue
                seen.add(place_id)
                found.append(place)

            page_token = payload.get("next_page_token")
            if not page_token or len(seen) >= target or pages >= self.max_pages:
                break

        return found

    @staticmethod
    def _filter_price(results: List[Dict[str, Any]], price_levels) -> List[Dict[str, Any]]:
        allowed = set(price_levels)
        return [
            place for place in results
            if place.get("price_level") is None or place.get("price_level") in allowed
        ]

    def _fetch_details(self, candidates: List[Dict[str, Any]], config: SearchConfig) -> List[RestaurantRecord]:
        restaurants: List[RestaurantRecord] = []
        outcomes = run_in_batches(
            candidates,
            lambda place: self._detail_to_record(place["place_id"], config),
            batch_size=self.batch_size,
            delay_seconds=DETAIL_BATCH_DELAY_SECONDS,
        )
        for place, record, error in outcomes:
            if error is not None:
                logger.warning("Place detail failed for %s: %s", place.get("place_id"), error)
                continue
            if record is not None:
                restaurants.append(record)
        return restaurants

    def _detail_to_record(self, place_id: str, config: SearchConfig) -> Optional[RestaurantRecord]:
        details = google_places.place_details(place_id, self.api_key)
        if not details:
            return None
        details.setdefault("place_id", place_id)
        record = to_restaurant_record(details, config)
        if not validate_record(record, config.validation):
            return None
        return record
