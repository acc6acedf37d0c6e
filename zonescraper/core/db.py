"""Database helpers for zones and restaurants."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import extras, pool

from zonescraper.core.config import get_settings
from zonescraper.models import RestaurantRecord, Zone, ZoneNotFoundError

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


class RestaurantRejectedError(ValueError):
    """Raised when the database refuses a single restaurant row."""


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_SELECT_ZONE = """
SELECT id, zone_code, display_name, latitude, longitude, radius_meters, priority,
       search_terms, cuisine_focus, notes, population, is_active, city, state, country
FROM zones
WHERE id::text = %(key)s OR zone_code = %(key)s
ORDER BY (id::text = %(key)s) DESC
LIMIT 1;
"""


def row_to_zone(row: Dict[str, Any]) -> Zone:
    population = row.get("population")
    return Zone(
        id=str(row["id"]),
        code=row.get("zone_code") or str(row["id"]),
        display_name=row.get("display_name"),
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        radius_meters=float(row["radius_meters"]),
        priority=int(row.get("priority") or 2),
        search_terms=tuple(row.get("search_terms") or ()),
        cuisine_focus=tuple(row.get("cuisine_focus") or ()),
        notes=row.get("notes") or "",
        population=int(population) if population else None,
        is_active=bool(row.get("is_active", True)),
        city=row.get("city"),
        state=row.get("state"),
        country=row.get("country"),
    )


class ZoneStore:
    """Read-only access to administrator-managed zones."""

    def get_zone(self, zone_id: str) -> Zone:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_SELECT_ZONE, {"key": str(zone_id)})
                row = cur.fetchone()
        if not row:
            raise ZoneNotFoundError(f"zone {zone_id} not found")
        return row_to_zone(row)


_INSERT_RESTAURANT = """
INSERT INTO restaurants (
    name,
    address,
    phone,
    email,
    website,
    cuisine_type,
    rating,
    price_level,
    zone_id,
    city,
    state,
    country,
    postal_code,
    latitude,
    longitude,
    google_place_id,
    google_types,
    source,
    business_hours,
    photos,
    last_scraped
) VALUES (
    %(name)s,
    %(address)s,
    %(phone)s,
    %(email)s,
    %(website)s,
    %(cuisine_type)s,
    %(rating)s,
    %(price_level)s,
    %(zone_id)s,
    %(city)s,
    %(state)s,
    %(country)s,
    %(postal_code)s,
    %(latitude)s,
    %(longitude)s,
    %(google_place_id)s,
    %(google_types)s,
    %(source)s,
    %(business_hours)s,
    %(photos)s,
    NOW()
)
ON CONFLICT (google_place_id) DO NOTHING
RETURNING id;
"""

_UPDATE_EMAIL = """
UPDATE restaurants
SET email = %(email)s, has_email = TRUE, updated_at = NOW()
WHERE google_place_id = %(google_place_id)s;
"""

_SELECT_PENDING_EMAIL = """
SELECT name, google_place_id, website, zone_id
FROM restaurants
WHERE zone_id::text = %(zone_id)s
  AND website IS NOT NULL
  AND email IS NULL
ORDER BY name ASC
LIMIT %(limit)s;
"""


def _prepare_params(record: RestaurantRecord) -> Dict[str, Any]:
    return {
        "name": record.name,
        "address": record.address,
        "phone": record.phone,
        "email": record.email,
        "website": record.website,
        "cuisine_type": record.cuisine_type,
        "rating": record.rating,
        "price_level": record.price_level,
        "zone_id": record.zone_id,
        "city": record.city,
        "state": record.state,
        "country": record.country,
        "postal_code": record.postal_code,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "google_place_id": record.google_place_id,
        "google_types": list(record.google_types or []),
        "source": record.source,
        "business_hours": extras.Json(record.business_hours),
        "photos": list(record.photos or []),
    }


class RestaurantStore:
    """Idempotent persistence keyed by the Google place id."""

    def upsert_restaurant(self, record: RestaurantRecord) -> bool:
        """Insert the restaurant unless its place id exists; return True when inserted."""
        if not record.google_place_id:
            raise RestaurantRejectedError("google_place_id is required for upsert")
        params = _prepare_params(record)

        with get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_RESTAURANT, params)
                    inserted = cur.fetchone() is not None
                conn.commit()
            except (psycopg2.IntegrityError, psycopg2.DataError) as exc:
                conn.rollback()
                raise RestaurantRejectedError(str(exc)) from exc

        logger.debug("Upserted restaurant %s inserted=%s", record.google_place_id, inserted)
        return inserted

    def update_email(self, google_place_id: str, email: str) -> None:
        with get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(_UPDATE_EMAIL, {"email": email, "google_place_id": google_place_id})
                conn.commit()
            except psycopg2.DataError as exc:
                conn.rollback()
                raise RestaurantRejectedError(str(exc)) from exc

    def pending_email_lookups(self, zone_id: str, limit: int = 100) -> List[RestaurantRecord]:
        """Persisted restaurants of a zone that have a website but no email yet."""
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_SELECT_PENDING_EMAIL, {"zone_id": str(zone_id), "limit": limit})
                rows = cur.fetchall()
        return [
            RestaurantRecord(
                name=row["name"],
                google_place_id=row["google_place_id"],
                website=row["website"],
                zone_id=str(row["zone_id"]),
            )
            for row in rows
        ]
