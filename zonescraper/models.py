"""Core data models shared by the zone scraping engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


class ZoneNotFoundError(LookupError):
    """Raised when a zone id does not resolve to a stored zone."""


class InvalidZoneError(ValueError):
    """Raised when a stored zone carries impossible geometry."""


@dataclass(frozen=True)
class Zone:
    """Administrator-defined search area. Read-only to the engine."""

    id: str
    code: str
    latitude: float
    longitude: float
    radius_meters: float
    display_name: Optional[str] = None
    priority: int = 2
    search_terms: Tuple[str, ...] = ()
    cuisine_focus: Tuple[str, ...] = ()
    notes: str = ""
    population: Optional[int] = None
    is_active: bool = True
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    def __post_init__(self) -> None:
        if self.radius_meters is None or self.radius_meters <= 0:
            raise InvalidZoneError(f"zone {self.id}: radius must be positive")
        if not -90 <= self.latitude <= 90:
            raise InvalidZoneError(f"zone {self.id}: latitude {self.latitude} out of range")
        if not -180 <= self.longitude <= 180:
            raise InvalidZoneError(f"zone {self.id}: longitude {self.longitude} out of range")

    @property
    def label(self) -> str:
        return self.display_name or self.code or self.id


@dataclass(frozen=True)
class SearchQuery:
    keyword: Optional[str] = None
    type: Optional[str] = None
    cuisine: Optional[str] = None

    @property
    def label(self) -> str:
        return self.keyword or self.type or "?"


@dataclass(frozen=True)
class ScrapingConfig:
    delay_seconds: float
    concurrency: int
    timeout_seconds: float = 30.0
    max_retries: int = 3
    user_agents: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CustomRule:
    """Boolean gate applied to a transformed restaurant."""

    name: str
    check: Callable[["RestaurantRecord"], bool]


@dataclass(frozen=True)
class FieldRule:
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[Any] = None


@dataclass(frozen=True)
class ValidationRules:
    required: Tuple[str, ...]
    fields: Dict[str, FieldRule]
    custom: Tuple[CustomRule, ...] = ()


@dataclass(frozen=True)
class SearchConfig:
    """Effective search and scraping settings for one zone."""

    zone: Zone
    location: str
    radius: float
    queries: Tuple[SearchQuery, ...]
    max_results: int
    price_levels: Tuple[int, ...]
    scraping: ScrapingConfig
    validation: ValidationRules


@dataclass(slots=True)
class RestaurantRecord:
    """Normalized restaurant built from a Google Places detail payload."""

    name: str
    google_place_id: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    cuisine_type: Optional[str] = None
    rating: Optional[float] = None
    price_level: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    zone_id: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    google_types: List[str] = field(default_factory=list)
    source: str = "google_places"
    business_hours: Optional[List[str]] = None
    photos: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class EmailCandidate:
    email: str
    strategy: str
    score: int = 0


class JobStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobOptions:
    delay_ms: int = 2000
    max_results: int = 100
    extract_emails: bool = True


@dataclass
class ScrapingJob:
    """Progress of one run over a list of zones."""

    id: str
    zone_ids: Tuple[str, ...]
    options: JobOptions
    status: JobStatus = JobStatus.STARTING
    processed: int = 0
    total: int = 0
    results: int = 0
    emails_found: int = 0
    current_zone: Optional[str] = None
    current_zone_id: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "processed": self.processed,
            "total": self.total,
            "results": self.results,
            "emails_found": self.emails_found,
            "current_zone": self.current_zone,
            "zones": list(self.zone_ids),
            "options": asdict(self.options),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "error": self.error,
        }
