"""Background scraping jobs over lists of zones."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from zonescraper.core.config import get_settings
from zonescraper.core.db import RestaurantRejectedError
from zonescraper.core.email_discovery import EmailDiscoveryPipeline, EmailOutcome
from zonescraper.models import (
    InvalidZoneError,
    JobOptions,
    JobStatus,
    RestaurantRecord,
    ScrapingJob,
    SearchConfig,
    ZoneNotFoundError,
)

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """Raised when a job id is neither active nor in history."""


class JobRegistry:
    """Active jobs keyed by id plus an append-only history of finished jobs."""

    def __init__(self) -> None:
        self._active: Dict[str, ScrapingJob] = {}
        self._history: List[ScrapingJob] = []
        self._lock = threading.Lock()

    def add(self, job: ScrapingJob) -> None:
        with self._lock:
            self._active[job.id] = job

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._active.pop(job_id, None)

    def finish(self, job: ScrapingJob) -> None:
        snapshot = replace(job)
        with self._lock:
            self._history.append(snapshot)
            self._active.pop(job.id, None)

    def get(self, job_id: str) -> ScrapingJob:
        with self._lock:
            job = self._active.get(job_id)
            if job is not None:
                return job
            for finished in reversed(self._history):
                if finished.id == job_id:
                    return finished
        raise JobNotFoundError(job_id)

    def active(self) -> List[ScrapingJob]:
        with self._lock:
            return list(self._active.values())

    def history(self, limit: Optional[int] = None) -> List[ScrapingJob]:
        with self._lock:
            if limit is None:
                return list(self._history)
            return self._history[-limit:] if limit > 0 else []

    def zone_in_progress(self, zone_id: str, exclude_job_id: Optional[str] = None) -> Optional[str]:
        """Id of another active job currently working on ``zone_id``, if any."""
        with self._lock:
            for job in self._active.values():
                if job.id != exclude_job_id and job.current_zone_id == zone_id:
                    return job.id
        return None


class ScrapingJobOrchestrator:
    """Create jobs, run them in the background and expose their progress.

    Zones of one job are processed strictly in order by a single worker;
    several jobs may run at once against the shared registry.
    """

    def __init__(
        self,
        *,
        resolver: Any,
        search_client: Any,
        restaurant_store: Any,
        email_pipeline: Optional[EmailDiscoveryPipeline] = None,
        registry: Optional[JobRegistry] = None,
        executor: Optional[Executor] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.resolver = resolver
        self.search_client = search_client
        self.restaurant_store = restaurant_store
        self.email_pipeline = email_pipeline
        self.registry = registry or JobRegistry()
        if executor is None:
            workers = max_workers or get_settings().max_concurrent_jobs
            executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scrape-job")
        self._executor = executor

    def start_job(self, zone_ids: Sequence[str], options: Optional[JobOptions] = None) -> str:
        zone_ids = tuple(str(zone_id) for zone_id in zone_ids or ())
        if not zone_ids:
            raise ValueError("At least one zone id is required")

        job = ScrapingJob(
            id=uuid.uuid4().hex,
            zone_ids=zone_ids,
            options=options or JobOptions(),
            total=len(zone_ids),
            started_at=datetime.now(timezone.utc),
        )
        self.registry.add(job)
        try:
            self._executor.submit(self.run_job, job)
        except RuntimeError:
            self.registry.discard(job.id)
            raise
        logger.info("Queued scraping job %s for %d zones", job.id, job.total)
        return job.id

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        return self.registry.get(job_id).summary()

    def list_active_jobs(self) -> List[Dict[str, Any]]:
        return [job.summary() for job in self.registry.active()]

    def list_recent_history(self, limit: int = 5) -> List[Dict[str, Any]]:
        return [job.summary() for job in self.registry.history(limit)]

    def run_job(self, job: ScrapingJob) -> ScrapingJob:
        """Drive one job to a terminal state. Runs on the executor thread."""
        try:
            job.status = JobStatus.RUNNING
            logger.info("Starting scraping job %s for %d zones", job.id, job.total)

            for index, zone_id in enumerate(job.zone_ids):
                if not self._process_zone(job, zone_id):
                    continue
                job.processed += 1
                if index < len(job.zone_ids) - 1 and job.options.delay_ms > 0:
                    time.sleep(job.options.delay_ms / 1000)

            job.status = JobStatus.COMPLETED
            job.current_zone = None
            job.current_zone_id = None
            logger.info("Job %s completed. Found %d restaurants.", job.id, job.results)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Job %s failed: %s", job.id, exc)
            job.status = JobStatus.FAILED
            job.error = str(exc) or exc.__class__.__name__
        finally:
            job.ended_at = datetime.now(timezone.utc)
            self.registry.finish(job)
        return job

    def _process_zone(self, job: ScrapingJob, zone_id: str) -> bool:
        """Search and persist one zone; False when the zone could not be resolved."""
        try:
            config: SearchConfig = self.resolver.resolve(zone_id)
        except (ZoneNotFoundError, InvalidZoneError) as exc:
            logger.warning("Skipping zone %s in job %s: %s", zone_id, job.id, exc)
            return False

        other_job = self.registry.zone_in_progress(config.zone.id, exclude_job_id=job.id)
        if other_job:
            logger.warning("Zone %s is also being scraped by job %s", config.zone.label, other_job)
        job.current_zone = config.zone.label
        job.current_zone_id = config.zone.id
        logger.info("Processing zone: %s", config.zone.label)

        restaurants = self.search_client.search_zone(config, max_results=job.options.max_results)
        inserted = self._persist(job, restaurants[: job.options.max_results])

        if job.options.extract_emails and self.email_pipeline is not None and inserted:
            self._discover_emails(job, config, inserted)
        return True

    def _persist(self, job: ScrapingJob, restaurants: Sequence[RestaurantRecord]) -> List[RestaurantRecord]:
        inserted: List[RestaurantRecord] = []
        for restaurant in restaurants:
            try:
                is_new = self.restaurant_store.upsert_restaurant(restaurant)
            except RestaurantRejectedError as exc:
                logger.error("Error saving restaurant %s: %s", restaurant.google_place_id, exc)
                continue
            if is_new:
                job.results += 1
                inserted.append(restaurant)
        return inserted

    def _discover_emails(self, job: ScrapingJob, config: SearchConfig, restaurants: Sequence[RestaurantRecord]) -> None:
        def record_outcome(processed: int, total: int, outcome: EmailOutcome) -> None:
            if outcome.candidate is None:
                return
            outcome.restaurant.email = outcome.candidate.email
            try:
                self.restaurant_store.update_email(outcome.restaurant.google_place_id, outcome.candidate.email)
            except RestaurantRejectedError as exc:
                logger.error("Error saving email for %s: %s", outcome.restaurant.google_place_id, exc)
                return
            job.emails_found += 1
            logger.debug("Email progress for job %s: %d/%d", job.id, processed, total)

        self.email_pipeline.discover_batch(
            restaurants,
            concurrency=config.scraping.concurrency,
            delay_seconds=config.scraping.delay_seconds,
            scraping=config.scraping,
            on_progress=record_outcome,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
