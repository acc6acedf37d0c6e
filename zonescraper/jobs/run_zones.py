"""CLI to scrape zones, backfill emails for persisted restaurants or check Places connectivity."""

import argparse
import json
import logging
from typing import List, Optional

from zonescraper.core.config import ConfigError, get_settings
from zonescraper.core.db import RestaurantStore, ZoneStore, init_pool
from zonescraper.core.email_discovery import EmailDiscoveryPipeline
from zonescraper.core.place_search import PlaceSearchClient
from zonescraper.core.zone_config import ZoneConfigResolver
from zonescraper.jobs.orchestrator import ScrapingJobOrchestrator
from zonescraper.models import JobOptions
from zonescraper.vendors import google_places

logger = logging.getLogger(__name__)


def run_scrape_job(zone_ids: List[str], options: JobOptions) -> dict:
    """Run one job in the current thread and return its final summary."""
    settings = get_settings()
    init_pool()

    resolver = ZoneConfigResolver(ZoneStore(), ttl_seconds=settings.zone_config_ttl_seconds)
    email_pipeline = EmailDiscoveryPipeline(settings=settings) if options.extract_emails else None
    orchestrator = ScrapingJobOrchestrator(
        resolver=resolver,
        search_client=PlaceSearchClient(settings),
        restaurant_store=RestaurantStore(),
        email_pipeline=email_pipeline,
        max_workers=1,
    )
    try:
        job_id = orchestrator.start_job(zone_ids, options)
    finally:
        orchestrator.shutdown(wait=True)
        if email_pipeline is not None:
            email_pipeline.close()
    return orchestrator.get_job_status(job_id)


def run_enrich_job(zone_id: str, limit: int) -> dict:
    """Discover emails for persisted restaurants of a zone that still lack one."""
    settings = get_settings()
    init_pool()

    store = RestaurantStore()
    resolver = ZoneConfigResolver(ZoneStore(), ttl_seconds=settings.zone_config_ttl_seconds)
    config = resolver.resolve(zone_id)
    restaurants = store.pending_email_lookups(config.zone.id, limit=limit)
    logger.info("Looking up emails for %d restaurants in %s", len(restaurants), config.zone.label)

    found = 0
    with EmailDiscoveryPipeline(settings=settings) as pipeline:
        outcomes = pipeline.discover_batch(
            restaurants,
            concurrency=config.scraping.concurrency,
            delay_seconds=config.scraping.delay_seconds,
            scraping=config.scraping,
        )
        for outcome in outcomes:
            if outcome.candidate:
                store.update_email(outcome.restaurant.google_place_id, outcome.candidate.email)
                found += 1

    return {"zone": config.zone.label, "checked": len(restaurants), "emails_found": found}


def run_connection_check() -> dict:
    """Confirm the Places key and quota with one small nearby search."""
    settings = get_settings()
    if not settings.google_api_key:
        raise ConfigError("GOOGLE_API_KEY is required")
    return google_places.check_connection(settings.google_api_key)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Zone-scoped restaurant scraping")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scrape = subparsers.add_parser("scrape", help="Search and persist restaurants for zones")
    scrape.add_argument("zones", nargs="+", help="Zone ids or zone codes, processed in order")
    scrape.add_argument(
        "--delay-ms",
        dest="delay_ms",
        type=int,
        default=settings.zone_delay_ms,
        help="Pause between zones in milliseconds",
    )
    scrape.add_argument(
        "--max-results",
        dest="max_results",
        type=int,
        default=settings.max_results_per_zone,
        help="Maximum restaurants to persist per zone",
    )
    scrape.add_argument(
        "--no-emails",
        dest="extract_emails",
        action="store_false",
        default=settings.extract_emails,
        help="Skip website email discovery",
    )

    enrich = subparsers.add_parser("enrich", help="Discover emails for persisted restaurants")
    enrich.add_argument("zone", help="Zone id or zone code")
    enrich.add_argument("--limit", type=int, default=100, help="Maximum restaurants to inspect")

    subparsers.add_parser("check", help="Verify Google Places connectivity")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "scrape":
        summary = run_scrape_job(
            args.zones,
            JobOptions(delay_ms=args.delay_ms, max_results=args.max_results, extract_emails=args.extract_emails),
        )
    elif args.command == "enrich":
        summary = run_enrich_job(args.zone, args.limit)
    else:
        summary = run_connection_check()
    print(json.dumps(summary, indent=2, default=str))
    if args.command == "check" and not summary.get("success"):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
