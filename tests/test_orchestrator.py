import pytest

from zonescraper.core import chain, place_search
from zonescraper.core.config import Settings
from zonescraper.core.db import RestaurantRejectedError
from zonescraper.core.email_discovery import EmailOutcome
from zonescraper.core.zone_config import build_search_config
from zonescraper.jobs import orchestrator
from zonescraper.models import EmailCandidate, JobOptions, RestaurantRecord, ZoneNotFoundError
from zonescraper.vendors.google_places import GooglePlacesError


class DummyExecutor:
    def __init__(self):
        self.submitted = []
        self.shutdown_called = False

    def submit(self, fn, *args):
        self.submitted.append((fn, args))

    def run_all(self):
        for fn, args in self.submitted:
            fn(*args)

    def shutdown(self, wait=True):
        self.shutdown_called = True


class DummyResolver:
    def __init__(self, zones):
        self.configs = {zone.id: build_search_config(zone) for zone in zones}
        self.codes = {zone.code: zone.id for zone in zones}

    def resolve(self, zone_id):
        zone_id = self.codes.get(zone_id, zone_id)
        if zone_id not in self.configs:
            raise ZoneNotFoundError(zone_id)
        return self.configs[zone_id]


class DummySearchClient:
    def __init__(self, results):
        self.results = results
        self.calls = []

    def search_zone(self, config, max_results=None):
        self.calls.append((config.zone.id, max_results))
        return list(self.results.get(config.zone.id, []))


class DummyRestaurantStore:
    def __init__(self, rejected=(), existing=(), error=None):
        self.rejected = set(rejected)
        self.existing = set(existing)
        self.error = error
        self.saved = []
        self.emails = {}

    def upsert_restaurant(self, record):
        if self.error:
            raise self.error
        if record.google_place_id in self.rejected:
            raise RestaurantRejectedError("value too long")
        if record.google_place_id in self.existing:
            return False
        self.existing.add(record.google_place_id)
        self.saved.append(record.google_place_id)
        return True

    def update_email(self, google_place_id, email):
        self.emails[google_place_id] = email


class DummyEmailPipeline:
    def __init__(self, found):
        self.found = found
        self.calls = []

    def discover_batch(self, restaurants, *, concurrency, delay_seconds, scraping=None, on_progress=None):
        self.calls.append(([r.google_place_id for r in restaurants], concurrency, delay_seconds))
        self.scraping = scraping
        outcomes = []
        for index, restaurant in enumerate(restaurants, start=1):
            email = self.found.get(restaurant.google_place_id)
            outcome = EmailOutcome(restaurant, EmailCandidate(email, "http") if email else None)
            if on_progress:
                on_progress(index, len(restaurants), outcome)
            outcomes.append(outcome)
        return outcomes


def records(*place_ids):
    return [RestaurantRecord(name=f"Bistro {place_id}", google_place_id=place_id) for place_id in place_ids]


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(orchestrator.time, "sleep", recorded.append)
    return recorded


def make_orchestrator(zone_factory, search_client, store=None, email_pipeline=None, zones=("z1", "z2")):
    executor = DummyExecutor()
    instance = orchestrator.ScrapingJobOrchestrator(
        resolver=DummyResolver(
            [zone_factory(id=zone_id, code=f"CODE_{zone_id.upper()}", display_name=f"Zone {zone_id}") for zone_id in zones]
        ),
        search_client=search_client,
        restaurant_store=store or DummyRestaurantStore(),
        email_pipeline=email_pipeline,
        executor=executor,
    )
    return instance, executor


def test_start_job_returns_before_work_runs(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A")})
    instance, executor = make_orchestrator(zone_factory, client)

    job_id = instance.start_job(["z1", "z2"])

    status = instance.get_job_status(job_id)
    assert status["status"] == "starting"
    assert status["processed"] == 0
    assert status["total"] == 2
    assert client.calls == []
    assert len(executor.submitted) == 1
    assert [job["id"] for job in instance.list_active_jobs()] == [job_id]


def test_job_runs_zones_in_order_and_moves_to_history(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A", "B"), "z2": records("C")})
    instance, executor = make_orchestrator(zone_factory, client)

    job_id = instance.start_job(["z1", "z2"], JobOptions(delay_ms=1500, max_results=50, extract_emails=False))
    executor.run_all()

    status = instance.get_job_status(job_id)
    assert status["status"] == "completed"
    assert status["processed"] == 2
    assert status["results"] == 3
    assert status["current_zone"] is None
    assert status["ended_at"] is not None
    assert client.calls == [("z1", 50), ("z2", 50)]
    # One pause between the two zones, none after the last.
    assert sleeps == [1.5]
    assert instance.list_active_jobs() == []
    assert [job["id"] for job in instance.list_recent_history()] == [job_id]


def test_results_are_capped_per_zone(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A", "B", "C")})
    store = DummyRestaurantStore()
    instance, executor = make_orchestrator(zone_factory, client, store=store, zones=("z1",))

    instance.start_job(["z1"], JobOptions(max_results=2, extract_emails=False))
    executor.run_all()

    assert store.saved == ["A", "B"]


def test_duplicates_and_rejected_rows_are_not_counted(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A", "B", "C")})
    store = DummyRestaurantStore(rejected={"B"}, existing={"C"})
    instance, executor = make_orchestrator(zone_factory, client, store=store, zones=("z1",))

    job_id = instance.start_job(["z1"], JobOptions(extract_emails=False))
    executor.run_all()

    status = instance.get_job_status(job_id)
    assert status["status"] == "completed"
    assert status["results"] == 1


def test_unknown_zone_is_skipped(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A")})
    instance, executor = make_orchestrator(zone_factory, client, zones=("z1",))

    job_id = instance.start_job(["missing", "z1"], JobOptions(delay_ms=1000, extract_emails=False))
    executor.run_all()

    status = instance.get_job_status(job_id)
    assert status["status"] == "completed"
    # Unresolvable zones are neither counted nor followed by the inter-zone pause.
    assert status["processed"] == 1
    assert status["total"] == 2
    assert sleeps == []
    assert status["results"] == 1
    assert client.calls == [("z1", 100)]


def test_zone_with_failing_provider_does_not_stop_job(monkeypatch, zone_factory, sleeps):
    monkeypatch.setattr(place_search.time, "sleep", lambda _: None)
    monkeypatch.setattr(chain.time, "sleep", lambda _: None)

    def fake_nearby_search(location, radius, api_key, *, keyword=None, place_type=None, pagetoken=None):
        if location.startswith("10.0"):
            raise GooglePlacesError("REQUEST_DENIED")
        return {"status": "OK", "results": [{"place_id": "P1"}, {"place_id": "P2"}]}

    def fake_place_details(place_id, api_key):
        return {
            "place_id": place_id,
            "name": f"Bistro {place_id}",
            "formatted_address": "1 Main St, Springfield, IL 62701, USA",
            "types": ["restaurant"],
            "opening_hours": {"weekday_text": []},
        }

    monkeypatch.setattr(place_search.google_places, "nearby_search", fake_nearby_search)
    monkeypatch.setattr(place_search.google_places, "place_details", fake_place_details)

    store = DummyRestaurantStore()
    client = place_search.PlaceSearchClient(Settings(google_api_key="key", database_url=""))
    executor = DummyExecutor()
    instance = orchestrator.ScrapingJobOrchestrator(
        resolver=DummyResolver([zone_factory(id="z1", latitude=10.0), zone_factory(id="z2")]),
        search_client=client,
        restaurant_store=store,
        executor=executor,
    )

    job_id = instance.start_job(["z1", "z2"], JobOptions(extract_emails=False))
    executor.run_all()

    status = instance.get_job_status(job_id)
    assert status["status"] == "completed"
    assert status["processed"] == 2
    assert status["results"] == 2
    assert sorted(store.saved) == ["P1", "P2"]


def test_fatal_error_marks_job_failed(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A"), "z2": records("B")})
    store = DummyRestaurantStore(error=RuntimeError("database unavailable"))
    instance, executor = make_orchestrator(zone_factory, client, store=store)

    job_id = instance.start_job(["z1", "z2"], JobOptions(extract_emails=False))
    executor.run_all()

    status = instance.get_job_status(job_id)
    assert status["status"] == "failed"
    assert status["error"] == "database unavailable"
    assert status["processed"] == 0
    assert status["ended_at"] is not None
    assert instance.list_active_jobs() == []


def test_email_discovery_updates_counters(zone_factory, sleeps):
    client = DummySearchClient({"z1": records("A", "B")})
    store = DummyRestaurantStore()
    pipeline = DummyEmailPipeline({"A": "info@a.com"})
    instance, executor = make_orchestrator(zone_factory, client, store=store, email_pipeline=pipeline, zones=("z1",))

    job_id = instance.start_job(["z1"])
    executor.run_all()

    status = instance.get_job_status(job_id)
    assert status["emails_found"] == 1
    assert store.emails == {"A": "info@a.com"}
    # Priority 2 zones: concurrency 3, 2 second pause between batches.
    assert pipeline.calls == [(["A", "B"], 3, 2.0)]
    assert pipeline.scraping.max_retries == 3
    assert pipeline.scraping.timeout_seconds == 30.0


def test_email_discovery_skipped_when_disabled(zone_factory, sleeps):
    pipeline = DummyEmailPipeline({"A": "info@a.com"})
    instance, executor = make_orchestrator(
        zone_factory, DummySearchClient({"z1": records("A")}), email_pipeline=pipeline, zones=("z1",)
    )

    instance.start_job(["z1"], JobOptions(extract_emails=False))
    executor.run_all()

    assert pipeline.calls == []


def test_start_job_requires_zones(zone_factory):
    instance, _ = make_orchestrator(zone_factory, DummySearchClient({}))
    with pytest.raises(ValueError):
        instance.start_job([])


def test_unknown_job_id_raises(zone_factory):
    instance, _ = make_orchestrator(zone_factory, DummySearchClient({}))
    with pytest.raises(orchestrator.JobNotFoundError):
        instance.get_job_status("nope")


def test_history_returns_most_recent(zone_factory, sleeps):
    instance, executor = make_orchestrator(zone_factory, DummySearchClient({}), zones=("z1",))
    job_ids = [instance.start_job(["z1"], JobOptions(extract_emails=False)) for _ in range(7)]
    executor.run_all()

    assert [job["id"] for job in instance.list_recent_history()] == job_ids[-5:]
    assert len(instance.list_recent_history(limit=10)) == 7


def test_overlapping_jobs_are_detected_by_resolved_zone(zone_factory, sleeps, caplog):
    instance, executor = make_orchestrator(zone_factory, DummySearchClient({}))
    first = instance.start_job(["z1"], JobOptions(extract_emails=False))
    second = instance.start_job(["CODE_Z1"], JobOptions(extract_emails=False))
    # The first job is mid-way through z1 when the second one reaches it.
    instance.registry.get(first).current_zone_id = "z1"

    with caplog.at_level("WARNING"):
        fn, args = executor.submitted[1]
        fn(*args)

    assert first != second
    assert instance.get_job_status(second)["status"] == "completed"
    assert f"also being scraped by job {first}" in caplog.text


def test_start_job_after_shutdown_leaves_no_active_job(zone_factory):
    class ClosedExecutor:
        def submit(self, fn, *args):
            raise RuntimeError("cannot schedule new futures after shutdown")

    instance = orchestrator.ScrapingJobOrchestrator(
        resolver=DummyResolver([zone_factory()]),
        search_client=DummySearchClient({}),
        restaurant_store=DummyRestaurantStore(),
        executor=ClosedExecutor(),
    )

    with pytest.raises(RuntimeError):
        instance.start_job(["z1"])
    assert instance.list_active_jobs() == []
