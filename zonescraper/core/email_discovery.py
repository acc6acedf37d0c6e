"""Website inspection utilities for discovering a restaurant's contact email."""

from __future__ import annotations

import logging
import random
import re
import threading
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError, sync_playwright
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from zonescraper.core.chain import first_success, run_in_batches
from zonescraper.core.config import Settings, get_settings
from zonescraper.core.zone_config import USER_AGENTS
from zonescraper.models import EmailCandidate, RestaurantRecord, ScrapingConfig

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
DEFAULT_MAX_RETRIES = 3
RENDER_SETTLE_MS = 2000
BLOCKED_STATUSES = {403, 429}
CONTACT_PAGE_CANDIDATES = (
    "/contact",
    "/contact-us",
    "/about",
    "/about-us",
    "/info",
    "/location",
    "/locations",
    "/hours",
    "/contact.html",
    "/contact.php",
)

EMAIL_REGEX = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
EXCLUDED_EMAIL_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"noreply",
        r"no-reply",
        r"donotreply",
        r"webmaster",
        r"postmaster",
        r"mailer-daemon",
        r"test@",
        r"^admin@.*\.com$",
    )
)
PLACEHOLDER_DOMAIN_REGEX = re.compile(r"(^|\.)example\.", re.IGNORECASE)
BUSINESS_TOKENS = (
    "info",
    "contact",
    "hello",
    "mail",
    "office",
    "admin",
    "manager",
    "owner",
    "restaurant",
    "reservations",
    "booking",
)
FREE_MAIL_DOMAINS = {"gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com", "icloud.com", "live.com", "msn.com"}
# Common asset suffixes that the email pattern picks up from srcset/filenames.
_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".css", ".js")


class BlockedError(requests.RequestException):
    """Raised when a site answers with an access-denied or rate-limit status."""


@dataclass(frozen=True)
class EmailOutcome:
    restaurant: RestaurantRecord
    candidate: Optional[EmailCandidate]
    error: Optional[str] = None

    @property
    def email(self) -> Optional[str]:
        return self.candidate.email if self.candidate else None


def website_domain(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def is_business_email(email: str, own_domain: str = "") -> bool:
    """Reject role/system addresses and template placeholders.

    Placeholder domains (``example.com`` and friends) are only rejected when
    they are not the site's own domain.
    """
    if email.endswith(_ASSET_SUFFIXES):
        return False
    if any(pattern.search(email) for pattern in EXCLUDED_EMAIL_PATTERNS):
        return False
    domain = email.partition("@")[2]
    return not (PLACEHOLDER_DOMAIN_REGEX.search(domain) and domain != own_domain)


def extract_emails(text: str, own_domain: str = "") -> List[str]:
    """Return lower-cased business emails in first-seen order."""
    emails: List[str] = []
    for match in EMAIL_REGEX.finditer(text or ""):
        email = match.group(0).lower().strip()
        if email not in emails and is_business_email(email, own_domain):
            emails.append(email)
    return emails


def score_email(email: str, domain: str) -> int:
    local, _, email_domain = email.partition("@")
    score = 0
    if domain and email_domain == domain:
        score += 100
    if any(token in local for token in BUSINESS_TOKENS):
        score += 50
    if email_domain in FREE_MAIL_DOMAINS:
        score -= 20
    if len(email) < 30:
        score += 10
    if any(char.isdigit() for char in local):
        score -= 5
    return score


def select_best_email(emails: Sequence[str], website: str, strategy: str) -> Optional[EmailCandidate]:
    if not emails:
        return None
    if len(emails) == 1:
        return EmailCandidate(emails[0], strategy)

    domain = website_domain(website)
    scored = [EmailCandidate(email, strategy, score_email(email, domain)) for email in emails]
    # max() keeps the first of equal scores, so ties go to first-seen order.
    return max(scored, key=lambda candidate: candidate.score)


class PlaywrightRenderer:
    """Render a page in headless Chromium and return its final markup."""

    def __init__(self, timeout_ms: int = REQUEST_TIMEOUT * 1000) -> None:
        self._timeout_ms = timeout_ms

    def render(self, url: str, user_agent: Optional[str] = None, timeout_ms: Optional[int] = None) -> str:
        # Sync Playwright is bound to the thread that started it, so each
        # render owns its browser; discovery runs in worker threads.
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(headless=True)
            try:
                page = browser.new_page(user_agent=user_agent)
                page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms or self._timeout_ms)
                page.wait_for_timeout(RENDER_SETTLE_MS)
                return page.content()
            finally:
                browser.close()


def build_session(max_retries: int) -> requests.Session:
    """Session retrying connection errors and 5xx answers ``max_retries`` times."""
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("GET",),
        raise_on_status=False,
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class EmailDiscoveryPipeline:
    """Find the most plausible contact email for a website.

    Strategies run in order (plain fetch, rendered fetch, contact pages) and
    the first one yielding an email wins. Failures never reach the caller.
    Timeout, user agents and retry count come from the zone's
    :class:`ScrapingConfig` when one is given, otherwise from settings.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        renderer: Optional[PlaywrightRenderer] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.timeout = self.settings.enrich_request_timeout
        self._fixed_session = session
        self._sessions: Dict[int, requests.Session] = {}
        self._lock = threading.Lock()
        self.renderer = renderer
        if self.renderer is None and self.settings.enrich_use_js_renderer:
            self.renderer = PlaywrightRenderer(timeout_ms=self.timeout * 1000)

    def session_for(self, max_retries: int) -> requests.Session:
        if self._fixed_session is not None:
            return self._fixed_session
        with self._lock:
            session = self._sessions.get(max_retries)
            if session is None:
                session = build_session(max_retries)
                session.headers.update(
                    {
                        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                        "Accept-Language": "en-US,en;q=0.5",
                    }
                )
                self._sessions[max_retries] = session
            return session

    def _user_agent(self, scraping: Optional[ScrapingConfig]) -> str:
        return random.choice((scraping and scraping.user_agents) or USER_AGENTS)

    def _timeout(self, scraping: Optional[ScrapingConfig]) -> float:
        return scraping.timeout_seconds if scraping else self.timeout

    def fetch(self, url: str, scraping: Optional[ScrapingConfig] = None) -> str:
        max_retries = scraping.max_retries if scraping else DEFAULT_MAX_RETRIES
        response = self.session_for(max_retries).get(
            url,
            timeout=self._timeout(scraping),
            allow_redirects=True,
            headers={"User-Agent": self._user_agent(scraping)},
        )
        if response.status_code in BLOCKED_STATUSES:
            raise BlockedError(f"{url} answered {response.status_code}")
        response.raise_for_status()
        return response.text

    def _emails_from_markup(self, markup: str, website: str) -> List[str]:
        domain = website_domain(website)
        emails = extract_emails(markup, domain)
        if emails:
            return emails
        # Entity-encoded addresses only appear once the markup is parsed.
        return extract_emails(BeautifulSoup(markup, "html.parser").get_text(" ", strip=True), domain)

    def scrape_plain(self, website: str, scraping: Optional[ScrapingConfig] = None) -> Optional[EmailCandidate]:
        markup = self.fetch(website, scraping)
        return select_best_email(self._emails_from_markup(markup, website), website, "http")

    def scrape_rendered(self, website: str, scraping: Optional[ScrapingConfig] = None) -> Optional[EmailCandidate]:
        if self.renderer is None:
            return None
        try:
            markup = self.renderer.render(
                website,
                user_agent=self._user_agent(scraping),
                timeout_ms=int(self._timeout(scraping) * 1000),
            )
        except PlaywrightError as exc:
            logger.debug("Playwright failed for %s: %s", website, exc)
            return None
        return select_best_email(self._emails_from_markup(markup, website), website, "browser")

    def scrape_contact_pages(self, website: str, scraping: Optional[ScrapingConfig] = None) -> Optional[EmailCandidate]:
        for path in CONTACT_PAGE_CANDIDATES:
            contact_url = urljoin(website, path)
            try:
                markup = self.fetch(contact_url, scraping)
            except requests.RequestException as exc:
                logger.debug("Contact page %s unavailable: %s", contact_url, exc)
                continue
            candidate = select_best_email(self._emails_from_markup(markup, website), website, "contact_page")
            if candidate:
                return candidate
        return None

    def discover(self, website: Optional[str], scraping: Optional[ScrapingConfig] = None) -> Optional[EmailCandidate]:
        if not website:
            return None
        strategies = (
            ("http", partial(self.scrape_plain, scraping=scraping)),
            ("browser", partial(self.scrape_rendered, scraping=scraping)),
            ("contact_page", partial(self.scrape_contact_pages, scraping=scraping)),
        )
        matched = first_success(strategies, website)
        if matched is None:
            logger.info("No email found for %s", website)
            return None
        logger.info("Email found for %s via %s", website, matched[0])
        return matched[1]

    def discover_batch(
        self,
        restaurants: Sequence[RestaurantRecord],
        *,
        concurrency: int = 3,
        delay_seconds: float = 2.0,
        scraping: Optional[ScrapingConfig] = None,
        on_progress: Optional[Callable[[int, int, EmailOutcome], None]] = None,
    ) -> List[EmailOutcome]:
        targets = [restaurant for restaurant in restaurants if restaurant.website]
        total = len(targets)
        outcomes: List[EmailOutcome] = []

        for restaurant, candidate, error in run_in_batches(
            targets,
            lambda item: self.discover(item.website, scraping),
            batch_size=max(1, concurrency),
            delay_seconds=delay_seconds,
        ):
            if error is not None:
                logger.error("Email extraction failed for %s: %s", restaurant.website, error)
                outcome = EmailOutcome(restaurant, None, str(error))
            else:
                outcome = EmailOutcome(restaurant, candidate)
            outcomes.append(outcome)
            if on_progress:
                on_progress(len(outcomes), total, outcome)

        found = sum(1 for outcome in outcomes if outcome.candidate)
        if total:
            logger.info(
                "Batch email extraction completed: total=%d found=%d rate=%.1f%%",
                total,
                found,
                found * 100.0 / total,
            )
        return outcomes

    def close(self) -> None:
        if self._fixed_session is not None:
            self._fixed_session.close()
        with self._lock:
            for session in self._sessions.values():
                session.close()
            self._sessions.clear()

    def __enter__(self) -> "EmailDiscoveryPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
