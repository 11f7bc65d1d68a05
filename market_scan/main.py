"""Orchestration: settings -> session -> profile -> triage or full scan."""

import asyncio
import logging
from typing import Callable

import httpx

from .analyzer import ClaudeAnalyzer, HeuristicAnalyzer
from .cache import SignalCache
from .config import DEFAULT_SCAN_CONFIG, ScanConfig, Settings
from .models import Demographics, ScanEvent
from .profile import detect_city_profile, profile_from_traits
from .scanner import ScanSession
from .serp import SerpClient
from .trends import TrendClient

logger = logging.getLogger(__name__)


def build_session(
    settings: Settings | None = None,
    config: ScanConfig | None = None,
    cache: SignalCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ScanSession:
    """
    Wire a ScanSession from environment settings.

    Uses ClaudeAnalyzer when ANTHROPIC_API_KEY is set, the heuristic analyzer
    otherwise, and enables the consolidated trend path unless
    ENABLE_TREND_VALIDATION is off.
    """
    settings = settings or Settings.from_env()
    config = settings.scan_config(config or DEFAULT_SCAN_CONFIG)
    if cache is None:
        cache = SignalCache(ttl_seconds=config.cache_ttl_seconds, max_entries=config.cache_max_entries)

    fetcher = SerpClient(
        settings.serp_api_key,
        cache=cache,
        timeout=config.request_timeout_seconds,
        transport=transport,
        triage_query=config.triage_query,
    )
    if settings.anthropic_api_key:
        analyzer = ClaudeAnalyzer(settings.anthropic_api_key, config=config)
    else:
        analyzer = HeuristicAnalyzer(config=config)
    validator = TrendClient(fetcher) if settings.enable_trend_validation else None

    logger.debug(
        "Session: analyzer=%s trend validation=%s",
        analyzer.__class__.__name__,
        validator is not None,
    )
    return ScanSession(fetcher, analyzer, validator=validator, config=config)


async def scan_market(
    city: str,
    state: str | None,
    demographics: Demographics | None = None,
    lat: float | None = None,
    lng: float | None = None,
    traits: list[str] | None = None,
    triage: bool = False,
    session: ScanSession | None = None,
    on_progress: Callable[[ScanEvent], None] | None = None,
) -> ScanSession:
    """
    Run a triage or full scan for one city and return the finished session.

    Args:
        city, state: market to scan
        demographics, lat, lng: inputs for the city profile
        traits: explicit trait list, used instead of detection when given
        triage: run the single-search triage instead of a full scan
        session: reuse a session (and its cache); a new one if omitted
        on_progress: Optional callback(event) for every ScanEvent

    Raises:
        RuntimeError: if the scan ends in the error state
    """
    session = session or build_session()

    if triage:
        events = session.run_triage_scan(city, state)
    else:
        if traits is not None:
            profile = profile_from_traits(traits, session.config)
        else:
            profile = detect_city_profile(demographics, lat, lng, session.config)
        events = session.run_full_scan(city, state, profile)

    async for event in events:
        if on_progress:
            on_progress(event)

    if session.status == "error":
        raise RuntimeError(session.error or f"Scan of {city} failed")
    return session


def scan_market_sync(
    city: str,
    state: str | None,
    demographics: Demographics | None = None,
    lat: float | None = None,
    lng: float | None = None,
    traits: list[str] | None = None,
    triage: bool = False,
    on_progress: Callable[[ScanEvent], None] | None = None,
) -> ScanSession:
    """Synchronous wrapper for scan_market."""
    return asyncio.run(
        scan_market(city, state, demographics, lat, lng, traits, triage, on_progress=on_progress)
    )
