"""Scan orchestration: triage and full scans as async streams of ScanEvents.

A ScanSession owns the state the caller sees (status, progress, results,
summary) and yields a ScanEvent after every step, so partial results are
visible mid-scan. Categories are processed strictly one at a time in tier
order; the only shared resource is the fetcher's signal cache.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import AsyncIterator, Awaitable, Callable

from .config import DEFAULT_SCAN_CONFIG, ScanConfig
from .models import (
    CategoryAnalysisResult,
    CityProfile,
    ConsolidatedValidation,
    ResearchProgress,
    ScanEvent,
    SerpSignals,
    SkipEntry,
    TriageResultData,
    ValidationSummary,
    flag_code,
)
from .serp import ConfigurationError, SerpClient, is_aggregator_domain
from .tiers import get_categories_to_scan, get_category_tier

logger = logging.getLogger(__name__)

TOP_OPPORTUNITY_LIMIT = 3


class ScanInProgressError(RuntimeError):
    """Raised when a session is asked to start a scan while one is running."""


class CancellationToken:
    """Cooperative stop flag, checked between categories and after awaits.

    A category already in flight when cancel() is called still completes.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def signals_from_validation(validation: ConsolidatedValidation) -> SerpSignals:
    """Rebuild cheap SERP signals from a consolidated validation snapshot."""
    demand = validation.demand_signals
    domains = tuple(r.domain for r in validation.organic_results[:5])
    return SerpSignals(
        has_lsas=demand.lsa_present,
        lsa_count=demand.lsa_count,
        local_pack_count=demand.local_pack_count,
        top_organic_domains=domains,
        ad_count=demand.paid_ads_count,
        aggregator_positions=tuple(i for i, d in enumerate(domains, start=1) if is_aggregator_domain(d)),
        total_results=validation.total_results,
    )


def rank_top_opportunities(
    results: list[CategoryAnalysisResult],
    limit: int = TOP_OPPORTUNITY_LIMIT,
) -> list[CategoryAnalysisResult]:
    """Strong verdicts, unflagged before flagged, then by score descending."""
    strong = [r for r in results if r.verdict == "strong"]
    return sorted(strong, key=lambda r: (bool(r.validation_flags), -r.serp_score))[:limit]


def build_skip_list(results: list[CategoryAnalysisResult]) -> list[SkipEntry]:
    skips = []
    for r in results:
        if r.verdict != "skip":
            continue
        if r.validation_flags:
            reason = r.validation_flags[0]
        else:
            reason = r.reasoning.split(".")[0].strip() or "Not recommended"
        skips.append(SkipEntry(category=r.category, reason=reason))
    return skips


def summarize_validation(
    results: list[CategoryAnalysisResult],
    critical_codes: tuple = DEFAULT_SCAN_CONFIG.critical_flag_codes,
) -> ValidationSummary:
    flags = [f for r in results for f in r.validation_flags]
    return ValidationSummary(
        total_flags=len(flags),
        critical_warnings=list(dict.fromkeys(f for f in flags if flag_code(f) in critical_codes)),
        trends_validated=sum(1 for r in results if r.trend_confidence is not None),
        overridden_count=sum(1 for r in results if r.manual_override),
    )


class ScanSession:
    """
    One caller's scan state plus the two scan entry points.

    Args:
        fetcher: SerpClient (or anything with is_configured, fetch_serp_data
            and run_triage_search)
        analyzer: a VerdictAnalyzer; called off the event loop
        validator: TrendClient for the consolidated path, or None to always
            use the decoupled fetch + analyze path
        config: category tables and throttling knobs
        sleep: awaited between non-cached fetches (tests pass a recorder)
    """

    def __init__(
        self,
        fetcher: SerpClient,
        analyzer,
        validator=None,
        config: ScanConfig = DEFAULT_SCAN_CONFIG,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.validator = validator
        self.config = config
        self._sleep = sleep
        self._token: CancellationToken | None = None
        self.is_scanning = False
        self._reset(None, None)

    def _reset(self, city: str | None, state: str | None) -> None:
        self.city = city
        self.state = state
        self.status = "idle"
        self.error: str | None = None
        self.cancelled = False
        self.progress = ResearchProgress()
        self.results: list[CategoryAnalysisResult] = []
        self.triage: TriageResultData | None = None
        self.summary = ValidationSummary()
        self.top_opportunities: list[CategoryAnalysisResult] = []
        self.skip_list: list[SkipEntry] = []

    def _begin(self, city: str, state: str | None, token: CancellationToken | None) -> CancellationToken:
        if self.is_scanning:
            raise ScanInProgressError("A scan is already running for this session.")
        self._reset(city, state)
        self._token = token or CancellationToken()
        self.is_scanning = True
        self.status = "loading"
        return self._token

    def _event(self, kind: str, **extra) -> ScanEvent:
        return ScanEvent.snapshot(kind, self.progress, self.results, **extra)

    def _fail(self, message: str) -> ScanEvent:
        self.status = "error"
        self.error = message
        self.progress.current_category = None
        return self._event("error", message=message)

    def _count_fetch(self, from_cache: bool) -> None:
        if from_cache:
            self.progress.cache_hits += 1
        else:
            self.progress.searches_used += 1

    def stop_scan(self) -> None:
        """Ask the running scan to stop before its next category."""
        if self._token is not None:
            self._token.cancel()

    async def run_triage_scan(
        self,
        city: str,
        state: str | None,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[ScanEvent]:
        """One cheap search and a go/no-go recommendation for a full scan."""
        token = self._begin(city, state, token)
        self.progress.total_count = 1
        try:
            yield self._event("started")
            if not self.fetcher.is_configured:
                yield self._fail(str(ConfigurationError("SERP_API_KEY not set.")))
                return

            self.progress.current_category = self.config.triage_query
            fetch = await self.fetcher.run_triage_search(city, state)
            if fetch.error:
                yield self._fail(f"Triage search failed: {fetch.error}")
                return
            self._count_fetch(fetch.from_cache)
            if token.cancelled:
                yield self._finish_cancelled()
                return

            triage = await asyncio.to_thread(self.analyzer.analyze_triage, city, state, fetch.signals)
            self.triage = triage
            self.progress.completed_count = 1
            self.progress.current_category = None
            self.status = "success"
            logger.info("Triage for %s: %s (worth full scan: %s)", city, triage.overall_signal, triage.worth_full_scan)
            yield self._event("triage", triage=triage)
        except Exception as e:
            logger.exception("Triage scan failed for %s", city)
            yield self._fail(str(e) or e.__class__.__name__)
        finally:
            self.is_scanning = False

    async def run_full_scan(
        self,
        city: str,
        state: str | None,
        profile: CityProfile,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[ScanEvent]:
        """
        Scan every planned category in tier order, one event per category.

        Ends with a `complete`, `cancelled` or `error` event. Fetch failures
        skip the category; analyzer failures outside the consolidated path
        end the scan with status error.
        """
        token = self._begin(city, state, token)
        delay = self.config.delay_between_searches_ms / 1000

        try:
            plan = get_categories_to_scan(profile, self.config)
            categories = plan.ordered()
            self.progress.total_count = plan.total
            yield self._event("started")
            if not self.fetcher.is_configured:
                yield self._fail(str(ConfigurationError("SERP_API_KEY not set.")))
                return

            logger.info("Full scan of %s: %d categories", city, plan.total)
            for index, category in enumerate(categories):
                if token.cancelled:
                    break
                self.progress.current_category = category
                tier = get_category_tier(category, profile, self.config)

                result, fetched = await self._process_category(category, tier, city, state)
                self.progress.completed_count += 1
                if result is not None:
                    self.results.append(result)
                    yield self._event("category", result=result)
                else:
                    yield self._event("skipped", message=f"Skipped {category}: fetch failed")

                if token.cancelled:
                    break
                if fetched and index < len(categories) - 1 and delay > 0:
                    await self._sleep(delay)
        except Exception as e:
            logger.exception("Full scan failed for %s", city)
            yield self._fail(str(e) or e.__class__.__name__)
            return
        finally:
            self.is_scanning = False

        if token.cancelled:
            yield self._finish_cancelled()
            return
        self.progress.current_category = None
        self._aggregate()
        self.status = "success"
        logger.info(
            "Scan of %s complete: %d results, %d searches, %d cache hits",
            city,
            len(self.results),
            self.progress.searches_used,
            self.progress.cache_hits,
        )
        yield self._event("complete", summary=self.summary)

    def _finish_cancelled(self) -> ScanEvent:
        self.status = "idle"
        self.cancelled = True
        self.progress.current_category = None
        self._aggregate()
        logger.info("Scan of %s cancelled after %d categories", self.city, len(self.results))
        return self._event("cancelled", summary=self.summary)

    async def _process_category(
        self,
        category: str,
        tier: str,
        city: str,
        state: str | None,
    ) -> tuple[CategoryAnalysisResult | None, bool]:
        """
        Fetch and analyze one category.

        Returns the result (None when the fetch failed) and whether a
        non-cached fetch was attempted, which decides the throttle delay.
        """
        signals: SerpSignals | None = None

        if self.validator is not None and tier in ("tier1", "conditional"):
            try:
                validation = await self.validator.validate_market_keyword_with_serp_data(category, city, state)
            except Exception as e:
                logger.warning("Consolidated validation failed for %r, falling back: %s", category, e)
            else:
                self.progress.searches_used += 1
                signals = signals_from_validation(validation)
                try:
                    result = await asyncio.to_thread(
                        self.analyzer.analyze,
                        category,
                        city,
                        state,
                        signals,
                        tier,
                        validation.trend_validation,
                        validation.demand_signals,
                    )
                    return result, True
                except Exception as e:
                    logger.warning("Validated analysis failed for %r, falling back: %s", category, e)

        if signals is not None:
            # Reuse the consolidated snapshot instead of paying for a second search
            from_cache, fetched = False, True
        else:
            fetch = await self.fetcher.fetch_serp_data(category, city, state)
            if fetch.error:
                logger.warning("Skipping %r: %s", category, fetch.error)
                return None, not fetch.from_cache
            self._count_fetch(fetch.from_cache)
            signals, from_cache, fetched = fetch.signals, fetch.from_cache, not fetch.from_cache

        result = await asyncio.to_thread(self.analyzer.analyze, category, city, state, signals, tier)
        result.from_cache = from_cache
        return result, fetched

    def _aggregate(self) -> None:
        self.top_opportunities = rank_top_opportunities(self.results)
        self.skip_list = build_skip_list(self.results)
        self.summary = summarize_validation(self.results, self.config.critical_flag_codes)

    def set_manual_override(self, category: str, override: bool) -> CategoryAnalysisResult:
        """Mark one result as manually overridden. Flags are left untouched."""
        normalized = category.lower()
        for result in self.results:
            if result.category.lower() == normalized:
                result.manual_override = override
                break
        else:
            raise KeyError(category)
        self.summary.overridden_count = sum(1 for r in self.results if r.manual_override)
        return result

    def snapshot(self) -> dict:
        """JSON-friendly view of the session, for the HTTP state endpoint."""
        return {
            "city": self.city,
            "state": self.state,
            "status": self.status,
            "is_scanning": self.is_scanning,
            "cancelled": self.cancelled,
            "error": self.error,
            "progress": asdict(self.progress),
            "results": [asdict(r) for r in self.results],
            "triage": asdict(self.triage) if self.triage else None,
            "top_opportunities": [r.category for r in self.top_opportunities],
            "skip_list": [asdict(s) for s in self.skip_list],
            "validation_summary": asdict(self.summary),
            "cache": self.fetcher.cache.stats() if hasattr(self.fetcher, "cache") else None,
        }
