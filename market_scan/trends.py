"""Google Trends stability checks and full-SERP demand signals.

Trend data comes from SerpAPI's `google_trends` engine; demand signals come
from the same `google` engine the signal fetcher uses, but keep the extra
SERP features (reviews, related searches, People Also Ask) that the cheap
signal extraction throws away.
"""

import asyncio
import logging
import statistics
from dataclasses import dataclass
from typing import Any

from .models import (
    ConsolidatedValidation,
    DemandSignals,
    OrganicResult,
    TrendValidation,
    flag_code,
)
from .serp import PAYLOAD_ERRORS, ProviderError, SerpClient, extract_domain

logger = logging.getLogger(__name__)

# Google Trends DMA (metro) codes for major US markets, keyed "city-st"
METRO_DMA_CODES = {
    "arlington-va": "US-DC-511",
    "alexandria-va": "US-DC-511",
    "washington-dc": "US-DC-511",
    "bethesda-md": "US-DC-511",
    "new york-ny": "US-NY-501",
    "brooklyn-ny": "US-NY-501",
    "jersey city-nj": "US-NY-501",
    "los angeles-ca": "US-CA-803",
    "pasadena-ca": "US-CA-803",
    "long beach-ca": "US-CA-803",
    "chicago-il": "US-IL-602",
    "naperville-il": "US-IL-602",
    "dallas-tx": "US-TX-623",
    "fort worth-tx": "US-TX-623",
    "plano-tx": "US-TX-623",
    "houston-tx": "US-TX-618",
    "philadelphia-pa": "US-PA-504",
    "phoenix-az": "US-AZ-753",
    "scottsdale-az": "US-AZ-753",
    "san francisco-ca": "US-CA-807",
    "oakland-ca": "US-CA-807",
    "san jose-ca": "US-CA-807",
    "boston-ma": "US-MA-506",
    "cambridge-ma": "US-MA-506",
    "atlanta-ga": "US-GA-524",
    "miami-fl": "US-FL-528",
    "fort lauderdale-fl": "US-FL-528",
    "seattle-wa": "US-WA-819",
    "bellevue-wa": "US-WA-819",
    "denver-co": "US-CO-751",
    "boulder-co": "US-CO-751",
    "minneapolis-mn": "US-MN-613",
    "detroit-mi": "US-MI-505",
    "san diego-ca": "US-CA-825",
    "tampa-fl": "US-FL-539",
    "orlando-fl": "US-FL-534",
    "austin-tx": "US-TX-635",
    "portland-or": "US-OR-820",
    "las vegas-nv": "US-NV-839",
}

STATE_NAMES = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}

# SerpAPI reports these as errors; for us they just mean "nobody searches this"
NO_RESULTS_PATTERNS = ("hasn't returned any results", "no results", "not enough search volume")

SPARSE_FLAG_CODES = ("NO_TREND_DATA", "NO_SEARCH_INTEREST", "INSUFFICIENT_TREND_DATA")


@dataclass(frozen=True)
class TrendPolicy:
    min_data_points: int = 26  # ~6 months of weekly points
    spike_ratio: float = 3.0
    volatile_above: float = 0.5
    direction_change: float = 0.2
    low_interest_below: float = 10
    stable_volatility_below: float = 0.3
    sparse_penalty: int = 30
    spike_penalty: int = 40
    weak_interest_below: float = 20
    weak_interest_penalty: int = 20
    volatility_penalty: int = 20
    decline_penalty: int = 10


DEFAULT_TREND_POLICY = TrendPolicy()


def empty_trend(flag: str | None = None, geo_level: str = "US") -> TrendValidation:
    return TrendValidation(flags=[flag] if flag else [], geo_level=geo_level)


def analyze_trend(values: list[float], policy: TrendPolicy = DEFAULT_TREND_POLICY) -> TrendValidation:
    """
    Score a weekly interest series (0-100) for stability.

    Spikes are peaks more than policy.spike_ratio times the median; the
    direction compares the averages of the first and second halves, unless
    the series is volatile. Confidence starts at 100 and loses points for
    sparse data, spikes, weak interest, volatility and decline.
    """
    if not values:
        return empty_trend("NO_TREND_DATA: Google Trends returned no data points")

    avg = statistics.fmean(values)
    peak = max(values)
    low = min(values)
    median = statistics.median(values)
    stddev = statistics.pstdev(values)

    spike_ratio = peak / median if median > 0 else 0.0
    spike = spike_ratio > policy.spike_ratio
    volatility = stddev / avg if avg > 0 else 0.0

    half = len(values) // 2
    first, second = values[:half], values[half:]
    first_avg = statistics.fmean(first) if first else 0.0
    second_avg = statistics.fmean(second) if second else 0.0
    change = (second_avg - first_avg) / first_avg if first_avg > 0 else 0.0

    if volatility > policy.volatile_above:
        direction = "volatile"
    elif change > policy.direction_change:
        direction = "growing"
    elif change < -policy.direction_change:
        direction = "declining"
    else:
        direction = "flat"

    all_zero = all(v == 0 for v in values)
    nonzero = sum(1 for v in values if v > 0)
    sparse = nonzero < policy.min_data_points

    flags: list[str] = []
    if all_zero:
        flags.append("NO_SEARCH_INTEREST: Zero search interest indicates no market demand")
    elif sparse:
        flags.append(
            f"INSUFFICIENT_TREND_DATA: Only {nonzero} weeks of meaningful data "
            f"(expected {policy.min_data_points}+)"
        )
    if spike:
        flags.append(
            f"SPIKE_ANOMALY: Peak {spike_ratio:.1f}x median - single event may be inflating averages"
        )
    if avg < policy.low_interest_below:
        flags.append(f"LOW_SEARCH_INTEREST: Average interest below {policy.low_interest_below:g}/100")
    if direction == "declining":
        flags.append(f"DECLINING_TREND: {abs(change * 100):.0f}% decrease in recent months")
    if direction == "volatile":
        flags.append("HIGH_VOLATILITY: Inconsistent search patterns")

    confidence = 100
    if all_zero:
        confidence = 0
    elif sparse:
        confidence -= policy.sparse_penalty
    if spike:
        confidence -= policy.spike_penalty
    if avg < policy.weak_interest_below:
        confidence -= policy.weak_interest_penalty
    if volatility > policy.stable_volatility_below:
        confidence -= policy.volatility_penalty
    if direction == "declining":
        confidence -= policy.decline_penalty

    return TrendValidation(
        direction=direction,
        confidence_percent=max(0, confidence),
        spike_detected=spike,
        spike_ratio=round(spike_ratio, 1),
        is_stable=not spike and volatility < policy.stable_volatility_below,
        average_interest=round(avg, 1),
        max_interest=peak,
        min_interest=low,
        median_interest=median,
        change_percent=round(change * 100, 1),
        flags=flags,
    )


def is_trend_sparse(trend: TrendValidation, policy: TrendPolicy = DEFAULT_TREND_POLICY) -> bool:
    return (
        trend.confidence_percent == 0
        or len(trend.data_points) < policy.min_data_points
        or all(value == 0 for _, value in trend.data_points)
        or any(flag_code(f) in SPARSE_FLAG_CODES for f in trend.flags)
    )


def build_geo_levels(city: str, state: str | None) -> list[str]:
    """Trend geos to try, most specific first.

    >>> build_geo_levels("New York", "NY")
    ['US-NY-501', 'US-NY', 'US']
    >>> build_geo_levels("Smallville", None)
    ['US']
    """
    levels: list[str] = []
    dma = METRO_DMA_CODES.get(f"{city.lower().strip()}-{(state or '').lower().strip()}")
    if dma:
        levels.append(dma)
    code = (state or "").upper().strip()
    if len(code) == 2 and f"US-{code}" not in levels:
        levels.append(f"US-{code}")
    levels.append("US")
    return levels


def calculate_demand_confidence(
    lsa_count: int,
    ads_count: int,
    local_pack_count: int,
    total_reviews: int,
    related_count: int,
    paa_count: int,
) -> str:
    score = 0
    if lsa_count > 0:
        score += 30  # providers already paying for leads
    if ads_count > 0:
        score += 20
    if local_pack_count >= 3:
        score += 15
    if total_reviews > 100:
        score += 15
    elif total_reviews > 50:
        score += 10
    if related_count >= 5:
        score += 10
    elif related_count >= 3:
        score += 5
    if paa_count >= 3:
        score += 10
    elif paa_count >= 1:
        score += 5

    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    if score >= 20:
        return "low"
    return "unvalidated"


def extract_organic_results(payload: dict[str, Any], limit: int = 10) -> list[OrganicResult]:
    organic = payload.get("organic_results") or []
    return [
        OrganicResult(
            position=r.get("position") or i,
            domain=r.get("domain") or extract_domain(r.get("link") or r.get("displayed_link") or "unknown"),
            title=r.get("title") or "",
        )
        for i, r in enumerate(organic[:limit], start=1)
    ]


def extract_demand_signals(payload: dict[str, Any]) -> DemandSignals:
    """Demand signals from a full `google` SERP payload."""
    places = (payload.get("local_results") or {}).get("places") or []
    lsas = payload.get("local_service_ads") or []
    ads = payload.get("ads") or []
    related = [r["query"] for r in payload.get("related_searches") or [] if r.get("query")]
    paa = [q["question"] for q in payload.get("related_questions") or [] if q.get("question")]

    reviews = [p.get("reviews") or 0 for p in places]
    ratings = [p.get("rating") or 0 for p in places]
    total_reviews = sum(reviews)
    avg_rating = round(sum(ratings) / len(ratings), 1) if ratings else 0.0

    return DemandSignals(
        lsa_present=len(lsas) > 0,
        lsa_count=len(lsas),
        paid_ads_count=len(ads),
        local_pack_count=len(places),
        local_pack_total_reviews=total_reviews,
        local_pack_avg_rating=avg_rating,
        established_businesses=sum(1 for r in reviews if r > 50),
        related_searches=related,
        people_also_ask=paa,
        demand_confidence=calculate_demand_confidence(
            len(lsas), len(ads), len(places), total_reviews, len(related), len(paa)
        ),
        organic_results_count=len(extract_organic_results(payload)),
    )


class TrendClient:
    """
    Consolidated market validation: one trend series plus one full SERP.

    Shares the SerpClient's key, timeout and transport.
    """

    def __init__(self, serp: SerpClient, policy: TrendPolicy = DEFAULT_TREND_POLICY):
        self.serp = serp
        self.policy = policy

    @property
    def is_configured(self) -> bool:
        return self.serp.is_configured

    async def fetch_trend(self, keyword: str, geo: str) -> TrendValidation:
        """One Google Trends series for the last 12 months at a single geo."""
        params = {
            "engine": "google_trends",
            "q": keyword,
            "geo": geo,
            "data_type": "TIMESERIES",
            "date": "today 12-m",
        }
        try:
            data = await self.serp.search(params)
        except ProviderError as e:
            if any(p in str(e).lower() for p in NO_RESULTS_PATTERNS):
                logger.info("No Google Trends data for %r (%s)", keyword, geo)
                return empty_trend(
                    "NO_TREND_DATA: Google Trends has no data for this keyword - likely very low search volume",
                    geo_level=geo,
                )
            raise

        timeline = (data.get("interest_over_time") or {}).get("timeline_data") or []
        points: list[tuple[str, float]] = []
        for point in timeline:
            values = point.get("values") or [{}]
            points.append((point.get("date", ""), values[0].get("extracted_value") or 0))

        trend = analyze_trend([value for _, value in points], self.policy)
        trend.data_points = points
        trend.geo_level = geo
        return trend

    async def fetch_trend_with_fallback(self, keyword: str, city: str, state: str | None) -> TrendValidation:
        """Try metro, then state, then national until the series is usable."""
        levels = build_geo_levels(city, state)
        for geo in levels:
            trend = await self.fetch_trend(keyword, geo)
            if geo == "US" or not is_trend_sparse(trend, self.policy):
                break
            logger.debug("Sparse trend data for %r at %s, trying next level", keyword, geo)

        if trend.geo_level == "US" and len(levels) > 1:
            trend.flags.append("GEO_FALLBACK: No regional data available, showing national trends")
        return trend

    async def fetch_full_serp(self, category: str, city: str, state: str | None) -> dict[str, Any]:
        state_name = STATE_NAMES.get((state or "").upper().strip(), state)
        location = f"{city}, {state_name}, United States" if state_name else city
        params = self.serp.google_params(category, city, state, num=20)
        params["location"] = location
        return await self.serp.search(params)

    async def _trend_or_error(self, keyword: str, city: str, state: str | None) -> TrendValidation:
        try:
            return await self.fetch_trend_with_fallback(keyword, city, state)
        except (ProviderError, *PAYLOAD_ERRORS) as e:
            logger.warning("Trend fetch failed for %r: %s", keyword, e)
            return empty_trend(f"TREND_FETCH_ERROR: {e}")

    async def validate_market_keyword_with_serp_data(
        self,
        category: str,
        city: str,
        state: str | None,
    ) -> ConsolidatedValidation:
        """
        Fetch the trend series and full SERP for a category concurrently.

        The trend keyword is the bare category (location goes through geo).
        A failed or unreadable SERP half raises ProviderError; a failed trend
        half degrades to an empty trend carrying a TREND_FETCH_ERROR flag.
        """
        keyword = category.strip()
        trend, serp = await asyncio.gather(
            self._trend_or_error(keyword, city, state),
            self.fetch_full_serp(category, city, state),
            return_exceptions=True,
        )
        if isinstance(serp, BaseException):
            if isinstance(serp, ProviderError):
                raise serp
            raise ProviderError(f"SERP search failed: {serp}") from serp
        if isinstance(trend, BaseException):
            raise ProviderError(f"Trend validation failed: {trend}") from trend

        try:
            demand = extract_demand_signals(serp)
            organic = extract_organic_results(serp)
            total_results = (serp.get("search_information") or {}).get("total_results") or 0
        except PAYLOAD_ERRORS as e:
            raise ProviderError(f"Unreadable SerpAPI response: {e}") from e

        logger.info(
            "Validated %r: trend confidence=%s direction=%s demand=%s",
            category,
            trend.confidence_percent,
            trend.direction,
            demand.demand_confidence,
        )
        return ConsolidatedValidation(
            trend_validation=trend,
            demand_signals=demand,
            organic_results=organic,
            total_results=total_results,
        )
