"""SerpAPI client: SERP signal extraction, aggregator classification, triage.

Signals are cached per (query, city, state) in a SignalCache so repeated
scans of the same market do not spend searches twice.
"""

import logging
import re
from typing import Any

import httpx

from .cache import SignalCache, make_key
from .config import TRIAGE_QUERY
from .models import SerpFetchResult, SerpSignals

logger = logging.getLogger(__name__)

SERPAPI_ENDPOINT = "https://serpapi.com/search.json"

# Directories and lead marketplaces that crowd out local providers
AGGREGATOR_DOMAINS = (
    "yelp.com",
    "angi.com",
    "thumbtack.com",
    "homeadvisor.com",
    "houzz.com",
    "bark.com",
    "porch.com",
    "networx.com",
    "homeservices.com",
    "angieslist.com",
    "taskrabbit.com",
    "handy.com",
    "homeserve.com",
    "servicemagic.com",
)

TOP_ORGANIC_LIMIT = 5

# Raised by the extractors when a payload section has an unexpected shape
PAYLOAD_ERRORS = (AttributeError, TypeError, KeyError, ValueError)


class ConfigurationError(ValueError):
    """Raised when a required API key or setting is missing."""


class ProviderError(RuntimeError):
    """Raised when SerpAPI fails or returns something unusable."""


def extract_domain(url: str) -> str:
    """Strip protocol, www., and path from a URL to get bare domain.

    >>> extract_domain("https://www.yelp.com/search?find_desc=locksmith")
    'yelp.com'
    """
    domain = re.sub(r"^https?://", "", url)
    domain = re.sub(r"^www\.", "", domain)
    domain = domain.split("/")[0].split("?")[0]
    return domain.lower()


def is_aggregator_domain(domain: str) -> bool:
    """True for an aggregator domain or any of its subdomains.

    >>> is_aggregator_domain("www.yelp.com"), is_aggregator_domain("m.yelp.com")
    (True, True)
    >>> is_aggregator_domain("notyelp.com")
    False
    """
    normalized = re.sub(r"^www\.", "", domain.lower())
    return any(
        normalized == agg or normalized.endswith(f".{agg}") for agg in AGGREGATOR_DOMAINS
    )


def extract_signals(payload: dict[str, Any]) -> SerpSignals:
    """Reduce a SerpAPI `google` response to the signals the analyzer needs."""
    organic = payload.get("organic_results") or []
    places = (payload.get("local_results") or {}).get("places") or []
    lsas = payload.get("local_service_ads") or []
    ads = payload.get("ads") or []

    domains = tuple(
        result.get("domain") or extract_domain(result.get("link", ""))
        for result in organic[:TOP_ORGANIC_LIMIT]
    )
    positions = tuple(i for i, domain in enumerate(domains, start=1) if is_aggregator_domain(domain))

    return SerpSignals(
        has_lsas=len(lsas) > 0,
        lsa_count=len(lsas),
        local_pack_count=len(places),
        top_organic_domains=domains,
        ad_count=len(ads),
        aggregator_positions=positions,
        total_results=(payload.get("search_information") or {}).get("total_results") or 0,
    )


def market_location(city: str, state: str | None) -> str:
    return f"{city}, {state}" if state else city


class SerpClient:
    """
    Thin async wrapper around SerpAPI's search.json endpoint.

    Args:
        api_key: SerpAPI key; None leaves the client unconfigured
        cache: SignalCache shared across scans (a private one if omitted)
        timeout: httpx timeout in seconds
        transport: optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None,
        cache: SignalCache | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        triage_query: str = TRIAGE_QUERY,
    ):
        self.api_key = api_key
        self.cache = cache if cache is not None else SignalCache()
        self.timeout = timeout
        self.triage_query = triage_query
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def search(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run one SerpAPI request and return the decoded JSON body."""
        if not self.api_key:
            raise ConfigurationError("SERP_API_KEY not set.")

        query = {**params, "api_key": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(SERPAPI_ENDPOINT, params=query)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"SerpAPI error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"SerpAPI request failed: {e}") from e
        except ValueError as e:
            raise ProviderError("SerpAPI returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ProviderError("SerpAPI returned an unexpected payload")
        if data.get("error"):
            raise ProviderError(f"SerpAPI error: {data['error']}")
        return data

    def google_params(self, query: str, city: str, state: str | None, **extra) -> dict[str, Any]:
        location = market_location(city, state)
        return {
            "engine": "google",
            "q": f"{query} {location}",
            "location": location,
            "google_domain": "google.com",
            "gl": "us",
            "hl": "en",
            **extra,
        }

    async def fetch_serp_data(self, category: str, city: str, state: str | None) -> SerpFetchResult:
        """
        Fetch SERP signals for one category in one market.

        Cache hits return immediately with from_cache=True. Provider failures
        and unreadable payloads are reported through SerpFetchResult.error
        with empty signals; nothing is cached on failure.
        """
        key = make_key(category, city, state)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %r in %s", category, market_location(city, state))
            return SerpFetchResult(signals=cached, from_cache=True)

        try:
            data = await self.search(self.google_params(category, city, state))
            signals = extract_signals(data)
        except (ConfigurationError, ProviderError) as e:
            logger.warning("SERP fetch failed for %r in %s: %s", category, city, e)
            return SerpFetchResult(signals=SerpSignals(), error=str(e))
        except PAYLOAD_ERRORS as e:
            logger.warning("Unreadable SERP payload for %r in %s: %s", category, city, e)
            return SerpFetchResult(signals=SerpSignals(), error=f"Unreadable SerpAPI response: {e}")

        self.cache.put(key, signals)
        return SerpFetchResult(signals=signals)

    async def run_triage_search(self, city: str, state: str | None) -> SerpFetchResult:
        """One broad home-services search used to decide if a full scan is worth it."""
        return await self.fetch_serp_data(self.triage_query, city, state)
