import asyncio

import httpx
import pytest

from market_scan.config import COASTAL, CONDITIONAL_CATEGORIES, ScanConfig

TEST_CONFIG = ScanConfig(
    tier1_categories=("locksmith", "junk removal"),
    trait_categories={COASTAL: ("pool service", "storm prep")},
    conditional_categories={"roofing": dict(CONDITIONAL_CATEGORIES["roofing"])},
    delay_between_searches_ms=200,
)


def serp_payload(
    domains=("acmelocks.com", "bestlocal.com", "cityhauling.com", "yelp.com", "fastfix.com"),
    ads=0,
    lsas=0,
    places=0,
    reviews=0,
    related=0,
    questions=0,
):
    return {
        "search_information": {"total_results": 12345},
        "organic_results": [
            {"position": i, "title": d, "link": f"https://www.{d}/services"}
            for i, d in enumerate(domains, start=1)
        ],
        "ads": [{"position": i, "title": f"Ad {i}"} for i in range(1, ads + 1)],
        "local_service_ads": [{"title": f"LSA {i}", "rating": 4.8, "reviews": 40} for i in range(lsas)],
        "local_results": {
            "places": [{"title": f"Place {i}", "rating": 4.5, "reviews": reviews} for i in range(places)]
        },
        "related_searches": [{"query": f"related {i}"} for i in range(related)],
        "related_questions": [{"question": f"question {i}?"} for i in range(questions)],
    }


def list_shaped_local_results():
    """A SERP payload whose local_results is a bare list instead of {"places": [...]}."""
    payload = serp_payload()
    payload["local_results"] = [{"title": "Place 0", "rating": 4.5, "reviews": 12}]
    return payload


def trend_payload(values):
    return {
        "interest_over_time": {
            "timeline_data": [
                {"date": f"week {i}", "values": [{"query": "q", "extracted_value": v}]}
                for i, v in enumerate(values)
            ]
        }
    }


class FakeSerpApi:
    """httpx.MockTransport handler standing in for serpapi.com.

    `responses` maps a query prefix (google engine) or a geo (google_trends
    engine) to a payload dict, or to an int HTTP status to fail with.
    """

    def __init__(self, responses=None, default=None, trends=None, default_trend=None):
        self.responses = responses or {}
        self.default = default if default is not None else serp_payload()
        self.trends = trends or {}
        self.default_trend = default_trend if default_trend is not None else trend_payload([50] * 52)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.requests.append(params)

        if params.get("engine") == "google_trends":
            payload = self.trends.get(params.get("geo"), self.default_trend)
        else:
            q = params.get("q", "")
            payload = self.default
            for prefix, candidate in self.responses.items():
                if q.startswith(f"{prefix} "):
                    payload = candidate
                    break

        if isinstance(payload, int):
            return httpx.Response(payload, json={"error": "upstream failure"})
        return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def queries(self, engine="google"):
        return [r["q"] for r in self.requests if r.get("engine") == engine]


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def collect(events):
    """Drain an async event stream into a list."""

    async def _drain():
        return [event async for event in events]

    return asyncio.run(_drain())


@pytest.fixture
def fake_api():
    return FakeSerpApi()


@pytest.fixture
def sleep():
    return SleepRecorder()
