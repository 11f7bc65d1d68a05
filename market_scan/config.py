"""Scan configuration: category tables, throttling knobs, and env settings."""

import os
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv

load_dotenv()

# Trait vocabulary produced by the city profile detector
COLLEGE_TOWN = "CollegeTown"
COASTAL = "Coastal"
RETIREMENT_COMMUNITY = "RetirementCommunity"
HIGH_INCOME = "HighIncome"
TOURISM_HUB = "TourismHub"

TRAITS = (HIGH_INCOME, COASTAL, RETIREMENT_COMMUNITY, COLLEGE_TOWN, TOURISM_HUB)

# Tier 1: always scanned, validated lead economics
TIER1_CATEGORIES = (
    "garage door repair",
    "appliance repair",
    "junk removal",
    "emergency plumber",
    "locksmith",
    "water damage restoration",
)

# Tier 2: trait-gated, location-specific
TRAIT_CATEGORIES = {
    COASTAL: ("vacation rental cleaning", "boat detailing"),
    RETIREMENT_COMMUNITY: ("senior home care", "estate cleanout"),
    HIGH_INCOME: ("pool service",),
    COLLEGE_TOWN: ("move out cleaning", "moving service"),
    TOURISM_HUB: ("event catering",),
}

# Conditional: scanned every full run, viable only in low-competition markets
CONDITIONAL_CATEGORIES = {
    "hvac repair": {
        "default_viable": False,
        "no_lsas": True,
        "max_paid_ads": 1,
        "max_aggregator_dominance": 40,
        "min_local_specialists": 2,
    },
    "roofing": {
        "default_viable": False,
        "no_lsas": True,
        "max_paid_ads": 0,
        "max_aggregator_dominance": 30,
        "min_local_specialists": 3,
    },
    "house cleaning": {
        "default_viable": False,
        "no_lsas": False,  # LSAs are fine for this one
        "max_paid_ads": 2,
        "max_aggregator_dominance": 50,
        "min_local_specialists": 2,
    },
}

# Lead economics (provider pays / CPL in dollars)
LEAD_ECONOMICS = {
    "garage door repair": {"provider_pays": (80, 120), "typical_cpl": (25, 45), "urgency": "high", "competition": "low"},
    "appliance repair": {"provider_pays": (50, 100), "typical_cpl": (30, 50), "urgency": "high", "competition": "moderate"},
    "junk removal": {"provider_pays": (40, 80), "typical_cpl": (25, 40), "urgency": "medium", "competition": "low"},
    "emergency plumber": {"provider_pays": (50, 100), "typical_cpl": (40, 60), "urgency": "extreme", "competition": "moderate"},
    "locksmith": {"provider_pays": (40, 80), "typical_cpl": (20, 35), "urgency": "extreme", "competition": "low"},
    "water damage restoration": {"provider_pays": (100, 200), "typical_cpl": (60, 100), "urgency": "extreme", "competition": "moderate"},
    "hvac repair": {"provider_pays": (75, 150), "typical_cpl": (50, 150), "urgency": "high", "competition": "high"},
    "vacation rental cleaning": {"provider_pays": (40, 80), "typical_cpl": (30, 50), "urgency": "high", "competition": "low"},
}

# Deep-dive expansions for categories that score well
TIER3_EXPANSIONS = {
    "garage door repair": ("garage door opener repair", "garage door spring repair", "garage door installation"),
    "appliance repair": ("refrigerator repair", "washer repair", "dryer repair", "dishwasher repair"),
    "junk removal": ("furniture removal", "appliance hauling", "garage cleanout"),
    "emergency plumber": ("drain cleaning", "water heater repair", "sewer line repair"),
    "locksmith": ("car lockout", "house lockout", "lock rekey"),
    "water damage restoration": ("flood cleanup", "mold remediation", "basement flooding"),
    "hvac repair": ("ac repair", "furnace repair", "heating repair"),
    "vacation rental cleaning": ("airbnb cleaning", "turnover cleaning"),
    "senior home care": ("in home care", "companion care", "respite care"),
}

# Flag codes surfaced as critical warnings in the validation summary
CRITICAL_FLAG_CODES = (
    "SPIKE_ANOMALY",
    "SEVERE_DECLINE",
    "DATA_CONFLICT",
    "INSUFFICIENT_TREND_DATA",
    "NO_SEARCH_INTEREST",
)

TRIAGE_QUERY = "home services near me"


@dataclass(frozen=True)
class ScanConfig:
    """Process-wide, read-only scan tables and throttling knobs."""

    tier1_categories: tuple = TIER1_CATEGORIES
    trait_categories: dict = field(default_factory=lambda: dict(TRAIT_CATEGORIES))
    conditional_categories: dict = field(default_factory=lambda: dict(CONDITIONAL_CATEGORIES))
    lead_economics: dict = field(default_factory=lambda: dict(LEAD_ECONOMICS))
    tier3_expansions: dict = field(default_factory=lambda: dict(TIER3_EXPANSIONS))
    critical_flag_codes: tuple = CRITICAL_FLAG_CODES
    triage_query: str = TRIAGE_QUERY
    delay_between_searches_ms: int = 200
    max_searches_per_city: int | None = 20
    deep_dive_threshold: int = 7
    enable_deep_dive: bool = True
    request_timeout_seconds: float = 60.0
    cache_ttl_seconds: float | None = None
    cache_max_entries: int | None = None

    @property
    def conditional_names(self) -> tuple:
        return tuple(self.conditional_categories)


DEFAULT_SCAN_CONFIG = ScanConfig()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, cast=int):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return cast(value)


@dataclass
class Settings:
    serp_api_key: str | None = None
    anthropic_api_key: str | None = None
    enable_trend_validation: bool = True
    log_level: str = "INFO"
    delay_ms: int | None = None
    cache_ttl_seconds: float | None = None
    cache_max_entries: int | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment (and .env, via load_dotenv)."""
        return cls(
            serp_api_key=os.getenv("SERP_API_KEY") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            enable_trend_validation=_env_bool("ENABLE_TREND_VALIDATION", True),
            log_level=os.getenv("MARKET_SCAN_LOG_LEVEL", "INFO").upper(),
            delay_ms=_env_number("SCAN_DELAY_MS"),
            cache_ttl_seconds=_env_number("SCAN_CACHE_TTL_SECONDS", float),
            cache_max_entries=_env_number("SCAN_CACHE_MAX_ENTRIES"),
        )

    def scan_config(self, base: ScanConfig = DEFAULT_SCAN_CONFIG) -> ScanConfig:
        """Apply env overrides on top of a base ScanConfig."""
        overrides = {}
        if self.delay_ms is not None:
            overrides["delay_between_searches_ms"] = self.delay_ms
        if self.cache_ttl_seconds is not None:
            overrides["cache_ttl_seconds"] = self.cache_ttl_seconds
        if self.cache_max_entries is not None:
            overrides["cache_max_entries"] = self.cache_max_entries
        if not overrides:
            return base
        return replace(base, **overrides)
