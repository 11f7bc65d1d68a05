"""Dataclasses shared by the profile detector, fetchers, analyzer and scanner."""

from dataclasses import asdict, dataclass, field, replace


TIERS = ("tier1", "tier2", "conditional", "tier3")
VERDICTS = ("strong", "maybe", "skip")
SERP_QUALITIES = ("Weak", "Medium", "Strong")
TREND_DIRECTIONS = ("growing", "declining", "flat", "volatile")
DEMAND_CONFIDENCES = ("high", "medium", "low", "unvalidated")
SCAN_STATUSES = ("idle", "loading", "success", "error")
EVENT_KINDS = ("started", "category", "skipped", "triage", "complete", "cancelled", "error")


@dataclass(frozen=True)
class Demographics:
    population: int | None = None
    median_household_income: int | None = None
    homeownership_rate: float | None = None  # percent, 0-100
    median_home_value: int | None = None


@dataclass(frozen=True)
class CityProfile:
    traits: tuple[str, ...] = ()
    tier2_categories: tuple[str, ...] = ()

    def has_trait(self, trait: str) -> bool:
        return trait in self.traits


@dataclass(frozen=True)
class SerpSignals:
    has_lsas: bool = False
    lsa_count: int = 0
    local_pack_count: int = 0
    top_organic_domains: tuple[str, ...] = ()  # first 5
    ad_count: int = 0
    aggregator_positions: tuple[int, ...] = ()  # 1-indexed
    total_results: int = 0


@dataclass
class SerpFetchResult:
    signals: SerpSignals
    from_cache: bool = False
    error: str | None = None


@dataclass
class TrendValidation:
    direction: str = "flat"  # one of TREND_DIRECTIONS
    confidence_percent: int = 0
    spike_detected: bool = False
    spike_ratio: float = 0.0
    is_stable: bool = False
    average_interest: float = 0.0
    max_interest: float = 0.0
    min_interest: float = 0.0
    median_interest: float = 0.0
    change_percent: float = 0.0
    flags: list[str] = field(default_factory=list)
    data_points: list[tuple[str, float]] = field(default_factory=list)
    geo_level: str = "US"


@dataclass
class DemandSignals:
    lsa_present: bool = False
    lsa_count: int = 0
    paid_ads_count: int = 0
    local_pack_count: int = 0
    local_pack_total_reviews: int = 0
    local_pack_avg_rating: float = 0.0
    established_businesses: int = 0
    related_searches: list[str] = field(default_factory=list)
    people_also_ask: list[str] = field(default_factory=list)
    demand_confidence: str = "unvalidated"  # one of DEMAND_CONFIDENCES
    organic_results_count: int = 0


@dataclass
class OrganicResult:
    position: int
    domain: str
    title: str = ""


@dataclass
class ConsolidatedValidation:
    trend_validation: TrendValidation
    demand_signals: DemandSignals
    organic_results: list[OrganicResult] = field(default_factory=list)
    total_results: int = 0


@dataclass
class CategoryAnalysisResult:
    category: str
    tier: str  # one of TIERS
    serp_score: int  # 0-10
    serp_quality: str  # one of SERP_QUALITIES
    competition: str  # "Low", "Medium", "High"
    lead_value: str  # e.g. "$50-100"
    urgency: str  # "Low", "Medium", "High"
    verdict: str  # one of VERDICTS
    reasoning: str
    trend_direction: str | None = None
    trend_confidence: int | None = None
    spike_detected: bool | None = None
    validation_flags: list[str] = field(default_factory=list)
    gap_score: int | None = None
    manual_override: bool = False
    from_cache: bool = False


@dataclass
class ResearchProgress:
    current_category: str | None = None
    completed_count: int = 0
    total_count: int = 0
    cache_hits: int = 0
    searches_used: int = 0


@dataclass
class TriageResultData:
    overall_signal: str  # "promising", "neutral", "saturated"
    lsa_present: bool
    aggregator_dominance: str  # "high", "medium", "low"
    ad_density: str  # "high", "medium", "low"
    recommendation: str
    worth_full_scan: bool


@dataclass
class ValidationSummary:
    total_flags: int = 0
    critical_warnings: list[str] = field(default_factory=list)
    trends_validated: int = 0
    overridden_count: int = 0


@dataclass
class SkipEntry:
    category: str
    reason: str


@dataclass
class ScanEvent:
    """One step of a scan, pushed to the caller as it happens."""

    kind: str  # one of EVENT_KINDS
    progress: ResearchProgress
    results: list[CategoryAnalysisResult] = field(default_factory=list)
    result: CategoryAnalysisResult | None = None
    triage: TriageResultData | None = None
    summary: ValidationSummary | None = None
    message: str | None = None

    @classmethod
    def snapshot(cls, kind: str, progress: ResearchProgress, results=(), **extra) -> "ScanEvent":
        return cls(
            kind=kind,
            progress=replace(progress),
            results=[replace(r) for r in results],
            **extra,
        )

    def to_dict(self) -> dict:
        return asdict(self)


def flag_code(flag: str) -> str:
    """Return the code part of a 'CODE: message' validation flag.

    >>> flag_code("SPIKE_ANOMALY: Peak 4.2x median")
    'SPIKE_ANOMALY'
    """
    return flag.split(":", 1)[0].strip()
