"""Category tier selection, lead economics and conditional viability."""

from dataclasses import dataclass

from .config import DEFAULT_SCAN_CONFIG, ScanConfig
from .models import CityProfile, SerpSignals


@dataclass(frozen=True)
class CategoryPlan:
    tier1: tuple[str, ...]
    tier2: tuple[str, ...]
    conditional: tuple[str, ...]
    total: int

    def ordered(self) -> list[str]:
        """Scan order: tier1, then tier2, then conditional."""
        return [*self.tier1, *self.tier2, *self.conditional]


@dataclass
class CategoryViability:
    viable: bool
    confidence: str  # "high", "medium", "low"
    reason: str


def get_categories_to_scan(
    profile: CityProfile,
    config: ScanConfig = DEFAULT_SCAN_CONFIG,
) -> CategoryPlan:
    """
    Build the ordered scan list for a city.

    tier2 is the profile's tier-2 list in order, minus anything already
    scanned as tier1 or conditional. When max_searches_per_city is set, tier2
    is trimmed first and conditional second; tier1 is never trimmed below the
    cap.
    """
    tier1 = list(dict.fromkeys(c.lower() for c in config.tier1_categories))
    conditional = [c for c in dict.fromkeys(config.conditional_names) if c not in tier1]
    reserved = set(tier1) | set(conditional)
    tier2 = [c for c in dict.fromkeys(c.lower() for c in profile.tier2_categories) if c not in reserved]

    cap = config.max_searches_per_city
    if cap is not None:
        tier1 = tier1[:cap]
        tier2 = tier2[: max(0, cap - len(tier1))]
        conditional = conditional[: max(0, cap - len(tier1) - len(tier2))]

    return CategoryPlan(
        tier1=tuple(tier1),
        tier2=tuple(tier2),
        conditional=tuple(conditional),
        total=len(tier1) + len(tier2) + len(conditional),
    )


def get_category_tier(
    category: str,
    profile: CityProfile,
    config: ScanConfig = DEFAULT_SCAN_CONFIG,
) -> str:
    normalized = category.lower()
    if normalized in (c.lower() for c in config.tier1_categories):
        return "tier1"
    if normalized in config.conditional_categories:
        return "conditional"
    if normalized in (c.lower() for c in profile.tier2_categories):
        return "tier2"
    return "tier3"


def get_tier3_categories(
    category: str,
    score: int,
    config: ScanConfig = DEFAULT_SCAN_CONFIG,
) -> list[str]:
    """Deep-dive sub-categories worth probing once a category scores well."""
    if not config.enable_deep_dive or score < config.deep_dive_threshold:
        return []
    return list(config.tier3_expansions.get(category.lower(), ()))


def get_lead_economics(category: str, config: ScanConfig = DEFAULT_SCAN_CONFIG) -> dict | None:
    return config.lead_economics.get(category.lower())


def calculate_aggregator_dominance(signals: SerpSignals) -> int:
    """Percent of the top organic domains held by aggregators."""
    if not signals.top_organic_domains:
        return 0
    return round(len(signals.aggregator_positions) / len(signals.top_organic_domains) * 100)


def local_specialist_count(signals: SerpSignals) -> int:
    return len(signals.top_organic_domains) - len(signals.aggregator_positions)


def assess_category_viability(
    category: str,
    signals: SerpSignals,
    config: ScanConfig = DEFAULT_SCAN_CONFIG,
) -> CategoryViability:
    """
    Decide whether a category is viable in this particular market.

    Conditional categories carry override conditions (no LSAs, few paid ads,
    low aggregator dominance, enough local specialists); they are only viable
    when every condition passes. Everything else is viable, with confidence
    driven by how weak the SERP looks.
    """
    dominance = calculate_aggregator_dominance(signals)
    specialists = local_specialist_count(signals)
    conditions = config.conditional_categories.get(category.lower())

    if conditions:
        passes = (
            (not conditions["no_lsas"] or not signals.has_lsas)
            and signals.ad_count <= conditions["max_paid_ads"]
            and dominance <= conditions["max_aggregator_dominance"]
            and specialists >= conditions["min_local_specialists"]
        )
        if passes:
            return CategoryViability(
                viable=True,
                confidence="high",
                reason=(
                    f"Underserved market: {signals.ad_count} paid ads, "
                    f"{specialists} local specialists ranking"
                ),
            )
        lsa_note = "LSAs present, " if signals.has_lsas else ""
        return CategoryViability(
            viable=conditions["default_viable"],
            confidence="low",
            reason=f"Standard competitive market: {lsa_note}{signals.ad_count} paid ads",
        )

    if dominance > 60:
        return CategoryViability(True, "high", f"Weak SERP: {dominance}% aggregator dominance")
    if specialists >= 3 and not signals.has_lsas:
        return CategoryViability(True, "high", "Provider-rich market with no LSAs")
    return CategoryViability(True, "medium", "Standard opportunity")
