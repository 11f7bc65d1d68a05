"""Category verdicts from SERP signals, optionally validated against trends.

HeuristicAnalyzer is the default; ClaudeAnalyzer asks Haiku for the base
assessment and drops back to the heuristic one if the model call fails.
Both apply the same trend-validation and conditional-tier overlays, so the
flags and skip rules never depend on the model.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Protocol

import anthropic

from .config import DEFAULT_SCAN_CONFIG, ScanConfig
from .models import (
    SERP_QUALITIES,
    VERDICTS,
    CategoryAnalysisResult,
    DemandSignals,
    SerpSignals,
    TrendValidation,
    TriageResultData,
    flag_code,
)
from .tiers import assess_category_viability, calculate_aggregator_dominance, get_lead_economics

logger = logging.getLogger(__name__)

HAIKU_MODEL = "claude-haiku-4-5-20251001"

LEVELS = ("Low", "Medium", "High")
DENSITIES = ("high", "medium", "low")
TRIAGE_SIGNALS = ("promising", "neutral", "saturated")

# Lead-economics urgency words -> result urgency bucket
_URGENCY_BUCKETS = {"extreme": "High", "high": "High", "medium": "Medium", "low": "Low"}


@dataclass(frozen=True)
class AnalyzerPolicy:
    """Every threshold the analyzer uses. Recalibrate here, not in the code."""

    # SERP quality
    weak_min_top3_aggregators: int = 2
    strong_min_domains: int = 3
    weak_score: int = 3
    medium_score: int = 5
    strong_score: int = 8
    verdict_bump: int = 2

    # Competition
    high_competition_min_ads: int = 4
    low_competition_max_ads: int = 1

    high_value_keywords: tuple = ("hvac", "roofing", "garage door", "appliance", "plumber", "electrician")
    emergency_keywords: tuple = ("emergency", "plumber", "electrician", "hvac", "locksmith", "towing")
    high_lead_value: str = "$50-100"
    default_lead_value: str = "$25-50"

    # Validated gap score (demand 0-35, competition 0-25, monetization 0-20)
    gap_max_score: int = 90
    stable_interest_above: float = 20
    stable_demand_points: int = 25
    some_interest_above: float = 10
    some_demand_points: int = 10
    high_demand_points: int = 10
    medium_demand_points: int = 5
    demand_cap: int = 35
    dominance_points: tuple = ((60, 15), (40, 10), (20, 5))
    no_lsa_points: int = 10
    few_lsa_points: int = 5
    few_lsa_below: int = 3
    high_lsa_at: int = 5
    competition_cap: int = 25
    gap_high_value_keywords: tuple = (
        "hvac",
        "roofing",
        "garage door",
        "appliance repair",
        "plumber",
        "electrician",
        "foundation repair",
        "water damage",
        "mold remediation",
    )
    high_value_points: int = 8
    established_points: tuple = ((5, 5), (3, 3))
    monetization_cap: int = 20

    # Penalties and verdict cut-offs
    decline_multiplier: float = 0.85
    severe_decline_percent: float = 30
    severe_decline_multiplier: float = 0.7
    spike_score_cap: int = 40
    strong_gap_score: int = 55
    manual_gap_score: int = 40
    blend_tolerance: int = 2
    gap_critical_codes: tuple = ("SPIKE_ANOMALY", "SEVERE_DECLINE", "NO_TREND_DATA")

    # Triage
    worth_scan_min_aggregators: int = 2
    promising_min_aggregators: int = 3
    high_ad_density: int = 4
    medium_ad_density: int = 2


DEFAULT_ANALYZER_POLICY = AnalyzerPolicy()


@dataclass
class GapScore:
    score: int
    max_score: int
    verdict: str  # STRONG_OPPORTUNITY, OPPORTUNITY_WITH_CAVEATS, VALIDATE_MANUALLY, SKIP
    flags: list[str] = field(default_factory=list)
    breakdown: dict = field(default_factory=dict)


class VerdictAnalyzer(Protocol):
    def analyze(
        self,
        category: str,
        city: str,
        state: str | None,
        signals: SerpSignals,
        tier: str,
        trend_validation: TrendValidation | None = None,
        demand_signals: DemandSignals | None = None,
    ) -> CategoryAnalysisResult: ...

    def analyze_triage(self, city: str, state: str | None, signals: SerpSignals) -> TriageResultData: ...


def _add_flag(flags: list[str], flag: str) -> None:
    code = flag_code(flag)
    if not any(flag_code(f) == code for f in flags):
        flags.append(flag)


def calculate_validated_gap_score(
    category: str,
    trend: TrendValidation,
    demand: DemandSignals,
    aggregator_dominance: int,
    policy: AnalyzerPolicy = DEFAULT_ANALYZER_POLICY,
) -> GapScore:
    """
    Score a category out of policy.gap_max_score using trend stability first.

    Demand: a stable series with real interest earns the most; a spike earns
    nothing and is flagged. Competition: aggregator-heavy SERPs and missing
    LSAs are openings. Monetization: high-value trades and enough established
    providers to sell leads to. Penalties then apply for decline and spikes.
    """
    flags: list[str] = []

    demand_score = 0
    if trend.is_stable and trend.average_interest > policy.stable_interest_above:
        demand_score += policy.stable_demand_points
    elif trend.spike_detected:
        _add_flag(
            flags,
            f"SPIKE_ANOMALY: Search volume inflated by single event "
            f"({trend.spike_ratio:.1f}x median) - demand unvalidated",
        )
    elif trend.average_interest > policy.some_interest_above:
        demand_score += policy.some_demand_points
    elif trend.confidence_percent == 0:
        _add_flag(flags, "NO_TREND_DATA: Unable to validate search demand")
    else:
        _add_flag(flags, "LOW_SEARCH_INTEREST: Trend data shows minimal search activity")

    if demand.demand_confidence == "high":
        demand_score += policy.high_demand_points
    elif demand.demand_confidence == "medium":
        demand_score += policy.medium_demand_points
    demand_score = min(policy.demand_cap, demand_score)

    competition_score = 0
    for threshold, points in policy.dominance_points:
        if aggregator_dominance >= threshold:
            competition_score += points
            break
    if not demand.lsa_present:
        competition_score += policy.no_lsa_points
    elif demand.lsa_count < policy.few_lsa_below:
        competition_score += policy.few_lsa_points
    elif demand.lsa_count >= policy.high_lsa_at:
        _add_flag(flags, f"HIGH_LSA_COMPETITION: {demand.lsa_count} LSAs active - competitive market")
    competition_score = min(policy.competition_cap, competition_score)

    monetization_score = 0
    normalized = category.lower()
    if any(kw in normalized for kw in policy.gap_high_value_keywords):
        monetization_score += policy.high_value_points
    for threshold, points in policy.established_points:
        if demand.established_businesses >= threshold:
            monetization_score += points
            break
    else:
        if demand.established_businesses == 0:
            _add_flag(flags, "FEW_ESTABLISHED_PROVIDERS: Limited providers to sell leads to")
    monetization_score = min(policy.monetization_cap, monetization_score)

    score = demand_score + competition_score + monetization_score

    if trend.spike_detected and demand.demand_confidence == "high":
        _add_flag(flags, "DATA_CONFLICT: SERP shows activity but trend shows spike - investigate manually")
    if trend.change_percent <= -policy.severe_decline_percent:
        score = math.floor(score * policy.severe_decline_multiplier)
        _add_flag(flags, f"SEVERE_DECLINE: {abs(trend.change_percent):.0f}% drop in search interest")
    if trend.direction == "declining":
        score = math.floor(score * policy.decline_multiplier)
    if trend.spike_detected:
        score = min(score, policy.spike_score_cap)
    score = max(0, score)

    critical = any(flag_code(f) in policy.gap_critical_codes for f in flags)
    if score >= policy.strong_gap_score:
        verdict = "OPPORTUNITY_WITH_CAVEATS" if critical else "STRONG_OPPORTUNITY"
    elif score >= policy.manual_gap_score:
        verdict = "VALIDATE_MANUALLY"
    else:
        verdict = "SKIP"

    return GapScore(
        score=score,
        max_score=policy.gap_max_score,
        verdict=verdict,
        flags=flags,
        breakdown={
            "demand": demand_score,
            "competition": competition_score,
            "monetization": monetization_score,
        },
    )


def combine_with_legacy_score(
    legacy_score: int,
    gap: GapScore,
    policy: AnalyzerPolicy = DEFAULT_ANALYZER_POLICY,
) -> int:
    """Fold the gap score onto the 0-10 SERP scale.

    >>> combine_with_legacy_score(5, GapScore(score=45, max_score=90, verdict="VALIDATE_MANUALLY",
    ...     breakdown={"demand": 25}))
    5
    >>> combine_with_legacy_score(9, GapScore(score=18, max_score=90, verdict="SKIP",
    ...     breakdown={"demand": 10}))
    6
    """
    if gap.breakdown.get("demand", 0) <= 0:
        return legacy_score
    normalized = round(gap.score / gap.max_score * 10)
    if abs(normalized - legacy_score) <= policy.blend_tolerance or gap.flags:
        return normalized
    return round((normalized + legacy_score) / 2)


def demand_from_signals(signals: SerpSignals) -> DemandSignals:
    """Stand-in demand signals when only the cheap SERP snapshot is available."""
    return DemandSignals(
        lsa_present=signals.has_lsas,
        lsa_count=signals.lsa_count,
        paid_ads_count=signals.ad_count,
        local_pack_count=signals.local_pack_count,
        organic_results_count=len(signals.top_organic_domains),
    )


class HeuristicAnalyzer:
    """Rule-based verdicts; every number comes from an AnalyzerPolicy."""

    def __init__(
        self,
        policy: AnalyzerPolicy = DEFAULT_ANALYZER_POLICY,
        config: ScanConfig = DEFAULT_SCAN_CONFIG,
    ):
        self.policy = policy
        self.config = config

    def _lead_value_and_urgency(self, category: str) -> tuple[str, str]:
        policy = self.policy
        normalized = category.lower()
        economics = get_lead_economics(category, self.config)
        if economics:
            low, high = economics["provider_pays"]
            return f"${low}-{high}", _URGENCY_BUCKETS.get(economics["urgency"], "Medium")

        high_value = any(kw in normalized for kw in policy.high_value_keywords)
        emergency = any(kw in normalized for kw in policy.emergency_keywords)
        lead_value = policy.high_lead_value if high_value else policy.default_lead_value
        return lead_value, "High" if emergency else "Medium"

    def base_assessment(
        self,
        category: str,
        city: str,
        state: str | None,
        signals: SerpSignals,
        trend_validation: TrendValidation | None = None,
        demand_signals: DemandSignals | None = None,
    ) -> dict:
        policy = self.policy

        quality, score = "Medium", policy.medium_score
        top3 = sum(1 for p in signals.aggregator_positions if p <= 3)
        if top3 >= policy.weak_min_top3_aggregators:
            quality, score = "Weak", policy.weak_score
        elif top3 == 0 and len(signals.top_organic_domains) >= policy.strong_min_domains:
            quality, score = "Strong", policy.strong_score

        competition = "Medium"
        if signals.ad_count >= policy.high_competition_min_ads and signals.has_lsas:
            competition = "High"
        elif signals.ad_count <= policy.low_competition_max_ads and not signals.has_lsas:
            competition = "Low"

        verdict = "maybe"
        if quality == "Weak" and competition != "High":
            verdict = "strong"
            score = min(10, score + policy.verdict_bump)
        elif quality == "Strong" and competition == "High":
            verdict = "skip"
            score = max(1, score - policy.verdict_bump)

        lead_value, urgency = self._lead_value_and_urgency(category)
        lsa_note = "LSAs present indicate proven market." if signals.has_lsas else "No LSAs detected."

        return {
            "serp_quality": quality,
            "serp_score": score,
            "competition": competition,
            "lead_value": lead_value,
            "urgency": urgency,
            "verdict": verdict,
            "reasoning": f"{quality} SERP with {competition.lower()} competition. {lsa_note}",
        }

    def analyze(
        self,
        category: str,
        city: str,
        state: str | None,
        signals: SerpSignals,
        tier: str,
        trend_validation: TrendValidation | None = None,
        demand_signals: DemandSignals | None = None,
    ) -> CategoryAnalysisResult:
        base = self.base_assessment(category, city, state, signals, trend_validation, demand_signals)
        return self.finish(category, signals, tier, base, trend_validation, demand_signals)

    def finish(
        self,
        category: str,
        signals: SerpSignals,
        tier: str,
        base: dict,
        trend_validation: TrendValidation | None,
        demand_signals: DemandSignals | None,
    ) -> CategoryAnalysisResult:
        """Apply the trend-validation and conditional-tier overlays to a base assessment."""
        result = CategoryAnalysisResult(
            category=category,
            tier=tier,
            serp_score=max(0, min(10, int(base["serp_score"]))),
            serp_quality=base["serp_quality"],
            competition=base["competition"],
            lead_value=base["lead_value"],
            urgency=base["urgency"],
            verdict=base["verdict"],
            reasoning=base["reasoning"],
        )

        if trend_validation is not None:
            self._apply_validation(result, signals, trend_validation, demand_signals)

        if tier == "conditional":
            viability = assess_category_viability(category, signals, self.config)
            if not viability.viable:
                result.verdict = "skip"
                result.reasoning = f"{result.reasoning} Not viable here: {viability.reason}."

        return result

    def _apply_validation(
        self,
        result: CategoryAnalysisResult,
        signals: SerpSignals,
        trend: TrendValidation,
        demand: DemandSignals | None,
    ) -> None:
        demand = demand or demand_from_signals(signals)
        gap = calculate_validated_gap_score(
            result.category,
            trend,
            demand,
            calculate_aggregator_dominance(signals),
            self.policy,
        )

        flags = list(gap.flags)
        for flag in trend.flags:
            _add_flag(flags, flag)

        if trend.spike_detected and result.verdict == "strong":
            result.verdict = "maybe"
        if gap.verdict == "SKIP":
            result.verdict = "skip"

        result.serp_score = max(0, min(10, combine_with_legacy_score(result.serp_score, gap, self.policy)))
        if flags:
            result.reasoning = f"{result.reasoning} Warning: {flags[0]}"
        result.validation_flags = flags
        result.gap_score = gap.score
        result.trend_direction = trend.direction
        result.trend_confidence = trend.confidence_percent
        result.spike_detected = trend.spike_detected

    def analyze_triage(self, city: str, state: str | None, signals: SerpSignals) -> TriageResultData:
        policy = self.policy
        aggregators = len(signals.aggregator_positions)
        worth_full_scan = aggregators >= policy.worth_scan_min_aggregators or signals.has_lsas

        if aggregators >= policy.promising_min_aggregators:
            dominance = "high"
        elif aggregators >= 1:
            dominance = "medium"
        else:
            dominance = "low"

        if signals.ad_count >= policy.high_ad_density:
            ad_density = "high"
        elif signals.ad_count >= policy.medium_ad_density:
            ad_density = "medium"
        else:
            ad_density = "low"

        return TriageResultData(
            overall_signal="promising" if aggregators >= policy.promising_min_aggregators else "neutral",
            lsa_present=signals.has_lsas,
            aggregator_dominance=dominance,
            ad_density=ad_density,
            recommendation=(
                "Market shows opportunity signals. Run full scan."
                if worth_full_scan
                else "Limited signals. May want to skip or test specific categories."
            ),
            worth_full_scan=worth_full_scan,
        )


def _choice(value, allowed: tuple, fallback):
    """Model value if it is one of the allowed buckets, else the fallback."""
    return value if value in allowed else fallback


def _model_bool(value, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return fallback


def _signals_block(category: str, city: str, state: str | None, signals: SerpSignals) -> str:
    return (
        f"Category: {category}\n"
        f"City: {city}, {state or 'Unknown'}\n"
        f"Top 5 organic domains: {', '.join(signals.top_organic_domains) or 'None'}\n"
        f"Aggregator positions in top 5: {', '.join(map(str, signals.aggregator_positions)) or 'None'}\n"
        f"Local Service Ads: {'Yes' if signals.has_lsas else 'No'} (count: {signals.lsa_count})\n"
        f"Local pack results: {signals.local_pack_count}\n"
        f"Paid ads: {signals.ad_count}\n"
        f"Total results: {signals.total_results}"
    )


def _trend_block(trend: TrendValidation, demand: DemandSignals | None) -> str:
    lines = [
        f"Trend stable: {'Yes' if trend.is_stable else 'No'}",
        f"Spike detected: {'YES' if trend.spike_detected else 'No'} (ratio {trend.spike_ratio:.1f}x median)",
        f"Average interest: {trend.average_interest:.0f}/100",
        f"Trend direction: {trend.direction.upper()}",
        f"Trend confidence: {trend.confidence_percent}%",
        f"Trend flags: {'; '.join(trend.flags) or 'None'}",
    ]
    if demand is not None:
        lines += [
            f"Local pack reviews (total): {demand.local_pack_total_reviews}",
            f"Established businesses (50+ reviews): {demand.established_businesses}",
            f"Related searches: {len(demand.related_searches)}",
            f"People Also Ask: {len(demand.people_also_ask)}",
            f"Demand confidence: {demand.demand_confidence.upper()}",
        ]
    return "\n".join(lines)


class ClaudeAnalyzer(HeuristicAnalyzer):
    """Haiku-backed base assessment with the heuristic one as fallback."""

    def __init__(
        self,
        api_key: str,
        policy: AnalyzerPolicy = DEFAULT_ANALYZER_POLICY,
        config: ScanConfig = DEFAULT_SCAN_CONFIG,
        client: anthropic.Anthropic | None = None,
    ):
        super().__init__(policy, config)
        if not api_key and client is None:
            raise ValueError("ANTHROPIC_API_KEY not set.")
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def _ask(self, system: str, content: str) -> dict:
        response = self.client.messages.create(
            model=HAIKU_MODEL,
            max_tokens=512,
            system=system,
            messages=[{"role": "user", "content": content}],
        )
        text = response.content[0].text.strip()

        json_match = re.search(r"\{.*\}", text, re.DOTALL)
        if not json_match:
            raise ValueError("No JSON found in response")
        return json.loads(json_match.group())

    def base_assessment(
        self,
        category: str,
        city: str,
        state: str | None,
        signals: SerpSignals,
        trend_validation: TrendValidation | None = None,
        demand_signals: DemandSignals | None = None,
    ) -> dict:
        fallback = super().base_assessment(category, city, state, signals, trend_validation, demand_signals)

        content = _signals_block(category, city, state, signals)
        if trend_validation is not None:
            content += "\n\n" + _trend_block(trend_validation, demand_signals)

        try:
            parsed = self._ask(
                "You are a local service market analyst. Assess how easy it would be for a "
                "well-built local site to win leads for this category in this market.\n"
                "Weak SERP: aggregators in positions 1-3, thin sites. Strong SERP: quality local "
                "specialists. Competition comes from paid ads, LSAs and local pack density. "
                "If a spike is detected or the trend is declining, be skeptical.\n\n"
                "Respond with JSON only, no other text.\n\n"
                "Format:\n"
                "{\n"
                '  "serp_quality": "Weak|Medium|Strong",\n'
                '  "serp_score": 1-10,\n'
                '  "competition": "Low|Medium|High",\n'
                '  "lead_value": "$XX-YY",\n'
                '  "urgency": "Low|Medium|High",\n'
                '  "verdict": "strong|maybe|skip",\n'
                '  "reasoning": "1-2 sentences"\n'
                "}",
                content,
            )
        except (anthropic.APIError, ValueError, IndexError, AttributeError) as e:
            logger.warning("Claude analysis failed for %r, using heuristics: %s", category, e)
            return fallback

        try:
            score = int(parsed.get("serp_score", fallback["serp_score"]))
        except (TypeError, ValueError):
            score = fallback["serp_score"]

        return {
            "serp_quality": _choice(parsed.get("serp_quality"), SERP_QUALITIES, fallback["serp_quality"]),
            "serp_score": score,
            "competition": _choice(parsed.get("competition"), LEVELS, fallback["competition"]),
            "lead_value": parsed.get("lead_value") or fallback["lead_value"],
            "urgency": _choice(parsed.get("urgency"), LEVELS, fallback["urgency"]),
            "verdict": _choice(parsed.get("verdict"), VERDICTS, fallback["verdict"]),
            "reasoning": parsed.get("reasoning") or fallback["reasoning"],
        }

    def analyze_triage(self, city: str, state: str | None, signals: SerpSignals) -> TriageResultData:
        fallback = super().analyze_triage(city, state, signals)
        try:
            parsed = self._ask(
                "You are a local service market analyst. Decide whether this city is worth a "
                "full category-by-category scan, from one 'home services near me' search.\n"
                "Promising: aggregators dominating or LSAs present. Saturated: many quality local "
                "sites and heavy ads. Neutral: mixed.\n\n"
                "Respond with JSON only, no other text.\n\n"
                "Format:\n"
                "{\n"
                '  "overall_signal": "promising|neutral|saturated",\n'
                '  "aggregator_dominance": "high|medium|low",\n'
                '  "ad_density": "high|medium|low",\n'
                '  "recommendation": "1 sentence",\n'
                '  "worth_full_scan": true\n'
                "}",
                _signals_block(self.config.triage_query, city, state, signals),
            )
        except (anthropic.APIError, ValueError, IndexError, AttributeError) as e:
            logger.warning("Claude triage failed for %s, using heuristics: %s", city, e)
            return fallback

        return TriageResultData(
            overall_signal=_choice(parsed.get("overall_signal"), TRIAGE_SIGNALS, fallback.overall_signal),
            lsa_present=signals.has_lsas,
            aggregator_dominance=_choice(
                parsed.get("aggregator_dominance"), DENSITIES, fallback.aggregator_dominance
            ),
            ad_density=_choice(parsed.get("ad_density"), DENSITIES, fallback.ad_density),
            recommendation=parsed.get("recommendation") or fallback.recommendation,
            worth_full_scan=_model_bool(parsed.get("worth_full_scan"), fallback.worth_full_scan),
        )
