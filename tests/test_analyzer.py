from types import SimpleNamespace

from market_scan.analyzer import (
    AnalyzerPolicy,
    ClaudeAnalyzer,
    HeuristicAnalyzer,
    calculate_validated_gap_score,
)
from market_scan.models import DemandSignals, SerpSignals, TrendValidation, flag_code

WEAK_SERP = SerpSignals(
    top_organic_domains=("yelp.com", "angi.com", "a.com", "b.com", "c.com"),
    aggregator_positions=(1, 2),
    ad_count=1,
)
STRONG_SERP = SerpSignals(
    has_lsas=True,
    lsa_count=3,
    top_organic_domains=("a.com", "b.com", "c.com", "d.com", "e.com"),
    ad_count=4,
)
STABLE = TrendValidation(direction="flat", confidence_percent=100, is_stable=True, average_interest=45)
HIGH_DEMAND = DemandSignals(lsa_present=True, lsa_count=1, established_businesses=5, demand_confidence="high")


def codes(flags):
    return [flag_code(f) for f in flags]


def test_weak_serp_with_low_competition_is_strong():
    result = HeuristicAnalyzer().analyze("locksmith", "Austin", "TX", WEAK_SERP, "tier1")
    assert result.serp_quality == "Weak"
    assert result.competition == "Low"
    assert result.verdict == "strong"
    assert result.serp_score == 5
    assert result.reasoning == "Weak SERP with low competition. No LSAs detected."
    assert result.validation_flags == []
    assert result.trend_direction is None


def test_strong_serp_with_high_competition_is_skip():
    result = HeuristicAnalyzer().analyze("pool service", "Austin", "TX", STRONG_SERP, "tier2")
    assert result.serp_quality == "Strong"
    assert result.competition == "High"
    assert result.verdict == "skip"
    assert result.serp_score == 6


def test_lead_value_and_urgency():
    analyzer = HeuristicAnalyzer()
    economics = analyzer.analyze("garage door repair", "Austin", "TX", SerpSignals(), "tier1")
    unknown = analyzer.analyze("gutter cleaning", "Austin", "TX", SerpSignals(), "tier2")
    keyword = analyzer.analyze("emergency electrician", "Austin", "TX", SerpSignals(), "tier2")
    assert (economics.lead_value, economics.urgency) == ("$80-120", "High")
    assert (unknown.lead_value, unknown.urgency) == ("$25-50", "Medium")
    assert (keyword.lead_value, keyword.urgency) == ("$50-100", "High")


def test_policy_thresholds_are_configurable():
    one_aggregator = SerpSignals(top_organic_domains=("yelp.com", "a.com", "b.com"), aggregator_positions=(1,))
    default = HeuristicAnalyzer().analyze("locksmith", "Austin", "TX", one_aggregator, "tier1")
    tuned = HeuristicAnalyzer(AnalyzerPolicy(weak_min_top3_aggregators=1)).analyze(
        "locksmith", "Austin", "TX", one_aggregator, "tier1"
    )
    assert default.serp_quality == "Medium"
    assert tuned.serp_quality == "Weak"


def test_gap_score_for_validated_market():
    gap = calculate_validated_gap_score("garage door repair", STABLE, HIGH_DEMAND, 60)
    assert gap.breakdown == {"demand": 35, "competition": 20, "monetization": 13}
    assert gap.score == 68
    assert gap.verdict == "STRONG_OPPORTUNITY"
    assert gap.flags == []


def test_gap_score_decline_penalties():
    mild = TrendValidation(direction="declining", confidence_percent=90, is_stable=True, average_interest=45, change_percent=-25)
    severe = TrendValidation(direction="declining", confidence_percent=90, is_stable=True, average_interest=45, change_percent=-40)

    mild_gap = calculate_validated_gap_score("garage door repair", mild, HIGH_DEMAND, 60)
    severe_gap = calculate_validated_gap_score("garage door repair", severe, HIGH_DEMAND, 60)

    assert mild_gap.score == 57
    assert mild_gap.verdict == "STRONG_OPPORTUNITY"
    assert severe_gap.score == 39
    assert "SEVERE_DECLINE" in codes(severe_gap.flags)
    assert severe_gap.verdict == "SKIP"


def test_spike_never_yields_strong():
    spike = TrendValidation(
        direction="volatile",
        confidence_percent=40,
        spike_detected=True,
        spike_ratio=6.0,
        average_interest=30,
        flags=["SPIKE_ANOMALY: Peak 6.0x median"],
    )
    result = HeuristicAnalyzer().analyze("garage door repair", "Austin", "TX", WEAK_SERP, "tier1", spike, HIGH_DEMAND)
    assert result.verdict != "strong"
    assert result.spike_detected
    assert "SPIKE_ANOMALY" in codes(result.validation_flags)
    assert "DATA_CONFLICT" in codes(result.validation_flags)
    assert codes(result.validation_flags).count("SPIKE_ANOMALY") == 1
    assert result.gap_score <= 40


def test_gap_skip_forces_skip_verdict():
    no_data = TrendValidation(confidence_percent=0, flags=["NO_TREND_DATA: nothing"])
    result = HeuristicAnalyzer().analyze("locksmith", "Austin", "TX", WEAK_SERP, "tier1", no_data)
    assert result.verdict == "skip"
    assert codes(result.validation_flags)[:2] == ["NO_TREND_DATA", "FEW_ESTABLISHED_PROVIDERS"]
    assert result.trend_confidence == 0
    assert "Warning: NO_TREND_DATA" in result.reasoning


def test_validated_strong_market_keeps_trend_fields():
    result = HeuristicAnalyzer().analyze("garage door repair", "Austin", "TX", WEAK_SERP, "tier1", STABLE, HIGH_DEMAND)
    assert result.verdict == "strong"
    assert result.validation_flags == []
    assert result.trend_direction == "flat"
    assert result.trend_confidence == 100
    assert 0 <= result.serp_score <= 10


def test_conditional_category_skipped_when_not_viable():
    signals = SerpSignals(has_lsas=True, lsa_count=2, top_organic_domains=("yelp.com", "angi.com", "a.com"), aggregator_positions=(1, 2))
    result = HeuristicAnalyzer().analyze("roofing", "Austin", "TX", signals, "conditional")
    assert result.verdict == "skip"
    assert "Not viable here" in result.reasoning


def test_triage_heuristics():
    analyzer = HeuristicAnalyzer()
    crowded = SerpSignals(
        top_organic_domains=("yelp.com", "angi.com", "thumbtack.com", "a.com"),
        aggregator_positions=(1, 2, 3),
        ad_count=4,
    )
    quiet = SerpSignals(top_organic_domains=("a.com", "b.com"))

    promising = analyzer.analyze_triage("Austin", "TX", crowded)
    neutral = analyzer.analyze_triage("Austin", "TX", quiet)

    assert promising.overall_signal == "promising"
    assert promising.aggregator_dominance == "high"
    assert promising.ad_density == "high"
    assert promising.worth_full_scan
    assert neutral.overall_signal == "neutral"
    assert neutral.aggregator_dominance == "low"
    assert not neutral.worth_full_scan
    assert neutral.recommendation == "Limited signals. May want to skip or test specific categories."


class FakeMessages:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(text=self.text)])


def fake_client(text):
    return SimpleNamespace(messages=FakeMessages(text))


def test_claude_analyzer_uses_model_assessment():
    client = fake_client(
        'Here you go: {"serp_quality": "Strong", "serp_score": 7, "competition": "Medium", '
        '"lead_value": "$60-90", "urgency": "High", "verdict": "maybe", "reasoning": "Solid locals."}'
    )
    analyzer = ClaudeAnalyzer("key", client=client)
    result = analyzer.analyze("locksmith", "Austin", "TX", WEAK_SERP, "tier1")
    assert result.serp_quality == "Strong"
    assert result.serp_score == 7
    assert result.lead_value == "$60-90"
    assert result.verdict == "maybe"
    assert client.messages.calls[0]["model"] == "claude-haiku-4-5-20251001"


def test_claude_analyzer_falls_back_to_heuristics():
    analyzer = ClaudeAnalyzer("key", client=fake_client("I cannot help with that."))
    result = analyzer.analyze("locksmith", "Austin", "TX", WEAK_SERP, "tier1")
    assert result.serp_quality == "Weak"
    assert result.verdict == "strong"


def test_claude_verdict_still_goes_through_spike_overlay():
    client = fake_client('{"serp_quality": "Weak", "serp_score": 9, "verdict": "strong", "reasoning": "Great."}')
    spike = TrendValidation(spike_detected=True, spike_ratio=5.0, average_interest=50, confidence_percent=60)
    result = ClaudeAnalyzer("key", client=client).analyze(
        "garage door repair", "Austin", "TX", WEAK_SERP, "tier1", spike, HIGH_DEMAND
    )
    assert result.verdict != "strong"
    assert "SPIKE_ANOMALY" in codes(result.validation_flags)


def test_claude_values_outside_buckets_fall_back():
    client = fake_client(
        '{"serp_quality": "Excellent", "serp_score": 6, "competition": "Extreme", '
        '"urgency": "Whenever", "verdict": "definitely", "reasoning": "Hmm."}'
    )
    heuristic = HeuristicAnalyzer().analyze("locksmith", "Austin", "TX", WEAK_SERP, "tier1")
    result = ClaudeAnalyzer("key", client=client).analyze("locksmith", "Austin", "TX", WEAK_SERP, "tier1")
    assert result.serp_quality == heuristic.serp_quality == "Weak"
    assert result.competition == heuristic.competition == "Low"
    assert result.urgency == heuristic.urgency
    assert result.verdict == heuristic.verdict
    assert result.serp_score == 6


CROWDED_SERP = SerpSignals(
    top_organic_domains=("yelp.com", "angi.com", "thumbtack.com", "a.com"),
    aggregator_positions=(1, 2, 3),
    ad_count=4,
)


def test_claude_triage_reads_string_booleans():
    client = fake_client(
        '{"overall_signal": "promising", "aggregator_dominance": "high", "ad_density": "high", '
        '"recommendation": "Look closer.", "worth_full_scan": "false"}'
    )
    triage = ClaudeAnalyzer("key", client=client).analyze_triage("Austin", "TX", CROWDED_SERP)
    assert triage.worth_full_scan is False
    assert triage.recommendation == "Look closer."


def test_claude_triage_garbage_values_use_heuristics():
    client = fake_client(
        '{"overall_signal": "amazing", "aggregator_dominance": "total", "ad_density": "lots", '
        '"worth_full_scan": "maybe"}'
    )
    heuristic = HeuristicAnalyzer().analyze_triage("Austin", "TX", CROWDED_SERP)
    triage = ClaudeAnalyzer("key", client=client).analyze_triage("Austin", "TX", CROWDED_SERP)
    assert triage.overall_signal == heuristic.overall_signal == "promising"
    assert triage.aggregator_dominance == "high"
    assert triage.ad_density == "high"
    assert triage.worth_full_scan is True
