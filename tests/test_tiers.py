from dataclasses import replace

import pytest

from market_scan.config import (
    COASTAL,
    COLLEGE_TOWN,
    DEFAULT_SCAN_CONFIG,
    HIGH_INCOME,
    RETIREMENT_COMMUNITY,
    TRAITS,
    ScanConfig,
)
from market_scan.models import CityProfile, SerpSignals
from market_scan.profile import profile_from_traits
from market_scan.tiers import (
    assess_category_viability,
    calculate_aggregator_dominance,
    get_categories_to_scan,
    get_category_tier,
    get_lead_economics,
    get_tier3_categories,
)

TIER_RANK = {"tier1": 0, "tier2": 1, "conditional": 2}


@pytest.mark.parametrize(
    "traits",
    [(), (HIGH_INCOME,), (COASTAL, RETIREMENT_COMMUNITY), TRAITS],
)
def test_plan_is_ordered_unique_and_sized(traits):
    profile = profile_from_traits(traits)
    plan = get_categories_to_scan(profile)
    ordered = plan.ordered()

    assert len(ordered) == plan.total
    assert len(set(ordered)) == len(ordered)
    ranks = [TIER_RANK[get_category_tier(c, profile)] for c in ordered]
    assert ranks == sorted(ranks)


def test_empty_profile_scans_tier1_and_conditional_only():
    plan = get_categories_to_scan(CityProfile())
    assert plan.tier2 == ()
    assert plan.ordered() == [*DEFAULT_SCAN_CONFIG.tier1_categories, *DEFAULT_SCAN_CONFIG.conditional_names]


def test_tier2_skips_names_already_scanned_elsewhere():
    config = ScanConfig(trait_categories={COLLEGE_TOWN: ("locksmith", "roofing", "moving service")})
    plan = get_categories_to_scan(profile_from_traits([COLLEGE_TOWN], config), config)
    assert plan.tier2 == ("moving service",)


def test_hand_built_profile_names_are_case_folded():
    profile = CityProfile(tier2_categories=("Roofing", "Pool Service", "pool service"))
    plan = get_categories_to_scan(profile)
    ordered = plan.ordered()

    assert plan.tier2 == ("pool service",)
    assert ordered.count("roofing") == 1
    assert get_category_tier("pool service", profile) == "tier2"
    assert get_category_tier("Roofing", profile) == "conditional"


def test_cap_trims_tier2_before_conditional():
    config = replace(DEFAULT_SCAN_CONFIG, max_searches_per_city=8)
    profile = profile_from_traits([HIGH_INCOME, COASTAL], config)
    plan = get_categories_to_scan(profile, config)
    assert len(plan.tier1) == 6
    assert plan.tier2 == ("pool service", "vacation rental cleaning")
    assert plan.conditional == ()
    assert plan.total == 8


def test_category_tier_lookup():
    profile = profile_from_traits([HIGH_INCOME])
    assert get_category_tier("Locksmith", profile) == "tier1"
    assert get_category_tier("roofing", profile) == "conditional"
    assert get_category_tier("pool service", profile) == "tier2"
    assert get_category_tier("garage door spring repair", profile) == "tier3"


def test_tier3_expansions_only_above_threshold():
    assert get_tier3_categories("locksmith", 6) == []
    assert "car lockout" in get_tier3_categories("locksmith", 7)
    disabled = replace(DEFAULT_SCAN_CONFIG, enable_deep_dive=False)
    assert get_tier3_categories("locksmith", 10, disabled) == []


def test_lead_economics_lookup():
    assert get_lead_economics("Garage Door Repair")["provider_pays"] == (80, 120)
    assert get_lead_economics("gutter cleaning") is None


def test_aggregator_dominance_percent():
    signals = SerpSignals(top_organic_domains=("a.com", "yelp.com", "angi.com", "b.com"), aggregator_positions=(2, 3))
    assert calculate_aggregator_dominance(signals) == 50
    assert calculate_aggregator_dominance(SerpSignals()) == 0


def test_conditional_category_viable_in_quiet_market():
    signals = SerpSignals(
        top_organic_domains=("yelp.com", "a.com", "b.com", "c.com", "d.com"),
        aggregator_positions=(1,),
        ad_count=1,
    )
    viability = assess_category_viability("hvac repair", signals)
    assert viability.viable
    assert viability.confidence == "high"


def test_conditional_category_not_viable_with_lsas():
    signals = SerpSignals(
        has_lsas=True,
        lsa_count=3,
        top_organic_domains=("a.com", "b.com", "c.com"),
        ad_count=0,
    )
    viability = assess_category_viability("roofing", signals)
    assert not viability.viable
    assert "LSAs present" in viability.reason
