import dataclasses

import pytest

from market_scan.config import (
    COASTAL,
    COLLEGE_TOWN,
    HIGH_INCOME,
    RETIREMENT_COMMUNITY,
    TOURISM_HUB,
    ScanConfig,
)
from market_scan.models import Demographics
from market_scan.profile import detect_city_profile, profile_from_traits


def test_high_income_activates_pool_service():
    profile = detect_city_profile(Demographics(median_household_income=150_000))
    assert profile.traits == (HIGH_INCOME,)
    assert profile.tier2_categories == ("pool service",)


def test_coastal_from_coordinates():
    miami = detect_city_profile(Demographics(), lat=25.76, lng=-80.19)
    denver = detect_city_profile(Demographics(), lat=39.74, lng=-104.99)
    assert miami.has_trait(COASTAL)
    assert miami.traits.count(COASTAL) == 1
    assert not denver.has_trait(COASTAL)


def test_retirement_and_college_rules():
    retirement = detect_city_profile(Demographics(population=50_000, homeownership_rate=75))
    college = detect_city_profile(Demographics(population=100_000, homeownership_rate=40))
    assert RETIREMENT_COMMUNITY in retirement.traits
    assert "senior home care" in retirement.tier2_categories
    assert COLLEGE_TOWN in college.traits
    assert "move out cleaning" in college.tier2_categories


def test_tourism_hub_needs_coast_and_expensive_homes():
    demo = Demographics(population=80_000, median_home_value=600_000)
    assert TOURISM_HUB in detect_city_profile(demo, lat=34.0, lng=-118.8).traits
    assert TOURISM_HUB not in detect_city_profile(demo).traits


def test_missing_inputs_activate_nothing():
    profile = detect_city_profile(None)
    assert profile.traits == ()
    assert profile.tier2_categories == ()


def test_trait_categories_are_unioned_without_duplicates():
    config = ScanConfig(
        trait_categories={
            HIGH_INCOME: ("Pool Service", "window cleaning"),
            COASTAL: ("pool service", "boat detailing"),
        }
    )
    profile = profile_from_traits([HIGH_INCOME, COASTAL, HIGH_INCOME], config)
    assert profile.traits == (HIGH_INCOME, COASTAL)
    assert profile.tier2_categories == ("pool service", "window cleaning", "boat detailing")


def test_profile_is_immutable():
    profile = detect_city_profile(Demographics(median_household_income=150_000))
    with pytest.raises(dataclasses.FrozenInstanceError):
        profile.traits = ()
