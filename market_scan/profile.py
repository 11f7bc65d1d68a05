"""City profile detection from already-resolved demographics."""

from functools import lru_cache

from .config import (
    COASTAL,
    COLLEGE_TOWN,
    DEFAULT_SCAN_CONFIG,
    HIGH_INCOME,
    RETIREMENT_COMMUNITY,
    TOURISM_HUB,
    ScanConfig,
)
from .models import CityProfile, Demographics

HIGH_INCOME_THRESHOLD = 100_000
RETIREMENT_POPULATION = (20_000, 100_000)
RETIREMENT_MIN_HOMEOWNERSHIP = 70
COLLEGE_POPULATION = (10_000, 250_000)
COLLEGE_MAX_HOMEOWNERSHIP = 45
TOURISM_MIN_HOME_VALUE = 450_000
TOURISM_MAX_POPULATION = 150_000

# (lng_min, lng_max, lat_min, lat_max)
_COAST_BOXES = {
    "east": (-82, -66, 24, 48),
    "west": (-130, -117, 32, 49),
    "gulf": (-98, -80, 24, 32),
}


def _is_coastal(lat: float | None, lng: float | None) -> bool:
    if lat is None or lng is None:
        return False
    return any(
        lng_min < lng < lng_max and lat_min < lat < lat_max
        for lng_min, lng_max, lat_min, lat_max in _COAST_BOXES.values()
    )


@lru_cache(maxsize=256)
def _detect_traits(
    demographics: Demographics | None,
    lat: float | None,
    lng: float | None,
) -> tuple[str, ...]:
    traits: list[str] = []
    demo = demographics or Demographics()
    income = demo.median_household_income
    population = demo.population
    ownership = demo.homeownership_rate
    home_value = demo.median_home_value

    if income is not None and income > HIGH_INCOME_THRESHOLD:
        traits.append(HIGH_INCOME)

    coastal = _is_coastal(lat, lng)
    if coastal:
        traits.append(COASTAL)

    if population is not None and ownership is not None:
        low, high = RETIREMENT_POPULATION
        if low < population < high and ownership > RETIREMENT_MIN_HOMEOWNERSHIP:
            traits.append(RETIREMENT_COMMUNITY)
        low, high = COLLEGE_POPULATION
        if low <= population <= high and ownership < COLLEGE_MAX_HOMEOWNERSHIP:
            traits.append(COLLEGE_TOWN)

    if (
        coastal
        and home_value is not None
        and population is not None
        and home_value > TOURISM_MIN_HOME_VALUE
        and population < TOURISM_MAX_POPULATION
    ):
        traits.append(TOURISM_HUB)

    return tuple(traits)


def detect_city_profile(
    demographics: Demographics | None,
    lat: float | None = None,
    lng: float | None = None,
    config: ScanConfig = DEFAULT_SCAN_CONFIG,
) -> CityProfile:
    """
    Derive a CityProfile from demographics and optional coordinates.

    Each rule independently activates a trait; missing inputs just leave
    their traits off. Tier-2 categories are the union of every active
    trait's table entry, de-duplicated in order.
    """
    traits = _detect_traits(demographics, lat, lng)
    return profile_from_traits(traits, config)


def profile_from_traits(traits, config: ScanConfig = DEFAULT_SCAN_CONFIG) -> CityProfile:
    """Build a profile for an explicit trait list (used for overrides and tests)."""
    unique_traits = tuple(dict.fromkeys(traits))
    categories: list[str] = []
    for trait in unique_traits:
        for category in config.trait_categories.get(trait, ()):
            category = category.lower()
            if category not in categories:
                categories.append(category)
    return CityProfile(traits=unique_traits, tier2_categories=tuple(categories))
