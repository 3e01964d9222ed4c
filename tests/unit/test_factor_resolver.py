"""
Unit Tests for the Factor Resolver.

Tests resolve_context() and FactorContextCache:
- Neutral context without profile or factors
- Global multipliers compose, inactive factors are skipped
- Keyed percentage factors supply indirect, personal and waste rates
- Labor type and time adjustment multipliers; unknown values fail loudly
- Cached contexts are reused per key
"""

import pytest
from structlog.testing import capture_logs

from kalkia.config.errors import ConfigurationError, ErrorCode
from kalkia.models.catalog import BuildingProfile, GlobalFactor, LaborType, TimeAdjustment
from kalkia.services.factor_resolver import (
    REFERENCE_HOURLY_RATES,
    FactorContextCache,
    labor_rate_multiplier,
    resolve_context,
)


@pytest.fixture
def villa_profile():
    return BuildingProfile(
        id="bp-1",
        code="villa",
        name="Detached house",
        time_multiplier=1.1,
        accessibility_multiplier=1.2,
        material_waste_multiplier=1.5,
        overhead_multiplier=0.5,
    )


def _factor(factor_id, key, value, value_type="multiplier", is_active=True):
    return GlobalFactor(id=factor_id, factor_key=key, value=value,
                        value_type=value_type, is_active=is_active)


# =============================================================================
# Test: resolve_context
# =============================================================================


def test_neutral_context():
    """No profile and no factors gives all multipliers 1.0."""
    context = resolve_context()

    assert context.global_multiplier == 1.0
    assert context.time_multiplier == 1.0
    assert context.labor_rate_multiplier == 1.0
    assert context.profile_code is None
    assert context.indirect_time_percentage == 0.0
    assert context.personal_time_percentage == 0.0
    assert context.material_waste_percentage == 0.0


def test_profile_multipliers(villa_profile):
    """Time multiplier is global x profile time x accessibility."""
    context = resolve_context(building_profile=villa_profile)

    assert context.profile_code == "villa"
    assert context.profile_waste_multiplier == 1.5
    assert context.profile_overhead_multiplier == 0.5
    assert context.time_multiplier == pytest.approx(1.1 * 1.2)


def test_global_multipliers_compose(villa_profile):
    factors = [_factor("f-1", "season", 1.1), _factor("f-2", "market", 1.2)]

    context = resolve_context(villa_profile, factors)

    assert context.global_multiplier == pytest.approx(1.32)
    assert context.time_multiplier == pytest.approx(1.32 * 1.1 * 1.2)


def test_inactive_factors_skipped():
    factors = [
        _factor("f-1", "season", 1.5, is_active=False),
        _factor("f-2", "indirect_time", 15, "percentage", is_active=False),
    ]

    context = resolve_context(active_global_factors=factors)

    assert context.global_multiplier == 1.0
    assert context.indirect_time_percentage == 0.0


def test_percentage_factors_supply_rates():
    factors = [
        _factor("f-1", "indirect_time", 15, "percentage"),
        _factor("f-2", "personal_time", 8, "percentage"),
        _factor("f-3", "material_waste", 5, "percentage"),
    ]

    context = resolve_context(active_global_factors=factors)

    assert context.indirect_time_percentage == 15
    assert context.personal_time_percentage == 8
    assert context.material_waste_percentage == 5
    assert context.global_multiplier == 1.0


def test_unknown_percentage_factor_ignored_with_warning():
    with capture_logs() as logs:
        context = resolve_context(
            active_global_factors=[_factor("f-9", "coffee_breaks", 3, "percentage")]
        )

    assert context.global_multiplier == 1.0
    warning = next(e for e in logs if e["event"] == "unknown_percentage_factor_ignored")
    assert warning["log_level"] == "warning"
    assert warning["factor_key"] == "coffee_breaks"


# =============================================================================
# Test: labor multipliers
# =============================================================================


@pytest.mark.parametrize("labor_type,time_adjustment,expected", [
    ("apprentice", "normal", 295 / 495),
    ("helper", "normal", 350 / 495),
    ("electrician", "normal", 1.0),
    ("master", "normal", 650 / 495),
    ("electrician", "overtime", 1.5),
    ("electrician", "weekend", 2.0),
    ("master", "overtime", 650 / 495 * 1.5),
])
def test_labor_rate_multiplier(labor_type, time_adjustment, expected):
    context = resolve_context(labor_type=labor_type, time_adjustment=time_adjustment)

    assert context.labor_rate_multiplier == pytest.approx(expected)
    assert labor_rate_multiplier(labor_type, time_adjustment) == pytest.approx(expected)


def test_reference_rates_reproduced_at_electrician_rate():
    """At 495/h each labor type bills its reference rate exactly."""
    for labor_type, rate in REFERENCE_HOURLY_RATES.items():
        assert 495 * labor_rate_multiplier(labor_type.value, "normal") == pytest.approx(rate)


def test_enum_members_accepted():
    context = resolve_context(labor_type=LaborType.MASTER, time_adjustment=TimeAdjustment.WEEKEND)

    assert context.labor_type == LaborType.MASTER
    assert context.labor_rate_multiplier == pytest.approx(650 / 495 * 2)


def test_unknown_labor_type_raises():
    """An unknown labor type never falls back to a default."""
    with pytest.raises(ConfigurationError) as exc_info:
        resolve_context(labor_type="unknown")

    error = exc_info.value
    assert error.code == ErrorCode.UNKNOWN_LABOR_TYPE
    assert error.field == "labor_type"
    assert error.value == "unknown"


def test_unknown_time_adjustment_raises():
    with pytest.raises(ConfigurationError) as exc_info:
        resolve_context(time_adjustment="night")

    assert exc_info.value.code == ErrorCode.UNKNOWN_TIME_ADJUSTMENT
    assert exc_info.value.to_dict()["details"]["field"] == "time_adjustment"


# =============================================================================
# Test: FactorContextCache
# =============================================================================


class TestFactorContextCache:
    """Tests for memoised context resolution."""

    def test_same_key_returns_cached_context(self, villa_profile):
        cache = FactorContextCache()
        factors = [_factor("f-1", "season", 1.1)]

        first = cache.resolve(villa_profile, factors)
        second = cache.resolve(villa_profile, list(reversed(factors)))

        assert first is second
        assert len(cache) == 1

    def test_different_labor_type_is_new_entry(self, villa_profile):
        cache = FactorContextCache()

        normal = cache.resolve(villa_profile, labor_type="electrician")
        master = cache.resolve(villa_profile, labor_type="master")

        assert normal is not master
        assert master.labor_rate_multiplier == pytest.approx(650 / 495)
        assert len(cache) == 2

    def test_changed_factor_value_is_new_entry(self):
        cache = FactorContextCache()

        low = cache.resolve(active_global_factors=[_factor("f-1", "season", 1.1)])
        high = cache.resolve(active_global_factors=[_factor("f-1", "season", 1.3)])

        assert low.global_multiplier == pytest.approx(1.1)
        assert high.global_multiplier == pytest.approx(1.3)

    def test_inactive_factors_do_not_change_key(self):
        cache = FactorContextCache()

        plain = cache.resolve()
        with_inactive = cache.resolve(active_global_factors=[_factor("f-1", "x", 9, is_active=False)])

        assert plain is with_inactive

    def test_cached_equals_uncached(self, villa_profile):
        cache = FactorContextCache()
        factors = [_factor("f-1", "indirect_time", 15, "percentage")]

        assert cache.resolve(villa_profile, factors) == resolve_context(villa_profile, factors)

    def test_clear(self):
        cache = FactorContextCache()
        cache.resolve()
        cache.clear()

        assert len(cache) == 0

    def test_errors_are_not_cached(self):
        cache = FactorContextCache()
        with pytest.raises(ConfigurationError):
            cache.resolve(labor_type="unknown")

        assert len(cache) == 0
