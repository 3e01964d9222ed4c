"""Factor Resolver for Kalkia.

Combines the building profile, the active global factors and the chosen
labor type / time adjustment into one frozen ``FactorContext`` that every
item of a calculation reads.

Labor multipliers are relative to an electrician on normal hours; rates in
DKK follow from ``hourly_rate x labor_rate_multiplier``.
"""

import threading
from typing import Dict, Hashable, Iterable, Optional, Tuple

import structlog

from kalkia.config.errors import ConfigurationError, ErrorCode
from kalkia.models.calculation import FactorContext
from kalkia.models.catalog import (
    BuildingProfile,
    FactorValueType,
    GlobalFactor,
    LaborType,
    TimeAdjustment,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# LABOR MULTIPLIERS
# =============================================================================
# Reference hourly rates (DKK); multipliers are relative to the electrician rate.

REFERENCE_HOURLY_RATES: Dict[LaborType, float] = {
    LaborType.APPRENTICE: 295.0,
    LaborType.HELPER: 350.0,
    LaborType.ELECTRICIAN: 495.0,
    LaborType.MASTER: 650.0,
}

LABOR_TYPE_MULTIPLIERS: Dict[LaborType, float] = {
    labor: rate / REFERENCE_HOURLY_RATES[LaborType.ELECTRICIAN]
    for labor, rate in REFERENCE_HOURLY_RATES.items()
}

TIME_ADJUSTMENT_MULTIPLIERS: Dict[TimeAdjustment, float] = {
    TimeAdjustment.NORMAL: 1.0,
    TimeAdjustment.OVERTIME: 1.5,
    TimeAdjustment.WEEKEND: 2.0,
}

# Percentage factor keys the engine understands
INDIRECT_TIME_KEY = "indirect_time"
PERSONAL_TIME_KEY = "personal_time"
MATERIAL_WASTE_KEY = "material_waste"
PERCENTAGE_FACTOR_KEYS = (INDIRECT_TIME_KEY, PERSONAL_TIME_KEY, MATERIAL_WASTE_KEY)


def _lookup_labor_type(labor_type: str) -> LaborType:
    try:
        return LaborType(labor_type)
    except ValueError:
        raise ConfigurationError(
            f"Unknown labor type {labor_type!r}",
            field="labor_type",
            value=labor_type,
            code=ErrorCode.UNKNOWN_LABOR_TYPE,
        ) from None


def _lookup_time_adjustment(time_adjustment: str) -> TimeAdjustment:
    try:
        return TimeAdjustment(time_adjustment)
    except ValueError:
        raise ConfigurationError(
            f"Unknown time adjustment {time_adjustment!r}",
            field="time_adjustment",
            value=time_adjustment,
            code=ErrorCode.UNKNOWN_TIME_ADJUSTMENT,
        ) from None


def labor_rate_multiplier(labor_type: str, time_adjustment: str) -> float:
    """Multiplier applied to the hourly rate for a labor type and time of work.

    Raises:
        ConfigurationError: If either value is not recognized.
    """
    return (
        LABOR_TYPE_MULTIPLIERS[_lookup_labor_type(labor_type)]
        * TIME_ADJUSTMENT_MULTIPLIERS[_lookup_time_adjustment(time_adjustment)]
    )


def resolve_context(
    building_profile: Optional[BuildingProfile] = None,
    active_global_factors: Iterable[GlobalFactor] = (),
    labor_type: str = LaborType.ELECTRICIAN.value,
    time_adjustment: str = TimeAdjustment.NORMAL.value,
) -> FactorContext:
    """Resolve the multipliers shared by every item of a calculation.

    Args:
        building_profile: Optional profile; absent means all multipliers 1.0
        active_global_factors: Global factors; inactive ones are skipped
        labor_type: One of ``LaborType`` values
        time_adjustment: One of ``TimeAdjustment`` values

    Returns:
        Frozen FactorContext

    Raises:
        ConfigurationError: Unknown labor type or time adjustment.
    """
    labor = _lookup_labor_type(labor_type)
    adjustment = _lookup_time_adjustment(time_adjustment)

    global_multiplier = 1.0
    rates = {key: 0.0 for key in PERCENTAGE_FACTOR_KEYS}

    for factor in active_global_factors:
        if not factor.is_active:
            continue
        if factor.value_type == FactorValueType.MULTIPLIER:
            global_multiplier *= factor.value
        elif factor.factor_key in rates:
            rates[factor.factor_key] = factor.value
        else:
            logger.warning(
                "unknown_percentage_factor_ignored",
                factor_id=factor.id,
                factor_key=factor.factor_key,
                value=factor.value,
            )

    profile_fields = {}
    if building_profile is not None:
        profile_fields = dict(
            profile_id=building_profile.id,
            profile_code=building_profile.code,
            profile_time_multiplier=building_profile.time_multiplier,
            profile_accessibility_multiplier=building_profile.accessibility_multiplier,
            profile_waste_multiplier=building_profile.material_waste_multiplier,
            profile_overhead_multiplier=building_profile.overhead_multiplier,
        )

    context = FactorContext(
        global_multiplier=global_multiplier,
        labor_type=labor,
        time_adjustment=adjustment,
        labor_rate_multiplier=labor_rate_multiplier(labor_type, time_adjustment),
        indirect_time_percentage=rates[INDIRECT_TIME_KEY],
        personal_time_percentage=rates[PERSONAL_TIME_KEY],
        material_waste_percentage=rates[MATERIAL_WASTE_KEY],
        **profile_fields,
    )

    logger.debug(
        "factor_context_resolved",
        profile_code=context.profile_code,
        global_multiplier=context.global_multiplier,
        time_multiplier=context.time_multiplier,
        labor_rate_multiplier=context.labor_rate_multiplier,
    )
    return context


class FactorContextCache:
    """Thread-safe memo of resolved contexts.

    Keyed by the profile values, the sorted set of active factors, labor
    type and time adjustment.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._contexts: Dict[Hashable, FactorContext] = {}

    @staticmethod
    def _key(
        building_profile: Optional[BuildingProfile],
        active_global_factors: Tuple[GlobalFactor, ...],
        labor_type: str,
        time_adjustment: str,
    ) -> Hashable:
        factors = tuple(sorted(
            (f.id, f.factor_key, f.value, f.value_type.value)
            for f in active_global_factors
            if f.is_active
        ))
        profile = None
        if building_profile is not None:
            profile = (
                building_profile.id,
                building_profile.code,
                building_profile.time_multiplier,
                building_profile.accessibility_multiplier,
                building_profile.material_waste_multiplier,
                building_profile.overhead_multiplier,
            )
        return (profile, factors, labor_type, time_adjustment)

    def resolve(
        self,
        building_profile: Optional[BuildingProfile] = None,
        active_global_factors: Iterable[GlobalFactor] = (),
        labor_type: str = LaborType.ELECTRICIAN.value,
        time_adjustment: str = TimeAdjustment.NORMAL.value,
    ) -> FactorContext:
        """Return a cached context, resolving it on first use."""
        factors = tuple(active_global_factors)
        key = self._key(building_profile, factors, labor_type, time_adjustment)
        with self._lock:
            cached = self._contexts.get(key)
        if cached is not None:
            return cached

        context = resolve_context(building_profile, factors, labor_type, time_adjustment)
        with self._lock:
            self._contexts.setdefault(key, context)
        return context

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)
