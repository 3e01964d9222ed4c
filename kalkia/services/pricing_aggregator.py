"""Pricing Aggregator for Kalkia.

Reduces calculated items to a ``CalculationResult`` through a fixed pipeline:

    1. totals        cost_price = material + waste + labor + other
    2. buffers       overhead, risk (percent of cost_price; risk scaled by
                     the optional 1-5 risk score)
    3. sales basis   cost_price + overhead + risk
    4. margin        sales_basis * margin% / 100 (markup on sales basis)
    5. sale          sales_basis + margin
    6. discount      net = sale - sale * discount% / 100
    7. VAT           final = net + net * vat% / 100
    8. coverage      DB = sale - cost_price, DB%, DB per labor hour

Each stage is a pure function of earlier stage outputs and the settings, so
a stored result can be replayed from its own cost price, labor hours and
``factors_used`` (see ``replay``).
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import structlog

from kalkia.config.errors import ComputationError, ErrorCode, ValidationError
from kalkia.config.settings import settings as app_settings
from kalkia.models.calculation import (
    CalculatedItem,
    CalculationResult,
    CalculationSettings,
    FactorContext,
    FactorsUsed,
)

logger = structlog.get_logger(__name__)

SECONDS_PER_HOUR = 3600

# Each risk score step above 1 adds 2.5% to the risk buffer (score 5 => x1.10)
MIN_RISK_SCORE = 1.0
MAX_RISK_SCORE = 5.0
RISK_SCORE_STEP = 0.025


@dataclass(frozen=True)
class CostTotals:
    """Stage 1 output."""

    direct_time_seconds: float
    indirect_time_seconds: float
    personal_time_seconds: float
    labor_time_seconds: float
    labor_hours: float
    material_cost: float     # Excluding waste
    material_waste: float
    labor_cost: float
    other_costs: float
    cost_price: float


@dataclass(frozen=True)
class PriceStages:
    """Stages 2-8 output."""

    overhead_amount: float
    risk_amount: float
    sales_basis: float
    margin_amount: float
    sale_price_excl_vat: float
    discount_amount: float
    net_price: float
    vat_amount: float
    final_amount: float
    db_amount: float
    db_percentage: float
    db_per_hour: float


# =============================================================================
# SETTINGS VALIDATION
# =============================================================================


def _check_range(name: str, value: float, upper_exclusive: float = math.inf) -> None:
    if not math.isfinite(value) or value < 0 or value >= upper_exclusive:
        bound = f"[0, {upper_exclusive:g})" if math.isfinite(upper_exclusive) else "[0, inf)"
        raise ValidationError(
            f"{name} must be in {bound}",
            field=name,
            value=value,
            code=ErrorCode.INVALID_PERCENTAGE,
        )


def validate_settings(settings: CalculationSettings) -> None:
    """Check calculation settings before any arithmetic runs.

    Raises:
        ValidationError: hourly_rate not positive, margin or discount outside
            [0, 100), overhead, risk or VAT negative, or risk_score outside
            [1, 5].
    """
    if not math.isfinite(settings.hourly_rate) or settings.hourly_rate <= 0:
        raise ValidationError(
            "hourly_rate must be positive",
            field="hourly_rate",
            value=settings.hourly_rate,
        )
    _check_range("margin_percentage", settings.margin_percentage, 100)
    _check_range("discount_percentage", settings.discount_percentage, 100)
    _check_range("overhead_percentage", settings.overhead_percentage)
    _check_range("risk_percentage", settings.risk_percentage)
    _check_range("vat_percentage", settings.vat_percentage)
    score = settings.risk_score
    if score is not None and not (
        math.isfinite(score) and MIN_RISK_SCORE <= score <= MAX_RISK_SCORE
    ):
        raise ValidationError(
            f"risk_score must be in [{MIN_RISK_SCORE:g}, {MAX_RISK_SCORE:g}]",
            field="risk_score",
            value=score,
        )


def risk_adjusted_percentage(risk_percentage: float, risk_score: Optional[float]) -> float:
    """Risk buffer percentage scaled by ``1 + (score - 1) x 0.025``."""
    if risk_score is None:
        return risk_percentage
    return risk_percentage * (1 + (risk_score - MIN_RISK_SCORE) * RISK_SCORE_STEP)


# =============================================================================
# PIPELINE STAGES
# =============================================================================


def total_costs(
    items: Sequence[CalculatedItem],
    settings: CalculationSettings,
    context: FactorContext,
) -> CostTotals:
    """Stage 1: sum item time and costs, adding indirect and personal time."""
    direct = sum(item.adjusted_time_seconds for item in items)
    indirect = direct * context.indirect_time_percentage / 100
    personal = direct * context.personal_time_percentage / 100
    labor_seconds = direct + indirect + personal

    extra_labor_cost = (
        (indirect + personal) / SECONDS_PER_HOUR
        * settings.hourly_rate
        * context.labor_rate_multiplier
    )
    labor_cost = sum(item.labor_cost for item in items) + extra_labor_cost
    waste = sum(item.material_waste for item in items)
    material = sum(item.material_cost for item in items) - waste
    other = sum(item.other_cost for item in items)

    return CostTotals(
        direct_time_seconds=direct,
        indirect_time_seconds=indirect,
        personal_time_seconds=personal,
        labor_time_seconds=labor_seconds,
        labor_hours=labor_seconds / SECONDS_PER_HOUR,
        material_cost=material,
        material_waste=waste,
        labor_cost=labor_cost,
        other_costs=other,
        cost_price=material + waste + labor_cost + other,
    )


def overhead_and_risk(
    cost_price: float, overhead_percentage: float, risk_percentage: float
) -> Tuple[float, float]:
    """Stage 2."""
    return cost_price * overhead_percentage / 100, cost_price * risk_percentage / 100


def sales_basis(cost_price: float, overhead_amount: float, risk_amount: float) -> float:
    """Stage 3."""
    return cost_price + overhead_amount + risk_amount


def margin_amount(basis: float, margin_percentage: float) -> float:
    """Stage 4: markup on the sales basis."""
    return basis * margin_percentage / 100


def sale_price_excl_vat(basis: float, margin: float) -> float:
    """Stage 5."""
    return basis + margin


def discount_and_net(sale_price: float, discount_percentage: float) -> Tuple[float, float]:
    """Stage 6."""
    discount = sale_price * discount_percentage / 100
    return discount, sale_price - discount


def vat_and_final(net_price: float, vat_percentage: float) -> Tuple[float, float]:
    """Stage 7."""
    vat = net_price * vat_percentage / 100
    return vat, net_price + vat


def coverage(sale_price: float, cost_price: float, labor_hours: float) -> Tuple[float, float, float]:
    """Stage 8: DB amount, DB percentage and DB per labor hour.

    DB% is 0 when the sale price is 0; DB/hour is 0 when there are no hours.
    """
    db = sale_price - cost_price
    db_percentage = db / sale_price * 100 if sale_price != 0 else 0.0
    db_per_hour = db / labor_hours if labor_hours > 0 else 0.0
    return db, db_percentage, db_per_hour


def price_from_sales_basis(
    basis: float,
    cost_price: float,
    labor_hours: float,
    margin_percentage: float,
    discount_percentage: float,
    vat_percentage: float,
) -> Tuple[float, ...]:
    """Stages 4-8 from a sales basis.

    Returns:
        (margin, sale_excl_vat, discount, net, vat, final, db, db%, db/hour)
    """
    margin = margin_amount(basis, margin_percentage)
    sale = sale_price_excl_vat(basis, margin)
    discount, net = discount_and_net(sale, discount_percentage)
    vat, final = vat_and_final(net, vat_percentage)
    db, db_percentage, db_per_hour = coverage(sale, cost_price, labor_hours)
    return margin, sale, discount, net, vat, final, db, db_percentage, db_per_hour


def price_stages(cost_price: float, labor_hours: float, factors: FactorsUsed) -> PriceStages:
    """Stages 2-8 from a cost price and the stored factors."""
    overhead, risk = overhead_and_risk(
        cost_price, factors.overhead_percentage, factors.risk_percentage
    )
    basis = sales_basis(cost_price, overhead, risk)
    margin, sale, discount, net, vat, final, db, db_percentage, db_per_hour = (
        price_from_sales_basis(
            basis,
            cost_price,
            labor_hours,
            factors.margin_percentage,
            factors.discount_percentage,
            factors.vat_percentage,
        )
    )
    return PriceStages(
        overhead_amount=overhead,
        risk_amount=risk,
        sales_basis=basis,
        margin_amount=margin,
        sale_price_excl_vat=sale,
        discount_amount=discount,
        net_price=net,
        vat_amount=vat,
        final_amount=final,
        db_amount=db,
        db_percentage=db_percentage,
        db_per_hour=db_per_hour,
    )


def _stage_fields(stages: PriceStages) -> dict:
    fields = {
        "overhead_amount": stages.overhead_amount,
        "risk_amount": stages.risk_amount,
        "sales_basis": stages.sales_basis,
        "margin_amount": stages.margin_amount,
        "sale_price_excl_vat": stages.sale_price_excl_vat,
        "discount_amount": stages.discount_amount,
        "net_price": stages.net_price,
        "vat_amount": stages.vat_amount,
        "final_amount": stages.final_amount,
        "db_amount": stages.db_amount,
        "db_percentage": stages.db_percentage,
        "db_per_hour": stages.db_per_hour,
        "coverage_ratio": stages.db_percentage,
    }
    for name, value in fields.items():
        if not math.isfinite(value):
            raise ComputationError(name, value)
    return fields


# =============================================================================
# AGGREGATE
# =============================================================================


def aggregate(
    items: Sequence[CalculatedItem],
    settings: CalculationSettings,
    context: FactorContext,
) -> CalculationResult:
    """Run the pricing pipeline over calculated items.

    Args:
        items: Per-item results, in any order
        settings: Calculation settings
        context: The factor context the items were calculated with

    Returns:
        CalculationResult

    Raises:
        ValidationError: Settings out of range.
        ComputationError: A stage produced NaN or an infinite value.
    """
    validate_settings(settings)

    totals = total_costs(items, settings, context)
    for name in ("labor_time_seconds", "labor_cost", "material_cost", "cost_price"):
        value = getattr(totals, name)
        if not math.isfinite(value):
            raise ComputationError(name, value)

    factors = FactorsUsed(
        hourly_rate=settings.hourly_rate,
        labor_rate_multiplier=context.labor_rate_multiplier,
        indirect_time_percentage=context.indirect_time_percentage,
        personal_time_percentage=context.personal_time_percentage,
        overhead_percentage=settings.overhead_percentage * context.profile_overhead_multiplier,
        risk_percentage=risk_adjusted_percentage(settings.risk_percentage, settings.risk_score),
        margin_percentage=settings.margin_percentage,
        discount_percentage=settings.discount_percentage,
        vat_percentage=settings.vat_percentage,
        margin_convention=app_settings.margin_convention,
        risk_score=settings.risk_score,
    )

    stages = price_stages(totals.cost_price, totals.labor_hours, factors)

    result = CalculationResult(
        total_direct_time_seconds=totals.direct_time_seconds,
        total_indirect_time_seconds=totals.indirect_time_seconds,
        total_personal_time_seconds=totals.personal_time_seconds,
        total_labor_time_seconds=totals.labor_time_seconds,
        total_labor_hours=totals.labor_hours,
        total_material_cost=totals.material_cost,
        total_material_waste=totals.material_waste,
        total_labor_cost=totals.labor_cost,
        total_other_costs=totals.other_costs,
        cost_price=totals.cost_price,
        factors_used=factors,
        **_stage_fields(stages),
    )

    logger.debug(
        "pricing_aggregated",
        items=len(items),
        cost_price=result.cost_price,
        final_amount=result.final_amount,
        db_percentage=result.db_percentage,
    )
    return result


def replay(result: CalculationResult) -> CalculationResult:
    """Recompute stages 2-8 of a stored result from its own inputs.

    A faithful snapshot replays to an identical result.
    """
    stages = price_stages(result.cost_price, result.total_labor_hours, result.factors_used)
    return result.model_copy(update=_stage_fields(stages))
