"""Item Time & Cost Calculator for Kalkia.

Turns one calculation item (component + variant + quantity + site
conditions) into a ``CalculatedItem``: rule-adjusted labor time, material
cost with waste, labor cost and sale price.

Time flows per unit until the very end:

    base      = (base_time_minutes * variant.time_multiplier + extra_minutes)
                * 60 * complexity_factor
    ruled     = base after matching rules (priority order; multiply, then add)
    adjusted  = ruled * context.time_multiplier
    totals    = per-unit values * quantity

Everything here is pure. The same inputs give bit-identical outputs.
"""

import math
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple

import structlog

from kalkia.config.errors import (
    ComputationError,
    DataIntegrityError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from kalkia.models.calculation import (
    CalculatedItem,
    CalculationItemInput,
    CalculationSettings,
    FactorContext,
    SupplierPrice,
)
from kalkia.models.catalog import (
    AccessCondition,
    AddEffect,
    BuildingProfileCondition,
    Component,
    CustomCondition,
    DistanceCondition,
    EffectField,
    FlagEffect,
    HeightCondition,
    MultiplyEffect,
    QuantityCondition,
    Rule,
    RuleCondition,
    Variant,
    VariantMaterial,
)

logger = structlog.get_logger(__name__)

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600


@dataclass
class RuleOutcome:
    """Per-unit running values after rule application."""

    seconds: float
    cost: float
    rules_applied: List[str] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)


def _finite(name: str, value: float) -> float:
    if not math.isfinite(value):
        raise ComputationError(name, value)
    return value


def _within(value: Optional[float], low: Optional[float], high: Optional[float]) -> bool:
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


# =============================================================================
# VARIANT RESOLUTION
# =============================================================================


def resolve_variant(
    component: Component,
    variants: Sequence[Variant],
    variant_id: Optional[str] = None,
) -> Variant:
    """Pick the variant an item is calculated with.

    Args:
        component: The item's component
        variants: The component's variants
        variant_id: Explicit choice, if any

    Returns:
        The explicit variant, else the default one, else the first by
        ``sort_order``.

    Raises:
        NotFoundError: ``variant_id`` is not one of the component's variants.
        DataIntegrityError: The component has no variants.
    """
    own = [v for v in variants if v.component_id == component.id]

    if variant_id is not None:
        for variant in own:
            if variant.id == variant_id:
                return variant
        raise NotFoundError(
            "variant",
            variant_id,
            code=ErrorCode.VARIANT_NOT_FOUND,
            details={"component_id": component.id},
        )

    if not own:
        raise DataIntegrityError(
            f"Component {component.id!r} has no variants",
            entity="component",
            entity_id=component.id,
            code=ErrorCode.NO_VARIANTS,
        )

    for variant in own:
        if variant.is_default:
            return variant
    return min(own, key=lambda v: v.sort_order)


# =============================================================================
# RULES
# =============================================================================


def evaluate_condition(
    condition: RuleCondition,
    item: CalculationItemInput,
    context: FactorContext,
) -> bool:
    """Whether a rule condition holds for an item.

    Range conditions are inclusive and never match when the item does not
    state the value.
    """
    conditions = item.conditions
    if isinstance(condition, QuantityCondition):
        return _within(item.quantity, condition.min_quantity, condition.max_quantity)
    if isinstance(condition, HeightCondition):
        return _within(conditions.height, condition.min_height, condition.max_height)
    if isinstance(condition, DistanceCondition):
        return _within(conditions.distance, condition.min_distance, condition.max_distance)
    if isinstance(condition, AccessCondition):
        return conditions.access is not None and conditions.access == condition.access
    if isinstance(condition, BuildingProfileCondition):
        return context.profile_code == condition.profile_code
    if isinstance(condition, CustomCondition):
        return all(
            key in conditions.custom and conditions.custom[key] == value
            for key, value in condition.values.items()
        )
    return False


def apply_rules(
    rules: Sequence[Rule],
    item: CalculationItemInput,
    context: FactorContext,
    seconds: float,
    cost: float,
) -> RuleOutcome:
    """Apply matching rules to per-unit time and material cost.

    Active rules run in ascending ``priority``; equal priorities keep their
    order in ``rules``. Within a rule, multiply effects apply before add
    effects.
    """
    outcome = RuleOutcome(seconds=seconds, cost=cost)

    for rule in sorted((r for r in rules if r.is_active), key=lambda r: r.priority):
        if not evaluate_condition(rule.condition, item, context):
            continue

        for effect in rule.effects:
            if isinstance(effect, MultiplyEffect):
                if effect.field == EffectField.TIME:
                    outcome.seconds *= effect.factor
                else:
                    outcome.cost *= effect.factor
        for effect in rule.effects:
            if isinstance(effect, AddEffect):
                if effect.field == EffectField.TIME:
                    outcome.seconds += effect.amount
                else:
                    outcome.cost += effect.amount
            elif isinstance(effect, FlagEffect) and effect.name not in outcome.flags:
                outcome.flags.append(effect.name)

        outcome.rules_applied.append(rule.name)

    return outcome


# =============================================================================
# ITEM CALCULATION
# =============================================================================


def _check_ownership(
    component: Component,
    variant: Variant,
    materials: Sequence[VariantMaterial],
    rules: Sequence[Rule],
) -> None:
    if variant.component_id != component.id:
        raise DataIntegrityError(
            f"Variant {variant.id!r} does not belong to component {component.id!r}",
            entity="variant",
            entity_id=variant.id,
        )
    for material in materials:
        if material.variant_id != variant.id:
            raise DataIntegrityError(
                f"Material {material.id!r} does not belong to variant {variant.id!r}",
                entity="material",
                entity_id=material.id,
            )
    for rule in rules:
        if rule.component_id != component.id:
            raise DataIntegrityError(
                f"Rule {rule.id!r} does not belong to component {component.id!r}",
                entity="rule",
                entity_id=rule.id,
                code=ErrorCode.INVALID_RULE,
            )
        if rule.variant_id is not None and rule.variant_id != variant.id:
            raise DataIntegrityError(
                f"Rule {rule.id!r} is scoped to variant {rule.variant_id!r}, not {variant.id!r}",
                entity="rule",
                entity_id=rule.id,
                code=ErrorCode.INVALID_RULE,
            )


def _material_unit_costs(
    materials: Sequence[VariantMaterial],
    context: FactorContext,
    supplier_prices: Optional[Mapping[str, SupplierPrice]] = None,
) -> Tuple[float, float, int]:
    """Per-unit material cost including waste, its waste part, and the
    number of materials priced from a live supplier price.

    The waste fraction is ``(waste% + global material_waste%) / 100`` scaled
    by the profile waste multiplier. Stale supplier prices are ignored.
    """
    supplier_prices = supplier_prices or {}
    cost = 0.0
    waste = 0.0
    used = 0
    for material in materials:
        price = material.unit_cost_price
        supplier_price = supplier_prices.get(material.id)
        if supplier_price is not None and not supplier_price.is_stale:
            price = supplier_price.effective_cost_price
            used += 1

        waste_fraction = (
            (material.waste_percentage + context.material_waste_percentage) / 100
            * context.profile_waste_multiplier
        )
        net = material.quantity * price
        cost += net * (1 + waste_fraction)
        waste += net * waste_fraction
    return cost, waste, used


def unit_sale_price(
    component: Component,
    variant: Variant,
    override: Optional[float] = None,
) -> float:
    """Override, else the variant's explicit price, else component price x variant multiplier."""
    if override is not None:
        return override
    if variant.sale_price is not None:
        return variant.sale_price
    return component.base_sale_price * variant.price_multiplier


def calculate_item(
    component: Component,
    variant: Variant,
    materials: Sequence[VariantMaterial],
    rules: Sequence[Rule],
    item: CalculationItemInput,
    context: FactorContext,
    settings: CalculationSettings,
    supplier_prices: Optional[Mapping[str, SupplierPrice]] = None,
) -> CalculatedItem:
    """Calculate time, cost and sale price for one item.

    Args:
        component: The item's component
        variant: Resolved variant (see ``resolve_variant``)
        materials: The variant's materials
        rules: The component's rules in definition order
        item: Quantity and site conditions
        context: Resolved factor context
        settings: Calculation settings (hourly rate)
        supplier_prices: Live supplier prices keyed by material id

    Returns:
        CalculatedItem with totals for the whole quantity

    Raises:
        ValidationError: Quantity is not a positive number.
        DataIntegrityError: Variant, material or rule belongs elsewhere.
        ComputationError: A computed value is NaN or infinite.
    """
    quantity = item.quantity
    if not math.isfinite(quantity) or quantity <= 0:
        raise ValidationError(
            "Quantity must be a positive number",
            field="quantity",
            value=quantity,
            code=ErrorCode.INVALID_QUANTITY,
            details={"component_id": component.id},
        )
    _check_ownership(component, variant, materials, rules)

    base_unit_seconds = _finite("base_time_seconds", (
        component.base_time_minutes * variant.time_multiplier + variant.extra_minutes
    ) * SECONDS_PER_MINUTE * component.complexity_factor)

    unit_material_cost, unit_waste, supplier_prices_used = _material_unit_costs(
        materials, context, supplier_prices
    )

    outcome = apply_rules(rules, item, context, base_unit_seconds, unit_material_cost)
    adjusted_unit_seconds = outcome.seconds * context.time_multiplier

    base_time_seconds = _finite("base_time_seconds", base_unit_seconds * quantity)
    adjusted_time_seconds = _finite("adjusted_time_seconds", adjusted_unit_seconds * quantity)
    material_cost = _finite("material_cost", unit_material_cost * quantity)
    material_waste = _finite("material_waste", unit_waste * quantity)
    other_cost = _finite("other_cost", (outcome.cost - unit_material_cost) * quantity)

    labor_cost = _finite(
        "labor_cost",
        adjusted_time_seconds / SECONDS_PER_HOUR
        * settings.hourly_rate
        * context.labor_rate_multiplier,
    )
    total_cost = _finite("total_cost", material_cost + labor_cost + other_cost)

    sale_price = _finite("sale_price", unit_sale_price(component, variant, item.sale_price_override))
    total_sale = _finite("total_sale", sale_price * quantity)

    calculated = CalculatedItem(
        component_id=component.id,
        variant_id=variant.id,
        description=f"{component.name} ({variant.name})",
        quantity=quantity,
        section=item.section,
        base_time_seconds=base_time_seconds,
        adjusted_time_seconds=adjusted_time_seconds,
        rules_applied=tuple(outcome.rules_applied),
        flags=tuple(outcome.flags),
        material_cost=material_cost,
        material_waste=material_waste,
        supplier_prices_used=supplier_prices_used,
        labor_cost=labor_cost,
        other_cost=other_cost,
        total_cost=total_cost,
        sale_price=sale_price,
        total_sale=total_sale,
    )

    logger.debug(
        "item_calculated",
        component_id=component.id,
        variant_id=variant.id,
        quantity=quantity,
        adjusted_time_seconds=adjusted_time_seconds,
        total_cost=total_cost,
        rules_applied=len(outcome.rules_applied),
        supplier_prices_used=supplier_prices_used,
    )
    return calculated
