"""
Unit Tests for the Item Time & Cost Calculator.

Tests resolve_variant(), evaluate_condition(), apply_rules() and
calculate_item():
- Pinned scenarios for time, labor and material cost
- Rule order (priority, definition order, multiply before add)
- Waste from material, profile and global factors
- Sale price precedence
- Errors for bad quantity, ownership mismatch and non-finite values
- Determinism and monotonicity in quantity
"""

import math

import pytest

from kalkia.config.errors import (
    ComputationError,
    DataIntegrityError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from kalkia.models.calculation import SupplierPrice
from kalkia.models.catalog import (
    AccessCondition,
    BuildingProfile,
    BuildingProfileCondition,
    CustomCondition,
    GlobalFactor,
    HeightCondition,
    QuantityCondition,
)
from kalkia.services.factor_resolver import resolve_context
from kalkia.services.item_calculator import (
    apply_rules,
    calculate_item,
    evaluate_condition,
    resolve_variant,
)
from tests.fixtures.catalog_data import (
    make_component,
    make_item,
    make_material,
    make_rule,
    make_settings,
    make_variant,
)

ADD_300_SECONDS = [{"kind": "add", "field": "time", "amount": 300}]
MULTIPLY_1_2 = [{"kind": "multiply", "field": "time", "factor": 1.2}]
ALWAYS = {"kind": "quantity", "min_quantity": 0}


def _calculate(component=None, variant=None, materials=(), rules=(), item=None,
               context=None, settings=None, supplier_prices=None):
    return calculate_item(
        component=component or make_component(),
        variant=variant or make_variant(),
        materials=list(materials),
        rules=list(rules),
        item=item or make_item(),
        context=context or resolve_context(),
        settings=settings or make_settings(),
        supplier_prices=supplier_prices,
    )


# =============================================================================
# Test: resolve_variant
# =============================================================================


class TestResolveVariant:
    """Tests for picking the variant of an item."""

    def test_explicit_variant(self):
        component = make_component()
        variants = [make_variant(id="v-1"), make_variant(id="v-2", is_default=False)]

        assert resolve_variant(component, variants, "v-2").id == "v-2"

    def test_default_variant(self):
        component = make_component()
        variants = [
            make_variant(id="v-1", is_default=False, sort_order=1),
            make_variant(id="v-2", is_default=True, sort_order=2),
        ]

        assert resolve_variant(component, variants).id == "v-2"

    def test_first_by_sort_order_without_default(self):
        component = make_component()
        variants = [
            make_variant(id="v-late", is_default=False, sort_order=5),
            make_variant(id="v-early", is_default=False, sort_order=1),
        ]

        assert resolve_variant(component, variants).id == "v-early"

    def test_variant_of_other_component_not_found(self):
        component = make_component()
        variants = [make_variant(), make_variant(id="v-other", component_id="c-2")]

        with pytest.raises(NotFoundError) as exc_info:
            resolve_variant(component, variants, "v-other")

        assert exc_info.value.code == ErrorCode.VARIANT_NOT_FOUND
        assert exc_info.value.details["component_id"] == "c-1"

    def test_no_variants(self):
        with pytest.raises(DataIntegrityError) as exc_info:
            resolve_variant(make_component(), [])

        assert exc_info.value.code == ErrorCode.NO_VARIANTS


# =============================================================================
# Test: evaluate_condition
# =============================================================================


class TestEvaluateCondition:
    """Tests for matching rule conditions against an item."""

    def test_quantity_range_inclusive(self, neutral_context):
        condition = QuantityCondition(min_quantity=10, max_quantity=20)

        assert evaluate_condition(condition, make_item(quantity=10), neutral_context)
        assert evaluate_condition(condition, make_item(quantity=20), neutral_context)
        assert not evaluate_condition(condition, make_item(quantity=9), neutral_context)
        assert not evaluate_condition(condition, make_item(quantity=21), neutral_context)

    def test_height_requires_stated_height(self, neutral_context):
        condition = HeightCondition(min_height=3)

        assert not evaluate_condition(condition, make_item(), neutral_context)
        assert evaluate_condition(condition, make_item(conditions={"height": 3.5}), neutral_context)
        assert not evaluate_condition(condition, make_item(conditions={"height": 2.4}), neutral_context)

    def test_access(self, neutral_context):
        condition = AccessCondition(access="difficult")

        assert evaluate_condition(condition, make_item(conditions={"access": "difficult"}), neutral_context)
        assert not evaluate_condition(condition, make_item(conditions={"access": "easy"}), neutral_context)
        assert not evaluate_condition(condition, make_item(), neutral_context)

    def test_building_profile(self):
        profile = BuildingProfile(id="bp-1", code="apartment", name="Apartment")
        condition = BuildingProfileCondition(profile_code="apartment")

        assert evaluate_condition(condition, make_item(), resolve_context(profile))
        assert not evaluate_condition(condition, make_item(), resolve_context())

    def test_custom_values_all_match(self, neutral_context):
        condition = CustomCondition(values={"location": "outdoor"})

        outdoor = make_item(conditions={"custom": {"location": "outdoor", "ip": 44}})
        indoor = make_item(conditions={"custom": {"location": "indoor"}})

        assert evaluate_condition(condition, outdoor, neutral_context)
        assert not evaluate_condition(condition, indoor, neutral_context)
        assert not evaluate_condition(condition, make_item(), neutral_context)


# =============================================================================
# Test: rule order
# =============================================================================


class TestRuleOrder:
    """Pinned expectations for rule composition on a 600 s base."""

    def test_add_then_multiply_in_definition_order(self, neutral_context):
        """(600 + 300) x 1.2 = 1080"""
        rules = [make_rule("A", ALWAYS, ADD_300_SECONDS), make_rule("B", ALWAYS, MULTIPLY_1_2)]

        outcome = apply_rules(rules, make_item(), neutral_context, 600.0, 0.0)

        assert outcome.seconds == pytest.approx(1080.0)
        assert outcome.rules_applied == ["A", "B"]

    def test_multiply_then_add_in_definition_order(self, neutral_context):
        """600 x 1.2 + 300 = 1020"""
        rules = [make_rule("B", ALWAYS, MULTIPLY_1_2), make_rule("A", ALWAYS, ADD_300_SECONDS)]

        outcome = apply_rules(rules, make_item(), neutral_context, 600.0, 0.0)

        assert outcome.seconds == pytest.approx(1020.0)

    def test_priority_overrides_definition_order(self, neutral_context):
        rules = [
            make_rule("A", ALWAYS, ADD_300_SECONDS, priority=2),
            make_rule("B", ALWAYS, MULTIPLY_1_2, priority=1),
        ]

        outcome = apply_rules(rules, make_item(), neutral_context, 600.0, 0.0)

        assert outcome.seconds == pytest.approx(1020.0)
        assert outcome.rules_applied == ["B", "A"]

    def test_multiply_before_add_within_one_rule(self, neutral_context):
        rules = [make_rule("AB", ALWAYS, ADD_300_SECONDS + MULTIPLY_1_2)]

        outcome = apply_rules(rules, make_item(), neutral_context, 600.0, 0.0)

        assert outcome.seconds == pytest.approx(1020.0)

    def test_pinned_through_calculate_item(self):
        """10 min base; rule-adjusted time flows into the item totals."""
        rules = [make_rule("A", ALWAYS, ADD_300_SECONDS), make_rule("B", ALWAYS, MULTIPLY_1_2)]

        item = _calculate(component=make_component(base_time_minutes=10), rules=rules)

        assert item.base_time_seconds == pytest.approx(600.0)
        assert item.adjusted_time_seconds == pytest.approx(1080.0)
        assert item.rules_applied == ("A", "B")

    def test_inactive_and_unmatched_rules_skipped(self, neutral_context):
        rules = [
            make_rule("off", ALWAYS, MULTIPLY_1_2, is_active=False),
            make_rule("high", {"kind": "height", "min_height": 3}, ADD_300_SECONDS),
        ]

        outcome = apply_rules(rules, make_item(), neutral_context, 600.0, 0.0)

        assert outcome.seconds == 600.0
        assert outcome.rules_applied == []

    def test_flags_collected_once(self, neutral_context):
        rules = [
            make_rule("lift", ALWAYS, [{"kind": "flag", "name": "needs_lift"}]),
            make_rule("lift-2", ALWAYS, [{"kind": "flag", "name": "needs_lift"}]),
        ]

        outcome = apply_rules(rules, make_item(), neutral_context, 600.0, 0.0)

        assert outcome.flags == ["needs_lift"]
        assert outcome.seconds == 600.0


# =============================================================================
# Test: calculate_item
# =============================================================================


class TestCalculateItem:
    """Tests for per-item time, cost and price."""

    def test_scenario_time_and_labor(self):
        """60 min x 1.0, qty 2, no rules, neutral context, 450/h."""
        item = _calculate(item=make_item(quantity=2))

        assert item.base_time_seconds == pytest.approx(7200.0)
        assert item.adjusted_time_seconds == pytest.approx(7200.0)
        assert item.labor_cost == pytest.approx(900.0)
        assert item.total_cost == pytest.approx(900.0)

    def test_scenario_material_with_waste(self):
        """3 x 50 with 10% waste."""
        item = _calculate(
            component=make_component(base_time_minutes=0),
            materials=[make_material(quantity=3, unit_cost_price=50, waste_percentage=10)],
        )

        assert item.material_cost == pytest.approx(165.0)
        assert item.material_waste == pytest.approx(15.0)
        assert item.labor_cost == 0.0
        assert item.total_cost == pytest.approx(165.0)

    def test_variant_time_and_complexity(self):
        """(20 x 1.5 + 5) min x 60 x 1.2 = 2520 s"""
        item = _calculate(
            component=make_component(base_time_minutes=20, complexity_factor=1.2),
            variant=make_variant(time_multiplier=1.5, extra_minutes=5),
        )

        assert item.base_time_seconds == pytest.approx(2520.0)

    def test_context_multiplier_applies_after_rules(self):
        """(600 + 300) x 1.5 profile time multiplier"""
        profile = BuildingProfile(id="bp", code="old", name="Old building", time_multiplier=1.5)

        item = _calculate(
            component=make_component(base_time_minutes=10),
            rules=[make_rule("A", ALWAYS, ADD_300_SECONDS)],
            context=resolve_context(profile),
        )

        assert item.base_time_seconds == pytest.approx(600.0)
        assert item.adjusted_time_seconds == pytest.approx(1350.0)

    def test_labor_rate_multiplier(self):
        item = _calculate(context=resolve_context(labor_type="master", time_adjustment="overtime"))

        assert item.labor_cost == pytest.approx(450 * 650 / 495 * 1.5)

    def test_waste_from_profile_and_global_factor(self):
        """w = (10% + 5%) x 2 = 30%; the profile multiplier scales the global rate too."""
        profile = BuildingProfile(id="bp", code="x", name="x", material_waste_multiplier=2.0)
        factors = [GlobalFactor(id="f", factor_key="material_waste", value=5, value_type="percentage")]

        item = _calculate(
            component=make_component(base_time_minutes=0),
            materials=[make_material(unit_cost_price=100, waste_percentage=10)],
            item=make_item(quantity=2),
            context=resolve_context(profile, factors),
        )

        assert item.material_cost == pytest.approx(260.0)
        assert item.material_waste == pytest.approx(60.0)

    def test_supplier_price_replaces_catalog_price(self):
        """Waste applies to the live price as well."""
        prices = {"m-1": SupplierPrice(material_id="m-1", effective_cost_price=80)}

        item = _calculate(
            component=make_component(base_time_minutes=0),
            materials=[make_material(unit_cost_price=100, waste_percentage=10)],
            supplier_prices=prices,
        )

        assert item.material_cost == pytest.approx(88.0)
        assert item.material_waste == pytest.approx(8.0)
        assert item.supplier_prices_used == 1

    def test_stale_supplier_price_ignored(self):
        prices = {"m-1": SupplierPrice(material_id="m-1", effective_cost_price=80, is_stale=True)}

        item = _calculate(
            component=make_component(base_time_minutes=0),
            materials=[make_material(unit_cost_price=100)],
            supplier_prices=prices,
        )

        assert item.material_cost == pytest.approx(100.0)
        assert item.supplier_prices_used == 0

    def test_cost_rules_reported_as_other_cost(self):
        rules = [
            make_rule("double", ALWAYS, [{"kind": "multiply", "field": "cost", "factor": 2}]),
            make_rule("fee", ALWAYS, [{"kind": "add", "field": "cost", "amount": 25}]),
        ]

        item = _calculate(
            component=make_component(base_time_minutes=0),
            materials=[make_material(unit_cost_price=100)],
            rules=rules,
            item=make_item(quantity=3),
        )

        assert item.material_cost == pytest.approx(300.0)
        assert item.other_cost == pytest.approx(375.0)
        assert item.total_cost == pytest.approx(675.0)

    def test_sale_price_precedence(self):
        component = make_component(base_sale_price=450)

        from_component = _calculate(component=component, variant=make_variant(price_multiplier=1.2))
        from_variant = _calculate(component=component, variant=make_variant(sale_price=1650))
        overridden = _calculate(
            component=component,
            variant=make_variant(sale_price=1650),
            item=make_item(quantity=2, sale_price_override=99),
        )

        assert from_component.sale_price == pytest.approx(540.0)
        assert from_variant.sale_price == 1650
        assert overridden.sale_price == 99
        assert overridden.total_sale == 198

    def test_description_and_section(self):
        item = _calculate(
            component=make_component(name="Double socket"),
            variant=make_variant(name="Flush"),
            item=make_item(section="Kitchen"),
        )

        assert item.description == "Double socket (Flush)"
        assert item.section == "Kitchen"
        assert item.unit == "stk"

    @pytest.mark.parametrize("quantity", [0, -1, math.nan])
    def test_invalid_quantity(self, quantity):
        with pytest.raises(ValidationError) as exc_info:
            _calculate(item=make_item(quantity=quantity))

        assert exc_info.value.code == ErrorCode.INVALID_QUANTITY
        assert exc_info.value.field == "quantity"

    def test_variant_of_other_component(self):
        with pytest.raises(DataIntegrityError) as exc_info:
            _calculate(variant=make_variant(component_id="c-2"))

        assert exc_info.value.entity == "variant"

    def test_material_of_other_variant(self):
        with pytest.raises(DataIntegrityError) as exc_info:
            _calculate(materials=[make_material(variant_id="v-2")])

        assert exc_info.value.entity == "material"

    def test_rule_scoped_to_other_variant(self):
        rule = make_rule("flush-only", ALWAYS, [], variant_id="v-2")

        with pytest.raises(DataIntegrityError) as exc_info:
            _calculate(rules=[rule])

        assert exc_info.value.entity == "rule"
        assert exc_info.value.code == ErrorCode.INVALID_RULE

    def test_rule_scoped_to_own_variant_applies(self):
        rule = make_rule("own", ALWAYS, [{"kind": "multiply", "field": "time", "factor": 2}],
                         variant_id="v-1")

        item = _calculate(rules=[rule])

        assert item.adjusted_time_seconds == pytest.approx(7200)
        assert item.rules_applied == ("own",)

    def test_non_finite_time(self):
        with pytest.raises(ComputationError) as exc_info:
            _calculate(component=make_component(base_time_minutes=math.inf))

        assert exc_info.value.code == ErrorCode.NON_FINITE_VALUE
        assert exc_info.value.field == "base_time_seconds"

    def test_non_finite_sale_price(self):
        with pytest.raises(ComputationError) as exc_info:
            _calculate(item=make_item(sale_price_override=math.nan))

        assert exc_info.value.field == "sale_price"

    def test_deterministic(self):
        """Identical inputs give identical outputs."""
        kwargs = dict(
            component=make_component(base_time_minutes=17, complexity_factor=1.13),
            materials=[make_material(quantity=2.5, unit_cost_price=33.3, waste_percentage=7)],
            rules=[make_rule("A", ALWAYS, ADD_300_SECONDS)],
            item=make_item(quantity=3.7),
        )

        first = _calculate(**kwargs)
        second = _calculate(**kwargs)

        assert first == second
        assert first.to_snapshot() == second.to_snapshot()

    def test_monotonic_in_quantity(self):
        component = make_component(base_sale_price=300)
        materials = [make_material(unit_cost_price=40, waste_percentage=5)]

        small = _calculate(component=component, materials=materials, item=make_item(quantity=1))
        large = _calculate(component=component, materials=materials, item=make_item(quantity=3))

        assert large.total_cost > small.total_cost
        assert large.total_sale > small.total_sale

    def test_snapshot_uses_camel_case(self):
        snapshot = _calculate().to_snapshot()

        assert snapshot["componentId"] == "c-1"
        assert snapshot["adjustedTimeSeconds"] == pytest.approx(3600.0)
        assert snapshot["rulesApplied"] == []
