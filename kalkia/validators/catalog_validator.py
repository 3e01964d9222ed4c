"""Catalog ingestion and validation.

Deserializes raw catalog rows into typed, frozen records and checks the
cross-record invariants a single model cannot see (ownership, at most one
default variant per component). Anything malformed is reported as a
``DataIntegrityError`` here, before a calculation starts.

Rules may arrive either in the typed shape of ``kalkia.models.catalog.Rule``
or in the loose storage shape (``rule_type`` + ``condition`` JSON + four
numeric effect columns); the latter is converted by ``parse_rule_record``.
"""

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
import structlog

from kalkia.config.errors import DataIntegrityError, ErrorCode
from kalkia.models.catalog import (
    AccessCondition,
    AddEffect,
    Catalog,
    Component,
    CustomCondition,
    DistanceCondition,
    EffectField,
    HeightCondition,
    MultiplyEffect,
    QuantityCondition,
    Rule,
    Variant,
    VariantMaterial,
)

logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)
RawRecord = Union[Mapping[str, Any], BaseModel]

# Loose rule_type -> builder for the typed condition
_CONDITION_BUILDERS = {
    "height": lambda c: HeightCondition(
        min_height=c.get("min_height"), max_height=c.get("max_height")
    ),
    "quantity": lambda c: QuantityCondition(
        min_quantity=c.get("min_quantity"), max_quantity=c.get("max_quantity")
    ),
    "distance": lambda c: DistanceCondition(
        min_distance=c.get("min_distance"), max_distance=c.get("max_distance")
    ),
    "access": lambda c: AccessCondition(access=c.get("type", c.get("access"))),
    "custom": lambda c: CustomCondition(values=dict(c)),
}


def _to_record(model: Type[RecordT], raw: RawRecord, entity: str) -> RecordT:
    """Validate one raw row into ``model``, wrapping pydantic failures."""
    if isinstance(raw, model):
        return raw
    data = raw.model_dump() if isinstance(raw, BaseModel) else raw
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        entity_id = data.get("id") if isinstance(data, Mapping) else None
        raise DataIntegrityError(
            f"Invalid {entity} record",
            entity=entity,
            entity_id=entity_id,
            details={"errors": [f"{err['loc']}: {err['msg']}" for err in e.errors()]},
        ) from e


def parse_rule_record(data: Mapping[str, Any]) -> Rule:
    """Convert a rule row in the loose storage shape into a typed ``Rule``.

    Args:
        data: Row with ``rule_type``, ``condition`` (dict), and optional
            ``variant_id``, ``time_multiplier``, ``extra_time_seconds``,
            ``cost_multiplier``, ``extra_cost``, ``priority``, ``is_active``.
            ``node_id`` and ``rule_name`` are accepted as aliases for
            ``component_id`` and ``name``.

    Returns:
        Typed Rule whose multiply effects precede its add effects.

    Raises:
        DataIntegrityError: Unknown rule type, non-dict condition, or
            invalid field values.
    """
    rule_id = data.get("id")
    rule_type = data.get("rule_type")
    builder = _CONDITION_BUILDERS.get(rule_type)
    if builder is None:
        raise DataIntegrityError(
            f"Unknown rule type {rule_type!r}",
            entity="rule",
            entity_id=rule_id,
            code=ErrorCode.INVALID_RULE,
            details={"rule_type": rule_type},
        )

    condition = data.get("condition") or {}
    if not isinstance(condition, Mapping):
        raise DataIntegrityError(
            "Rule condition must be an object",
            entity="rule",
            entity_id=rule_id,
            code=ErrorCode.INVALID_RULE,
            details={"condition": repr(condition)},
        )

    time_multiplier = data.get("time_multiplier", 1.0)
    extra_time_seconds = data.get("extra_time_seconds", 0.0)
    cost_multiplier = data.get("cost_multiplier", 1.0)
    extra_cost = data.get("extra_cost", 0.0)

    try:
        effects: List[Any] = []
        if time_multiplier is not None and time_multiplier != 1:
            effects.append(MultiplyEffect(field=EffectField.TIME, factor=time_multiplier))
        if cost_multiplier is not None and cost_multiplier != 1:
            effects.append(MultiplyEffect(field=EffectField.COST, factor=cost_multiplier))
        if extra_time_seconds:
            effects.append(AddEffect(field=EffectField.TIME, amount=extra_time_seconds))
        if extra_cost:
            effects.append(AddEffect(field=EffectField.COST, amount=extra_cost))

        return Rule(
            id=rule_id,
            component_id=data.get("component_id") or data.get("node_id"),
            variant_id=data.get("variant_id"),
            name=data.get("name", data.get("rule_name", "")),
            condition=builder(condition),
            effects=tuple(effects),
            priority=data.get("priority", 0),
            is_active=data.get("is_active", True),
        )
    except PydanticValidationError as e:
        raise DataIntegrityError(
            "Invalid rule record",
            entity="rule",
            entity_id=rule_id,
            code=ErrorCode.INVALID_RULE,
            details={"errors": [f"{err['loc']}: {err['msg']}" for err in e.errors()]},
        ) from e


def _to_rule(raw: RawRecord, variants: Mapping[str, Variant]) -> Rule:
    if isinstance(raw, Mapping):
        # Variant-scoped rows may omit the component; it follows from the variant
        variant = variants.get(raw.get("variant_id"))
        if variant is not None and not (raw.get("component_id") or raw.get("node_id")):
            raw = {**raw, "component_id": variant.component_id}
    if isinstance(raw, Mapping) and "rule_type" in raw:
        return parse_rule_record(raw)
    return _to_record(Rule, raw, "rule")


def _index(records: Iterable[RecordT], entity: str) -> Dict[str, RecordT]:
    indexed: Dict[str, RecordT] = {}
    for record in records:
        if record.id in indexed:
            raise DataIntegrityError(
                f"Duplicate {entity} id {record.id!r}",
                entity=entity,
                entity_id=record.id,
            )
        indexed[record.id] = record
    return indexed


def load_catalog(
    components: Iterable[RawRecord],
    variants: Iterable[RawRecord],
    materials: Optional[Iterable[RawRecord]] = None,
    rules: Optional[Iterable[RawRecord]] = None,
) -> Catalog:
    """Build a validated ``Catalog`` slice from raw rows.

    Args:
        components: Component rows (dicts or models)
        variants: Variant rows
        materials: Variant material rows
        rules: Rule rows, typed or in the loose storage shape

    Returns:
        Frozen Catalog ready for calculation

    Raises:
        DataIntegrityError: Malformed record, duplicate id, dangling
            reference, or more than one default variant per component.
    """
    component_map = _index((_to_record(Component, c, "component") for c in components), "component")
    variant_map = _index((_to_record(Variant, v, "variant") for v in variants), "variant")
    material_map = _index(
        (_to_record(VariantMaterial, m, "material") for m in materials or ()), "material"
    )
    rule_map = _index((_to_rule(r, variant_map) for r in rules or ()), "rule")

    for variant in variant_map.values():
        if variant.component_id not in component_map:
            raise DataIntegrityError(
                f"Variant {variant.id!r} references unknown component {variant.component_id!r}",
                entity="variant",
                entity_id=variant.id,
            )

    defaults = Counter(v.component_id for v in variant_map.values() if v.is_default)
    for component_id, count in defaults.items():
        if count > 1:
            raise DataIntegrityError(
                f"Component {component_id!r} has {count} default variants",
                entity="component",
                entity_id=component_id,
                code=ErrorCode.MULTIPLE_DEFAULT_VARIANTS,
            )

    for material in material_map.values():
        if material.variant_id not in variant_map:
            raise DataIntegrityError(
                f"Material {material.id!r} references unknown variant {material.variant_id!r}",
                entity="material",
                entity_id=material.id,
            )

    for rule in rule_map.values():
        if rule.component_id not in component_map:
            raise DataIntegrityError(
                f"Rule {rule.id!r} references unknown component {rule.component_id!r}",
                entity="rule",
                entity_id=rule.id,
                code=ErrorCode.INVALID_RULE,
            )
        if rule.variant_id is not None and (
            rule.variant_id not in variant_map
            or variant_map[rule.variant_id].component_id != rule.component_id
        ):
            raise DataIntegrityError(
                f"Rule {rule.id!r} references variant {rule.variant_id!r} outside component {rule.component_id!r}",
                entity="rule",
                entity_id=rule.id,
                code=ErrorCode.INVALID_RULE,
            )

    logger.info(
        "catalog_loaded",
        components=len(component_map),
        variants=len(variant_map),
        materials=len(material_map),
        rules=len(rule_map),
    )

    return Catalog(
        components=component_map,
        variants=variant_map,
        materials=material_map,
        rules=rule_map,
    )
