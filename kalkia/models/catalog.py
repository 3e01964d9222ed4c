"""Catalog Pydantic models for Kalkia.

This module defines the read-only reference data the engine calculates
against: components (nodes) of electrical work, their variants and
variant materials, conditional rules, building profiles and global factors.

All records are frozen once constructed. Rule conditions and effects are a
closed set of tagged models so malformed catalog data is rejected when it is
loaded, not halfway through a calculation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from kalkia.config.errors import ErrorCode, NotFoundError


# =============================================================================
# ENUMS
# =============================================================================


class LaborType(str, Enum):
    """Who performs the work; selects the labor rate multiplier."""

    APPRENTICE = "apprentice"
    HELPER = "helper"
    ELECTRICIAN = "electrician"
    MASTER = "master"


class TimeAdjustment(str, Enum):
    """When the work is performed; selects the time-of-day multiplier."""

    NORMAL = "normal"
    OVERTIME = "overtime"
    WEEKEND = "weekend"


class FactorValueType(str, Enum):
    """How a global factor's value is interpreted."""

    MULTIPLIER = "multiplier"   # Composes multiplicatively (1.1 = +10%)
    PERCENTAGE = "percentage"   # Keyed rate in percent (15 = 15%)


class AccessLevel(str, Enum):
    """Site accessibility for an item."""

    EASY = "easy"
    NORMAL = "normal"
    DIFFICULT = "difficult"


class EffectField(str, Enum):
    """Running value a rule effect acts on."""

    TIME = "time"   # Per-unit seconds
    COST = "cost"   # Per-unit material cost


class _Record(BaseModel):
    """Immutable catalog record."""

    model_config = ConfigDict(frozen=True, extra="ignore")


# =============================================================================
# COMPONENT / VARIANT / MATERIAL
# =============================================================================


class Component(_Record):
    """Catalog entry for one unit of electrical work."""

    id: str = Field(..., description="Component (node) ID")
    code: str = Field(..., description="Catalog code (e.g. 'EL-STIK-01')")
    name: str = Field(..., description="Display name")
    base_time_minutes: float = Field(default=0.0, ge=0, description="Base work time per unit")
    base_cost_price: float = Field(default=0.0, ge=0, description="Reference cost price per unit")
    base_sale_price: float = Field(default=0.0, ge=0, description="Default sale price per unit")
    complexity_factor: float = Field(default=1.0, ge=0, description="Multiplier on base time")
    sort_order: int = Field(default=0)


class Variant(_Record):
    """A named configuration of a component altering its time and price."""

    id: str = Field(..., description="Variant ID")
    component_id: str = Field(..., description="Owning component ID")
    code: str = Field(default="", description="Variant code")
    name: str = Field(..., description="Display name")
    time_multiplier: float = Field(default=1.0, ge=0, description="Multiplier on component base time")
    extra_minutes: float = Field(default=0.0, description="Minutes added after the multiplier")
    price_multiplier: float = Field(default=1.0, ge=0, description="Multiplier on component sale price")
    sale_price: Optional[float] = Field(
        default=None, ge=0, description="Explicit unit sale price (wins over price_multiplier)"
    )
    is_default: bool = Field(default=False)
    sort_order: int = Field(default=0)


class VariantMaterial(_Record):
    """A material line consumed by one unit of a variant."""

    id: str = Field(..., description="Material line ID")
    variant_id: str = Field(..., description="Owning variant ID")
    name: str = Field(..., description="Material name")
    quantity: float = Field(..., ge=0, description="Quantity per variant unit")
    unit: str = Field(default="stk")
    unit_cost_price: float = Field(..., ge=0, description="Cost price per material unit")
    unit_sale_price: float = Field(default=0.0, ge=0, description="Sale price per material unit")
    waste_percentage: float = Field(default=0.0, ge=0, description="Waste in percent (10 = 10%)")


# =============================================================================
# RULE CONDITIONS
# =============================================================================


class QuantityCondition(_Record):
    """Matches when the item quantity lies within [min, max]."""

    kind: Literal["quantity"] = "quantity"
    min_quantity: Optional[float] = None
    max_quantity: Optional[float] = None


class HeightCondition(_Record):
    """Matches when the stated mounting height (m) lies within [min, max]."""

    kind: Literal["height"] = "height"
    min_height: Optional[float] = None
    max_height: Optional[float] = None


class DistanceCondition(_Record):
    """Matches when the stated cable distance (m) lies within [min, max]."""

    kind: Literal["distance"] = "distance"
    min_distance: Optional[float] = None
    max_distance: Optional[float] = None


class AccessCondition(_Record):
    """Matches a specific access level."""

    kind: Literal["access"] = "access"
    access: AccessLevel


class BuildingProfileCondition(_Record):
    """Matches when the calculation runs against the given building profile."""

    kind: Literal["building_profile"] = "building_profile"
    profile_code: str


class CustomCondition(_Record):
    """Matches when every key/value pair equals the item's custom conditions."""

    kind: Literal["custom"] = "custom"
    values: Dict[str, Any] = Field(default_factory=dict)


RuleCondition = Annotated[
    Union[
        QuantityCondition,
        HeightCondition,
        DistanceCondition,
        AccessCondition,
        BuildingProfileCondition,
        CustomCondition,
    ],
    Field(discriminator="kind"),
]


# =============================================================================
# RULE EFFECTS
# =============================================================================


class MultiplyEffect(_Record):
    """Multiply the running time or cost."""

    kind: Literal["multiply"] = "multiply"
    field: EffectField
    factor: float = Field(..., ge=0)


class AddEffect(_Record):
    """Add a fixed amount (seconds or currency per unit) to the running value."""

    kind: Literal["add"] = "add"
    field: EffectField
    amount: float


class FlagEffect(_Record):
    """Attach a named flag to the calculated item."""

    kind: Literal["flag"] = "flag"
    name: str


RuleEffect = Annotated[
    Union[MultiplyEffect, AddEffect, FlagEffect],
    Field(discriminator="kind"),
]


class Rule(_Record):
    """Conditional adjustment attached to a component.

    Matching rules apply in ascending ``priority``; rules with equal priority
    keep their definition order. Within one rule, multiply effects apply
    before add effects.
    """

    id: str
    component_id: str
    variant_id: Optional[str] = Field(default=None, description="Restricts the rule to one variant")
    name: str
    condition: RuleCondition
    effects: Tuple[RuleEffect, ...] = Field(default_factory=tuple)
    priority: int = 0
    is_active: bool = True


# =============================================================================
# CONTEXT RECORDS
# =============================================================================


class BuildingProfile(_Record):
    """Named context supplying override multipliers for a class of projects."""

    id: str
    code: str
    name: str
    time_multiplier: float = Field(default=1.0, ge=0)
    accessibility_multiplier: float = Field(default=1.0, ge=0)
    material_waste_multiplier: float = Field(default=1.0, ge=0)
    overhead_multiplier: float = Field(default=1.0, ge=0)


class GlobalFactor(_Record):
    """System-wide adjustment applied to every calculation while active."""

    id: str
    factor_key: str = Field(..., description="e.g. 'seasonal_surcharge', 'indirect_time'")
    name: str = ""
    value: float
    value_type: FactorValueType = FactorValueType.MULTIPLIER
    is_active: bool = True


# =============================================================================
# CATALOG SLICE
# =============================================================================


@dataclass(frozen=True)
class Catalog:
    """Batch-loaded slice of the catalog a calculation runs against.

    Built by ``kalkia.validators.catalog_validator.load_catalog``; lookups
    raise ``NotFoundError`` for ids outside the slice.
    """

    components: Dict[str, Component] = field(default_factory=dict)
    variants: Dict[str, Variant] = field(default_factory=dict)
    materials: Dict[str, VariantMaterial] = field(default_factory=dict)
    rules: Dict[str, Rule] = field(default_factory=dict)

    def get_component(self, component_id: str) -> Component:
        component = self.components.get(component_id)
        if component is None:
            raise NotFoundError("component", component_id, code=ErrorCode.COMPONENT_NOT_FOUND)
        return component

    def get_variant(self, variant_id: str) -> Variant:
        variant = self.variants.get(variant_id)
        if variant is None:
            raise NotFoundError("variant", variant_id, code=ErrorCode.VARIANT_NOT_FOUND)
        return variant

    def get_material(self, material_id: str) -> VariantMaterial:
        material = self.materials.get(material_id)
        if material is None:
            raise NotFoundError("material", material_id, code=ErrorCode.MATERIAL_NOT_FOUND)
        return material

    def variants_for(self, component_id: str) -> List[Variant]:
        """Variants of a component in sort order."""
        return sorted(
            (v for v in self.variants.values() if v.component_id == component_id),
            key=lambda v: v.sort_order,
        )

    def materials_for(self, variant_id: str) -> List[VariantMaterial]:
        return [m for m in self.materials.values() if m.variant_id == variant_id]

    def rules_for(self, component_id: str, variant_id: Optional[str] = None) -> List[Rule]:
        """Rules of a component in definition order.

        Variant-scoped rules are included only for their own variant.
        """
        return [
            r for r in self.rules.values()
            if r.component_id == component_id
            and (r.variant_id is None or r.variant_id == variant_id)
        ]
