"""Calculation Pydantic models for Kalkia.

Inputs (items and settings), the resolved factor context, per-item results,
the project-level aggregate and its margin assessment.

The aggregate is only produced by the pricing pipeline; nothing sets
``final_amount`` directly. ``to_snapshot()`` renders the camelCase dict the
persistence layer stores as an immutable calculation record.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from kalkia.config.settings import settings
from kalkia.models.catalog import AccessLevel, LaborType, TimeAdjustment


# =============================================================================
# ENUMS
# =============================================================================


class MarginStatus(str, Enum):
    """Health of the coverage ratio (DB%)."""

    NEGATIVE = "negative"   # DB% < 0
    CRITICAL = "critical"   # 0 <= DB% < 10
    LOW = "low"             # 10 <= DB% < 20
    HEALTHY = "healthy"     # DB% >= 20


class AnomalySeverity(str, Enum):
    """Severity of a calculation anomaly."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# =============================================================================
# INPUTS
# =============================================================================


class ItemConditions(BaseModel):
    """Site conditions stated for one calculation item."""

    model_config = ConfigDict(frozen=True)

    height: Optional[float] = Field(None, description="Mounting height in meters")
    distance: Optional[float] = Field(None, description="Cable distance in meters")
    access: Optional[AccessLevel] = Field(None, description="Access level")
    custom: Dict[str, Any] = Field(default_factory=dict, description="Free-form conditions")


class CalculationItemInput(BaseModel):
    """One row of a calculation request."""

    model_config = ConfigDict(frozen=True)

    component_id: str = Field(..., description="Component (node) ID")
    variant_id: Optional[str] = Field(None, description="Explicit variant; default variant when omitted")
    quantity: float = Field(..., description="Units of work, must be > 0")
    conditions: ItemConditions = Field(default_factory=ItemConditions)
    sale_price_override: Optional[float] = Field(None, description="Explicit unit sale price")
    section: Optional[str] = Field(None, description="Offer section the item belongs to")


class SupplierPrice(BaseModel):
    """Live supplier price for one variant material, customer discounts applied."""

    model_config = ConfigDict(frozen=True)

    material_id: str = Field(..., description="Variant material ID")
    effective_cost_price: float = Field(..., ge=0, description="Cost price per material unit")
    supplier_name: str = ""
    is_stale: bool = Field(False, description="Stale prices fall back to the catalog price")


class CalculationSettings(BaseModel):
    """Pricing settings for one calculation run.

    Ranges are checked by ``pricing_aggregator.validate_settings`` so that
    violations surface as ``kalkia.config.errors.ValidationError``. Labor
    type and time adjustment stay plain strings until the factor resolver
    looks them up.
    """

    model_config = ConfigDict(frozen=True)

    hourly_rate: float = Field(default_factory=lambda: settings.default_hourly_rate)
    margin_percentage: float = 0.0
    discount_percentage: float = 0.0
    vat_percentage: float = Field(default_factory=lambda: settings.default_vat_percentage)
    overhead_percentage: float = Field(default_factory=lambda: settings.default_overhead_percentage)
    risk_percentage: float = Field(default_factory=lambda: settings.default_risk_percentage)
    labor_type: str = LaborType.ELECTRICIAN.value
    time_adjustment: str = TimeAdjustment.NORMAL.value
    risk_score: Optional[float] = Field(None, description="Project risk score 1-5; scales the risk buffer")


# =============================================================================
# FACTOR CONTEXT
# =============================================================================


class FactorContext(BaseModel):
    """Resolved multipliers shared read-only by every item of a run."""

    model_config = ConfigDict(frozen=True)

    global_multiplier: float = 1.0
    profile_id: Optional[str] = None
    profile_code: Optional[str] = None
    profile_time_multiplier: float = 1.0
    profile_accessibility_multiplier: float = 1.0
    profile_waste_multiplier: float = 1.0
    profile_overhead_multiplier: float = 1.0
    labor_type: LaborType = LaborType.ELECTRICIAN
    time_adjustment: TimeAdjustment = TimeAdjustment.NORMAL
    labor_rate_multiplier: float = 1.0

    # Rates in percent from keyed percentage factors
    indirect_time_percentage: float = 0.0
    personal_time_percentage: float = 0.0
    material_waste_percentage: float = 0.0

    @property
    def time_multiplier(self) -> float:
        """Combined multiplier applied to rule-adjusted item time."""
        return (
            self.global_multiplier
            * self.profile_time_multiplier
            * self.profile_accessibility_multiplier
        )


# =============================================================================
# OUTPUTS
# =============================================================================


class CalculatedItem(BaseModel):
    """Engine result for one calculation item."""

    model_config = ConfigDict(frozen=True)

    component_id: str
    variant_id: str
    description: str
    quantity: float
    unit: str = "stk"
    section: Optional[str] = None

    # Time (seconds, totals for the whole quantity)
    base_time_seconds: float
    adjusted_time_seconds: float
    rules_applied: Tuple[str, ...] = ()
    flags: Tuple[str, ...] = ()

    # Cost
    material_cost: float = Field(..., description="Material cost including waste")
    material_waste: float = Field(..., description="Waste portion of material_cost")
    supplier_prices_used: int = Field(0, description="Materials priced from live supplier prices")
    labor_cost: float
    other_cost: float = Field(0.0, description="Cost rule adjustments")
    total_cost: float

    # Pricing
    sale_price: float = Field(..., description="Unit sale price")
    total_sale: float

    def to_snapshot(self) -> Dict[str, Any]:
        """Convert to dict format for snapshot storage."""
        return {
            "componentId": self.component_id,
            "variantId": self.variant_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "section": self.section,
            "baseTimeSeconds": self.base_time_seconds,
            "adjustedTimeSeconds": self.adjusted_time_seconds,
            "rulesApplied": list(self.rules_applied),
            "flags": list(self.flags),
            "materialCost": self.material_cost,
            "materialWaste": self.material_waste,
            "supplierPricesUsed": self.supplier_prices_used,
            "laborCost": self.labor_cost,
            "otherCost": self.other_cost,
            "totalCost": self.total_cost,
            "salePrice": self.sale_price,
            "totalSale": self.total_sale,
        }


class FactorsUsed(BaseModel):
    """Every rate the pricing pipeline consumed, stored for replay."""

    model_config = ConfigDict(frozen=True)

    hourly_rate: float
    labor_rate_multiplier: float
    indirect_time_percentage: float
    personal_time_percentage: float
    overhead_percentage: float = Field(..., description="Effective, after profile multiplier")
    risk_percentage: float = Field(..., description="Effective, after risk score adjustment")
    margin_percentage: float
    discount_percentage: float
    vat_percentage: float
    margin_convention: str
    risk_score: Optional[float] = None


class CalculationResult(BaseModel):
    """Project-level totals produced by the pricing pipeline."""

    model_config = ConfigDict(frozen=True)

    # Time totals (seconds)
    total_direct_time_seconds: float
    total_indirect_time_seconds: float
    total_personal_time_seconds: float
    total_labor_time_seconds: float
    total_labor_hours: float

    # Cost totals
    total_material_cost: float = Field(..., description="Material cost excluding waste")
    total_material_waste: float
    total_labor_cost: float
    total_other_costs: float
    cost_price: float

    # Pricing breakdown
    overhead_amount: float
    risk_amount: float
    sales_basis: float
    margin_amount: float
    sale_price_excl_vat: float
    discount_amount: float
    net_price: float
    vat_amount: float
    final_amount: float

    # Key metrics
    db_amount: float
    db_percentage: float
    db_per_hour: float
    coverage_ratio: float

    factors_used: FactorsUsed

    def to_snapshot(self) -> Dict[str, Any]:
        """Convert to dict format for snapshot storage."""
        return {
            "totalDirectTimeSeconds": self.total_direct_time_seconds,
            "totalIndirectTimeSeconds": self.total_indirect_time_seconds,
            "totalPersonalTimeSeconds": self.total_personal_time_seconds,
            "totalLaborTimeSeconds": self.total_labor_time_seconds,
            "totalLaborHours": self.total_labor_hours,
            "totalMaterialCost": self.total_material_cost,
            "totalMaterialWaste": self.total_material_waste,
            "totalLaborCost": self.total_labor_cost,
            "totalOtherCosts": self.total_other_costs,
            "costPrice": self.cost_price,
            "overheadAmount": self.overhead_amount,
            "riskAmount": self.risk_amount,
            "salesBasis": self.sales_basis,
            "marginAmount": self.margin_amount,
            "salePriceExclVat": self.sale_price_excl_vat,
            "discountAmount": self.discount_amount,
            "netPrice": self.net_price,
            "vatAmount": self.vat_amount,
            "finalAmount": self.final_amount,
            "dbAmount": self.db_amount,
            "dbPercentage": self.db_percentage,
            "dbPerHour": self.db_per_hour,
            "coverageRatio": self.coverage_ratio,
            "factorsUsed": {
                "hourlyRate": self.factors_used.hourly_rate,
                "laborRateMultiplier": self.factors_used.labor_rate_multiplier,
                "indirectTimePercentage": self.factors_used.indirect_time_percentage,
                "personalTimePercentage": self.factors_used.personal_time_percentage,
                "overheadPercentage": self.factors_used.overhead_percentage,
                "riskPercentage": self.factors_used.risk_percentage,
                "marginPercentage": self.factors_used.margin_percentage,
                "discountPercentage": self.factors_used.discount_percentage,
                "vatPercentage": self.factors_used.vat_percentage,
                "marginConvention": self.factors_used.margin_convention,
                "riskScore": self.factors_used.risk_score,
            },
        }


class MarginAssessment(BaseModel):
    """Health classification of a calculation result."""

    model_config = ConfigDict(frozen=True)

    status: MarginStatus
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class Anomaly(BaseModel):
    """Something unusual about a calculation worth a second look."""

    model_config = ConfigDict(frozen=True)

    anomaly_type: str
    severity: AnomalySeverity
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CalculationRun(BaseModel):
    """Everything one engine run produces."""

    model_config = ConfigDict(frozen=True)

    items: List[CalculatedItem]
    result: CalculationResult
    assessment: MarginAssessment
    anomalies: List[Anomaly] = Field(default_factory=list)

    def to_snapshot(self) -> Dict[str, Any]:
        """Convert to the immutable snapshot stored by the persistence layer."""
        return {
            "items": [item.to_snapshot() for item in self.items],
            "result": self.result.to_snapshot(),
            "assessment": {
                "status": self.assessment.status.value,
                "warnings": list(self.assessment.warnings),
                "recommendations": list(self.assessment.recommendations),
            },
            "anomalies": [
                {
                    "anomalyType": a.anomaly_type,
                    "severity": a.severity.value,
                    "message": a.message,
                    "details": a.details,
                }
                for a in self.anomalies
            ],
        }
