"""Profit simulation for Kalkia.

Re-prices a finished calculation under alternative margin and discount
choices. Cost price and sales basis are held fixed; stages 4-8 of the
pricing pipeline run once per scenario.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog

from kalkia.models.calculation import CalculationResult
from kalkia.services.pricing_aggregator import price_from_sales_basis

logger = structlog.get_logger(__name__)

# (name, margin %, discount %); None means "use the calculation's own value"
DEFAULT_SCENARIOS: Tuple[Tuple[str, Optional[float], Optional[float]], ...] = (
    ("Minimal margin", 10.0, 0.0),
    ("Low margin", 15.0, 0.0),
    ("Standard margin", None, None),
    ("High margin", 30.0, 0.0),
    ("Premium margin", 40.0, 0.0),
    ("With 5% discount", None, 5.0),
    ("With 10% discount", None, 10.0),
)


@dataclass(frozen=True)
class ProfitScenario:
    """Outcome of one margin/discount choice."""

    name: str
    margin_percentage: float
    discount_percentage: float
    sale_price_excl_vat: float
    discount_amount: float
    net_price: float
    vat_amount: float
    final_amount: float
    db_amount: float
    db_percentage: float
    db_per_hour: float


def simulate_profit(
    result: CalculationResult,
    scenarios: Sequence[Tuple[str, Optional[float], Optional[float]]] = DEFAULT_SCENARIOS,
) -> List[ProfitScenario]:
    """Price ``result`` under each scenario.

    Args:
        result: A calculation result
        scenarios: (name, margin %, discount %) tuples; ``None`` keeps the
            calculation's own margin or discount

    Returns:
        One ProfitScenario per input scenario, in order.
    """
    factors = result.factors_used
    simulated = []

    for name, margin, discount in scenarios:
        margin = factors.margin_percentage if margin is None else margin
        discount = factors.discount_percentage if discount is None else discount
        _, sale, discount_amount, net, vat, final, db, db_percentage, db_per_hour = (
            price_from_sales_basis(
                result.sales_basis,
                result.cost_price,
                result.total_labor_hours,
                margin,
                discount,
                factors.vat_percentage,
            )
        )
        simulated.append(ProfitScenario(
            name=name,
            margin_percentage=margin,
            discount_percentage=discount,
            sale_price_excl_vat=sale,
            discount_amount=discount_amount,
            net_price=net,
            vat_amount=vat,
            final_amount=final,
            db_amount=db,
            db_percentage=db_percentage,
            db_per_hour=db_per_hour,
        ))

    logger.debug("profit_simulated", scenarios=len(simulated), sales_basis=result.sales_basis)
    return simulated
