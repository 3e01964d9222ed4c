"""Offer-Text Assembler for Kalkia.

Renders a finished calculation run into offer line items and a plain-text
offer body (work description, scope, price summary, timeline, reservations).
Nothing here changes a number; every amount comes from the run.
"""

import math
from collections import OrderedDict
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kalkia.models.calculation import CalculatedItem, CalculationRun

HOURS_PER_WORKDAY = 7.5
DEFAULT_SECTION = "General"

RESERVATIONS = (
    "The timeline depends on site access and coordination with other trades.",
    "Work not described in this offer is invoiced separately.",
    "Prices are based on the stated quantities; changes are settled by unit price.",
)


class OfferLine(BaseModel):
    """One offer line item derived from a calculated item."""

    model_config = ConfigDict(frozen=True)

    position: int
    description: str
    quantity: float
    unit: str = "stk"
    unit_price: float = Field(..., description="Sale price per unit")
    cost_price: float = Field(..., description="Cost price per unit")
    total: float
    section: Optional[str] = None


def format_currency(amount: float) -> str:
    """Whole kroner with thousands separators, e.g. ``12,345 DKK``."""
    return f"{amount:,.0f} DKK"


def format_hours(hours: float) -> str:
    if hours < 1:
        return f"{round(hours * 60)} min"
    whole = math.floor(hours)
    minutes = round((hours - whole) * 60)
    if minutes == 60:
        whole, minutes = whole + 1, 0
    if minutes == 0:
        return f"{whole} hours"
    return f"{whole}h {minutes}min"


def estimate_workdays(hours: float, hours_per_day: float = HOURS_PER_WORKDAY) -> int:
    return math.ceil(hours / hours_per_day)


def build_offer_lines(items: List[CalculatedItem]) -> List[OfferLine]:
    """Map calculated items to offer lines, keeping their order."""
    return [
        OfferLine(
            position=index,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.sale_price,
            cost_price=item.total_cost / item.quantity,
            total=item.total_sale,
            section=item.section,
        )
        for index, item in enumerate(items)
    ]


def _group_by_section(items: List[CalculatedItem]) -> Dict[str, List[CalculatedItem]]:
    grouped: Dict[str, List[CalculatedItem]] = OrderedDict()
    for item in items:
        grouped.setdefault(item.section or DEFAULT_SECTION, []).append(item)
    return grouped


def build_offer_text(
    run: CalculationRun,
    title: Optional[str] = None,
    customer_name: Optional[str] = None,
) -> str:
    """Assemble the offer body for a calculation run.

    Args:
        run: Result of ``CalculationEngine.calculate``
        title: Optional heading
        customer_name: Optional addressee

    Returns:
        Plain text with one block per offer section
    """
    result = run.result
    lines: List[str] = []

    if title:
        lines += [title.upper(), "=" * len(title), ""]
    if customer_name:
        lines += [f"Prepared for: {customer_name}", ""]

    # Work description
    lines += ["WORK DESCRIPTION", "----------------", "The work comprises:", ""]
    for section, items in _group_by_section(run.items).items():
        summary = ", ".join(f"{item.quantity:g} {item.unit} {item.description.lower()}" for item in items)
        lines.append(f"* {section}: {summary}")
    lines.append("")

    # Scope
    lines += ["SCOPE", "-----"]
    for line in build_offer_lines(run.items):
        lines.append(
            f"  {line.position + 1}. {line.description}: {line.quantity:g} {line.unit}"
            f" x {format_currency(line.unit_price)} = {format_currency(line.total)}"
        )
    lines.append("")

    # Price
    lines += ["PRICE", "-----", f"Price excl. VAT: {format_currency(result.sale_price_excl_vat)}"]
    if result.discount_amount:
        lines.append(
            f"Discount ({result.factors_used.discount_percentage:g}%): "
            f"-{format_currency(result.discount_amount)}"
        )
    lines += [
        f"VAT ({result.factors_used.vat_percentage:g}%): {format_currency(result.vat_amount)}",
        f"Total incl. VAT: {format_currency(result.final_amount)}",
        "",
    ]

    # Timeline
    hours = result.total_labor_hours
    workdays = estimate_workdays(hours)
    lines += [
        "TIMELINE",
        "--------",
        f"Estimated working time: {format_hours(hours)}",
        f"Expected duration: {workdays} workday{'s' if workdays != 1 else ''}",
        "",
    ]

    # Reservations
    lines += ["RESERVATIONS", "------------"]
    lines += [f"* {text}" for text in RESERVATIONS]

    return "\n".join(lines)
