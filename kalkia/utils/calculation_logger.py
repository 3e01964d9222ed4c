"""Calculation Logger for Kalkia.

Provides highly visible, formatted logging for calculation runs with
banner markers that stand out in a local console. Banners print only when
``KALKIA_LOG_BANNERS`` is enabled; the structured event is always emitted.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from kalkia.config.settings import settings
from kalkia.models.calculation import CalculationResult

logger = structlog.get_logger(__name__)

# Visual markers
BANNER_WIDTH = 80
RUN_BANNER_CHAR = "█"
RESULT_BANNER_CHAR = "═"
FAILURE_BANNER_CHAR = "!"


def _create_banner(char: str, text: str, width: int = BANNER_WIDTH) -> str:
    """Create a centered banner with given character."""
    text_with_spaces = f" {text} "
    padding = (width - len(text_with_spaces)) // 2
    return char * padding + text_with_spaces + char * (width - padding - len(text_with_spaces))


def _format_json(data: Dict[str, Any], indent: int = 2) -> str:
    """Format dictionary as pretty JSON string."""
    return json.dumps(data, indent=indent, default=str, ensure_ascii=False)


def _print_block(char: str, title: str, rows: Dict[str, Any]) -> None:
    if not settings.log_banners:
        return
    print("\n")
    print(char * BANNER_WIDTH)
    print(_create_banner(char, title))
    print(char * BANNER_WIDTH)
    label_width = max(len(label) for label in rows)
    for label, value in rows.items():
        print(f"║ {label.ljust(label_width)} : {value}")
    print(char * BANNER_WIDTH)
    print("\n")


def log_calculation_start(calculation_id: str, item_count: int, max_workers: int) -> None:
    """Log calculation start with prominent banner."""
    _print_block(RUN_BANNER_CHAR, "KALKIA CALCULATION STARTED", {
        "Calculation ID": calculation_id,
        "Timestamp": datetime.now(timezone.utc).isoformat(),
        "Items": item_count,
        "Workers": max_workers,
    })

    logger.info(
        "calculation_start",
        calculation_id=calculation_id,
        item_count=item_count,
        max_workers=max_workers,
    )


def log_calculation_complete(
    calculation_id: str,
    result: CalculationResult,
    status: str,
    duration_ms: int,
) -> None:
    """Log calculation completion with the key figures."""
    _print_block(RESULT_BANNER_CHAR, "✓ CALCULATION COMPLETED", {
        "Calculation ID": calculation_id,
        "Duration": f"{duration_ms:,} ms",
        "Cost Price": f"{result.cost_price:,.2f}",
        "Final Amount": f"{result.final_amount:,.2f}",
        "DB": f"{result.db_amount:,.2f} ({result.db_percentage:.1f}%)",
        "DB / Hour": f"{result.db_per_hour:,.2f}",
        "Status": status.upper(),
    })
    if settings.log_banners:
        print(_format_json(result.to_snapshot()))

    logger.info(
        "calculation_complete",
        calculation_id=calculation_id,
        duration_ms=duration_ms,
        cost_price=result.cost_price,
        final_amount=result.final_amount,
        db_percentage=result.db_percentage,
        status=status,
    )


def log_calculation_failed(
    calculation_id: str,
    error: Exception,
    item_index: Optional[int] = None,
) -> None:
    """Log calculation failure with details."""
    details = getattr(error, "details", None)
    code = getattr(error, "code", type(error).__name__)

    _print_block(FAILURE_BANNER_CHAR, "✗ CALCULATION FAILED", {
        "Calculation ID": calculation_id,
        "Timestamp": datetime.now(timezone.utc).isoformat(),
        "Error Code": code,
        "Error": str(error),
        "Item": item_index if item_index is not None else "n/a",
    })

    logger.error(
        "calculation_failed",
        calculation_id=calculation_id,
        error_code=code,
        error=str(error),
        details=details,
        item_index=item_index,
    )
