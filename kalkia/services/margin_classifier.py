"""Margin/Risk Classifier for Kalkia.

Classifies the coverage ratio (DB%) of a calculation result into a health
band and flags a low DB per labor hour. Recommendations are static text
looked up by which threshold fired.

Bands (lower bound inclusive):
    DB% < 0            negative
    0 <= DB% < 10      critical
    10 <= DB% < 20     low
    DB% >= 20          healthy

Thresholds are read from ``kalkia.config.settings``.
"""

from typing import Dict, List, Optional

import structlog

from kalkia.config.settings import Settings, settings as app_settings
from kalkia.models.calculation import (
    Anomaly,
    AnomalySeverity,
    CalculationResult,
    MarginAssessment,
    MarginStatus,
)

logger = structlog.get_logger(__name__)

LOW_DB_PER_HOUR = "low_db_per_hour"

# Margin percentages below these are reported as anomalies
LOW_MARGIN_PERCENTAGE = 15.0
CRITICAL_MARGIN_PERCENTAGE = 10.0


# =============================================================================
# RECOMMENDATION TABLE
# =============================================================================

RECOMMENDATIONS: Dict[str, List[str]] = {
    MarginStatus.NEGATIVE.value: [
        "The offer is priced below cost. Raise the margin before sending.",
        "Re-check time estimates and material prices for errors.",
    ],
    MarginStatus.CRITICAL.value: [
        "Coverage is critically low. Raise the margin or remove the discount.",
        "Consider whether the risk buffer covers unforeseen work.",
    ],
    MarginStatus.LOW.value: [
        "Coverage is below target. Consider a higher margin.",
    ],
    MarginStatus.HEALTHY.value: [],
    LOW_DB_PER_HOUR: [
        "Earnings per labor hour are low. Review the hourly rate or labor time.",
    ],
}


def _status_for(db_percentage: float, config: Settings) -> MarginStatus:
    if db_percentage < 0:
        return MarginStatus.NEGATIVE
    if db_percentage < config.db_critical_percentage:
        return MarginStatus.CRITICAL
    if db_percentage < config.db_low_percentage:
        return MarginStatus.LOW
    return MarginStatus.HEALTHY


def classify(result: CalculationResult, config: Optional[Settings] = None) -> MarginAssessment:
    """Classify the margin health of a calculation result.

    Args:
        result: Aggregated calculation result
        config: Threshold source; defaults to the application settings

    Returns:
        MarginAssessment with status, warnings and recommendations. The DB%
        and DB/hour warnings fire independently.
    """
    config = config or app_settings
    status = _status_for(result.db_percentage, config)

    warnings: List[str] = []
    fired: List[str] = [status.value]

    if status != MarginStatus.HEALTHY:
        warnings.append(
            f"DB {result.db_percentage:.1f}% is {status.value} "
            f"(target {config.db_low_percentage:g}% or more)"
        )
    if result.db_per_hour < config.min_db_per_hour:
        warnings.append(
            f"DB per hour {result.db_per_hour:.2f} is below {config.min_db_per_hour:g}"
        )
        fired.append(LOW_DB_PER_HOUR)

    recommendations = [text for key in fired for text in RECOMMENDATIONS[key]]

    logger.debug(
        "margin_classified",
        status=status.value,
        db_percentage=result.db_percentage,
        db_per_hour=result.db_per_hour,
        warnings=len(warnings),
    )
    return MarginAssessment(status=status, warnings=warnings, recommendations=recommendations)


def detect_anomalies(result: CalculationResult, config: Optional[Settings] = None) -> List[Anomaly]:
    """Flag unusual material shares and margins in a calculation result."""
    config = config or app_settings
    anomalies: List[Anomaly] = []

    if result.cost_price > 0:
        material_ratio = result.total_material_cost / result.cost_price
        if material_ratio < config.min_material_ratio:
            anomalies.append(Anomaly(
                anomaly_type="price_deviation",
                severity=AnomalySeverity.INFO,
                message=f"Low material share ({material_ratio * 100:.0f}%), typically 30-50%",
                details={"material_ratio": material_ratio},
            ))
        if material_ratio > config.max_material_ratio:
            anomalies.append(Anomaly(
                anomaly_type="price_deviation",
                severity=AnomalySeverity.WARNING,
                message=f"High material share ({material_ratio * 100:.0f}%), check material prices",
                details={"material_ratio": material_ratio},
            ))

    # Below the critical margin both the warning and the critical anomaly are reported
    margin = result.factors_used.margin_percentage
    if margin < LOW_MARGIN_PERCENTAGE:
        anomalies.append(Anomaly(
            anomaly_type="margin_warning",
            severity=AnomalySeverity.WARNING,
            message=f"Low margin: {margin:g}% (recommended minimum {LOW_MARGIN_PERCENTAGE:g}%)",
            details={"margin_percentage": margin},
        ))
    if margin < CRITICAL_MARGIN_PERCENTAGE:
        anomalies.append(Anomaly(
            anomaly_type="margin_warning",
            severity=AnomalySeverity.CRITICAL,
            message=f"Critically low margin: {margin:g}% (risk of loss)",
            details={"margin_percentage": margin},
        ))

    if anomalies:
        logger.info(
            "calculation_anomalies_detected",
            count=len(anomalies),
            types=sorted({a.anomaly_type for a in anomalies}),
        )
    return anomalies
