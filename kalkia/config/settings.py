"""Kalkia configuration settings.

Loads configuration from environment variables with sensible defaults.
Values here are the fallbacks for calculation settings and the thresholds
used by the margin classifier.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from kalkia.config.errors import ConfigurationError

# Load .env file for local overrides (default rates, thresholds, feature flags)
load_dotenv()


# Margin is applied as markup on the sales basis:
#   margin_amount = sales_basis * margin_percentage / 100
MARGIN_CONVENTION = "markup_on_sales_basis"


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # Calculation defaults (DKK)
    default_hourly_rate: float = field(default_factory=lambda: float(os.getenv("KALKIA_DEFAULT_HOURLY_RATE", "495")))
    default_vat_percentage: float = field(default_factory=lambda: float(os.getenv("KALKIA_DEFAULT_VAT_PERCENTAGE", "25")))
    default_overhead_percentage: float = field(default_factory=lambda: float(os.getenv("KALKIA_DEFAULT_OVERHEAD_PERCENTAGE", "12")))
    default_risk_percentage: float = field(default_factory=lambda: float(os.getenv("KALKIA_DEFAULT_RISK_PERCENTAGE", "0")))
    margin_convention: str = MARGIN_CONVENTION

    # Margin health thresholds
    db_critical_percentage: float = field(default_factory=lambda: float(os.getenv("KALKIA_DB_CRITICAL_PERCENTAGE", "10")))
    db_low_percentage: float = field(default_factory=lambda: float(os.getenv("KALKIA_DB_LOW_PERCENTAGE", "20")))
    min_db_per_hour: float = field(default_factory=lambda: float(os.getenv("KALKIA_MIN_DB_PER_HOUR", "200")))

    # Material share of cost price outside this band is reported as an anomaly
    min_material_ratio: float = field(default_factory=lambda: float(os.getenv("KALKIA_MIN_MATERIAL_RATIO", "0.2")))
    max_material_ratio: float = field(default_factory=lambda: float(os.getenv("KALKIA_MAX_MATERIAL_RATIO", "0.7")))

    # Engine
    max_workers: int = field(default_factory=lambda: int(os.getenv("KALKIA_MAX_WORKERS", "1")))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_banners: bool = field(default_factory=lambda: os.getenv("KALKIA_LOG_BANNERS", "false").lower() == "true")

    def validate(self) -> None:
        """Validate settings are consistent.

        Raises:
            ConfigurationError: If a threshold or default is unusable.
        """
        if self.margin_convention != MARGIN_CONVENTION:
            raise ConfigurationError(
                f"Unsupported margin convention {self.margin_convention!r}",
                field="margin_convention",
                value=self.margin_convention,
            )
        if self.default_hourly_rate <= 0:
            raise ConfigurationError(
                "Default hourly rate must be positive",
                field="default_hourly_rate",
                value=self.default_hourly_rate,
            )
        if not 0 <= self.db_critical_percentage <= self.db_low_percentage:
            raise ConfigurationError(
                "DB thresholds must satisfy 0 <= critical <= low",
                field="db_critical_percentage",
                value=(self.db_critical_percentage, self.db_low_percentage),
            )
        if self.max_workers < 1:
            raise ConfigurationError(
                "max_workers must be at least 1",
                field="max_workers",
                value=self.max_workers,
            )


# Singleton settings instance
settings = Settings()
