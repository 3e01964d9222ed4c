#!/usr/bin/env python3
"""Demo script to run a full Kalkia calculation locally.

This script:
1. Loads data/demo_catalog.json
2. Runs the engine over the example items
3. Prints the snapshot as JSON, the offer text and a profit simulation

Usage:
    python -m kalkia.demo_calculation
    python -m kalkia.demo_calculation path/to/catalog.json
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from kalkia.config.settings import settings
from kalkia.models.calculation import CalculationItemInput, CalculationRun, CalculationSettings
from kalkia.models.catalog import BuildingProfile, GlobalFactor
from kalkia.services.calculation_engine import CalculationEngine
from kalkia.services.offer_text import build_offer_text
from kalkia.services.profit_simulator import simulate_profit
from kalkia.validators.catalog_validator import load_catalog

DEMO_CATALOG = Path(__file__).parent / "data" / "demo_catalog.json"


def configure_logging() -> None:
    """Console logging at ``LOG_LEVEL``."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
    )


def load_demo_data(path: Optional[Path] = None) -> Dict[str, Any]:
    with open(path or DEMO_CATALOG, encoding="utf-8") as f:
        return json.load(f)


def run_demo(path: Optional[Path] = None) -> CalculationRun:
    """Load the demo catalog and calculate its items."""
    data = load_demo_data(path)

    catalog = load_catalog(
        components=data["components"],
        variants=data["variants"],
        materials=data.get("materials", []),
        rules=data.get("rules", []),
    )
    profile = data.get("building_profile")
    engine = CalculationEngine(catalog)

    return engine.calculate(
        items=[CalculationItemInput.model_validate(item) for item in data["items"]],
        settings=CalculationSettings.model_validate(data.get("settings", {})),
        building_profile=BuildingProfile.model_validate(profile) if profile else None,
        global_factors=[GlobalFactor.model_validate(f) for f in data.get("global_factors", [])],
        calculation_id="demo",
    )


if __name__ == "__main__":
    configure_logging()
    settings.validate()

    run = run_demo(Path(sys.argv[1]) if len(sys.argv) > 1 else None)

    print(json.dumps(run.to_snapshot(), indent=2, ensure_ascii=False))
    print()
    print(build_offer_text(run, title="Electrical installation", customer_name="Demo customer"))
    print()
    for scenario in simulate_profit(run.result):
        print(
            f"{scenario.name:<20} final {scenario.final_amount:>12,.2f}"
            f"  DB {scenario.db_percentage:6.1f}%"
        )
