"""
Unit Tests for the demo calculation over the bundled catalog.
"""

import pytest

from kalkia.demo_calculation import DEMO_CATALOG, load_demo_data, run_demo
from kalkia.services.offer_text import build_offer_text


def test_demo_catalog_is_bundled():
    data = load_demo_data()

    assert DEMO_CATALOG.exists()
    assert {"components", "variants", "items", "settings"} <= set(data)


def test_run_demo():
    run = run_demo()

    assert len(run.items) == len(load_demo_data()["items"])
    assert run.result.cost_price > 0
    assert run.result.total_indirect_time_seconds == pytest.approx(
        run.result.total_direct_time_seconds * 0.15
    )
    assert run.result.final_amount > run.result.net_price
    assert run.result.factors_used.margin_percentage == 25


def test_demo_offer_text():
    text = build_offer_text(run_demo(), title="Demo")

    assert text.startswith("DEMO")
    assert "RESERVATIONS" in text
