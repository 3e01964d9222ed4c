"""Pytest configuration and shared fixtures for Kalkia tests."""

import os
import sys

import pytest


# ============================================================================
# Ensure local imports work (kalkia/, tests/)
# ============================================================================
#
# Tests import shared builders as `from tests.fixtures...`, so the project
# root must be importable even when the package is not installed.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from kalkia.config.settings import settings  # noqa: E402
from kalkia.services.factor_resolver import resolve_context  # noqa: E402
from kalkia.validators.catalog_validator import load_catalog  # noqa: E402
from tests.fixtures.catalog_data import (  # noqa: E402
    CATALOG_COMPONENTS,
    CATALOG_MATERIALS,
    CATALOG_RULES,
    CATALOG_VARIANTS,
    make_settings,
)


# ============================================================================
# Catalog
# ============================================================================

@pytest.fixture
def catalog():
    """Small validated catalog: socket (2 variants), light, RCD."""
    return load_catalog(
        components=CATALOG_COMPONENTS,
        variants=CATALOG_VARIANTS,
        materials=CATALOG_MATERIALS,
        rules=CATALOG_RULES,
    )


# ============================================================================
# Context / Settings
# ============================================================================

@pytest.fixture
def neutral_context():
    """Factor context with every multiplier at 1.0 and no percentage rates."""
    return resolve_context()


@pytest.fixture
def calc_settings():
    """Hourly rate 450, no buffers, no margin, VAT 25%."""
    return make_settings()


@pytest.fixture(autouse=True)
def quiet_banners(monkeypatch):
    """Make sure banner printing is off regardless of the local .env."""
    monkeypatch.setattr(settings, "log_banners", False)
