"""Calculation Engine for Kalkia.

Facade over the pipeline:

    resolve_context -> calculate_item (per item) -> aggregate -> classify

Item calculations are independent and may fan out on a thread pool; results
keep input order and the first failure propagates. Aggregation runs once all
items are done. The catalog slice must be loaded by the caller beforehand.

Usage:
    engine = CalculationEngine(catalog)
    run = engine.calculate(items, settings, building_profile=profile)
"""

import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from kalkia.config.settings import settings as app_settings
from kalkia.models.calculation import (
    CalculatedItem,
    CalculationItemInput,
    CalculationRun,
    CalculationSettings,
    FactorContext,
    SupplierPrice,
)
from kalkia.models.catalog import BuildingProfile, Catalog, GlobalFactor
from kalkia.services.factor_resolver import FactorContextCache, resolve_context
from kalkia.services.item_calculator import calculate_item, resolve_variant
from kalkia.services.margin_classifier import classify, detect_anomalies
from kalkia.services.pricing_aggregator import aggregate, validate_settings
from kalkia.utils.calculation_logger import (
    log_calculation_complete,
    log_calculation_failed,
    log_calculation_start,
)

logger = structlog.get_logger(__name__)


class CalculationEngine:
    """Runs calculations against one catalog slice."""

    def __init__(
        self,
        catalog: Catalog,
        context_cache: Optional[FactorContextCache] = None,
        max_workers: Optional[int] = None,
    ):
        """Initialize the engine.

        Args:
            catalog: Pre-loaded catalog slice covering every referenced id
            context_cache: Optional shared cache of resolved factor contexts
            max_workers: Default thread count for item calculations;
                falls back to ``KALKIA_MAX_WORKERS``
        """
        self.catalog = catalog
        self.context_cache = context_cache
        self.max_workers = max_workers or app_settings.max_workers

    def _resolve_context(
        self,
        settings: CalculationSettings,
        building_profile: Optional[BuildingProfile],
        global_factors: Sequence[GlobalFactor],
    ) -> FactorContext:
        if self.context_cache is not None:
            return self.context_cache.resolve(
                building_profile, global_factors, settings.labor_type, settings.time_adjustment
            )
        return resolve_context(
            building_profile, global_factors, settings.labor_type, settings.time_adjustment
        )

    def _index_supplier_prices(
        self, supplier_prices: Iterable[SupplierPrice]
    ) -> Dict[str, SupplierPrice]:
        """Key supplier prices by material id; each must name a catalog material."""
        indexed: Dict[str, SupplierPrice] = {}
        for price in supplier_prices:
            self.catalog.get_material(price.material_id)
            indexed[price.material_id] = price
        return indexed

    def calculate_one(
        self,
        item: CalculationItemInput,
        settings: CalculationSettings,
        context: FactorContext,
        supplier_prices: Optional[Mapping[str, SupplierPrice]] = None,
    ) -> CalculatedItem:
        """Look up an item's catalog records and calculate it."""
        component = self.catalog.get_component(item.component_id)
        variant = resolve_variant(
            component, self.catalog.variants_for(component.id), item.variant_id
        )
        return calculate_item(
            component=component,
            variant=variant,
            materials=self.catalog.materials_for(variant.id),
            rules=self.catalog.rules_for(component.id, variant.id),
            item=item,
            context=context,
            settings=settings,
            supplier_prices=supplier_prices,
        )

    def _calculate_items(
        self,
        items: Sequence[CalculationItemInput],
        settings: CalculationSettings,
        context: FactorContext,
        max_workers: int,
        failed: List[int],
        supplier_prices: Mapping[str, SupplierPrice],
    ) -> List[CalculatedItem]:
        if max_workers <= 1 or len(items) <= 1:
            results = []
            for index, item in enumerate(items):
                failed[:] = [index]
                results.append(self.calculate_one(item, settings, context, supplier_prices))
            failed.clear()
            return results

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures: List[Future] = [
                executor.submit(self.calculate_one, item, settings, context, supplier_prices)
                for item in items
            ]
            results = []
            for index, future in enumerate(futures):
                failed[:] = [index]
                try:
                    results.append(future.result())
                except Exception:
                    for pending in futures[index + 1:]:
                        pending.cancel()
                    raise
            failed.clear()
            return results

    def calculate(
        self,
        items: Iterable[CalculationItemInput],
        settings: Optional[CalculationSettings] = None,
        building_profile: Optional[BuildingProfile] = None,
        global_factors: Iterable[GlobalFactor] = (),
        max_workers: Optional[int] = None,
        calculation_id: Optional[str] = None,
        supplier_prices: Iterable[SupplierPrice] = (),
    ) -> CalculationRun:
        """Calculate a full run.

        Args:
            items: Items to price, in display order
            settings: Calculation settings; defaults from configuration
            building_profile: Optional building profile
            global_factors: Global factors (inactive ones are skipped)
            max_workers: Thread count for this run
            calculation_id: Identifier used in logs; generated when omitted
            supplier_prices: Live material prices; stale ones are ignored

        Returns:
            CalculationRun with per-item results, aggregate, assessment and
            anomalies

        Raises:
            KalkiaError: Any validation, lookup, integrity, configuration or
                computation failure. Nothing partial is returned.
        """
        items = list(items)
        settings = settings or CalculationSettings()
        global_factors = tuple(global_factors)
        workers = max_workers or self.max_workers
        calculation_id = calculation_id or uuid.uuid4().hex
        failed: List[int] = []

        start = time.monotonic()
        log_calculation_start(calculation_id, len(items), workers)

        try:
            validate_settings(settings)
            prices = self._index_supplier_prices(supplier_prices)
            context = self._resolve_context(settings, building_profile, global_factors)
            calculated = self._calculate_items(items, settings, context, workers, failed, prices)
            logger.debug(
                "items_calculated",
                calculation_id=calculation_id,
                count=len(calculated),
                supplier_prices_used=sum(i.supplier_prices_used for i in calculated),
            )
            result = aggregate(calculated, settings, context)
            assessment = classify(result)
            anomalies = detect_anomalies(result)
        except Exception as e:
            log_calculation_failed(calculation_id, e, item_index=failed[0] if failed else None)
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        log_calculation_complete(calculation_id, result, assessment.status.value, duration_ms)

        return CalculationRun(
            items=calculated,
            result=result,
            assessment=assessment,
            anomalies=anomalies,
        )
