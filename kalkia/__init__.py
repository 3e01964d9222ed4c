"""Kalkia Calculation Engine.

This package contains the pure, in-process pricing engine for electrical
contracting offers. Given catalog components with variants, quantities and
building context it computes labor time, material cost, markup, discount,
VAT and a final price, and classifies the coverage ratio (DB) health.

Architecture:
- Factor Resolver: building profile + global factors + labor choice
- Item Calculator: rule-adjusted time and cost per item
- Pricing Aggregator: fixed 8-stage pricing pipeline
- Margin Classifier: DB health bands, warnings and anomalies
- Offer Text: line items and offer body from a finished run
"""

__version__ = "1.0.0"
