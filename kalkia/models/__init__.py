"""Kalkia data models.

This package contains:
- catalog: Components, variants, materials, rules, profiles, global factors
- calculation: Calculation inputs, factor context and results
"""
