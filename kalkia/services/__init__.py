"""Kalkia calculation services."""
