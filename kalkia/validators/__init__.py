"""Catalog ingestion and validation."""
