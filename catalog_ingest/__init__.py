"""Catalog ingestion pipeline for captured storefront traffic."""

__version__ = "0.1.0"
