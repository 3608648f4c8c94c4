"""Extraction of categories and products from capture entries."""

from catalog_ingest.extractors.base import ExtractionStats, FirstWins
from catalog_ingest.extractors.categories import (
    drop_dangling_parents,
    extract_categories,
    flatten_categories,
)
from catalog_ingest.extractors.products import extract_products

__all__ = [
    "ExtractionStats",
    "FirstWins",
    "drop_dangling_parents",
    "extract_categories",
    "extract_products",
    "flatten_categories",
]
