"""Product extraction from product-listing capture entries."""

from __future__ import annotations

from typing import Any, Iterable

from catalog_ingest.capture import CaptureEntry, as_list, dig, parse_json_text, text_or_none
from catalog_ingest.config import CapturePatterns
from catalog_ingest.errors import EntryParseError
from catalog_ingest.extractors.base import ExtractionStats, FirstWins
from catalog_ingest.logging_config import get_logger
from catalog_ingest.models import ProductRecord
from catalog_ingest.normalizers import coerce_bool, coerce_int, normalize_id, sale_price

LOGGER = get_logger(__name__)


def _context_category(entry: CaptureEntry, patterns: CapturePatterns) -> str | None:
    request = parse_json_text(entry.request_body, url=entry.url)
    # Only the first id is used as the direct category.
    for value in as_list(dig(request, patterns.context_field))[:1]:
        return normalize_id(value)
    return None


def _product_from_raw(
    raw: Any,
    patterns: CapturePatterns,
    category_id: str | None,
    stats: ExtractionStats,
) -> ProductRecord | None:
    if not isinstance(raw, dict):
        stats.drop("product_not_object")
        return None
    spu_id = normalize_id(raw.get("spuId"))
    store_id = normalize_id(raw.get("storeId"))
    if spu_id is None or store_id is None:
        stats.drop("product_missing_key")
        return None

    return ProductRecord(
        spu_id=spu_id,
        store_id=store_id,
        title=text_or_none(raw.get("title")),
        subtitle=text_or_none(raw.get("subTitle")),
        image_url=text_or_none(raw.get("image")),
        price=sale_price(as_list(raw.get("priceInfo")), patterns.sale_price_type),
        stock_quantity=coerce_int(dig(raw, "stockInfo", "stockQuantity")),
        is_available=coerce_bool(raw.get("isAvailable")),
        is_import=coerce_bool(raw.get("isImport")),
        category_id=category_id,
    )


def _entry_products(
    entry: CaptureEntry,
    patterns: CapturePatterns,
    infer_context: bool,
    stats: ExtractionStats,
) -> list[ProductRecord]:
    category_id: str | None = None
    if infer_context:
        category_id = _context_category(entry, patterns)
        if category_id is None:
            stats.skip("context_category_missing")
            LOGGER.debug("Listing without %s; skipping %s", patterns.context_field, entry.url)
            return []

    payload = parse_json_text(entry.response_body, url=entry.url)
    products: list[ProductRecord] = []
    for raw in as_list(dig(payload, "data", "dataList")):
        record = _product_from_raw(raw, patterns, category_id, stats)
        if record is not None:
            products.append(record)
    return products


def extract_products(
    entries: Iterable[CaptureEntry],
    patterns: CapturePatterns | None = None,
    *,
    infer_context: bool = True,
    stats: ExtractionStats | None = None,
) -> list[ProductRecord]:
    """Collect product listings from *entries*, first occurrence per (spu, store) wins.

    With *infer_context* the listing's request body must name at least one
    front category id; the first one becomes each product's direct category.
    """

    patterns = patterns or CapturePatterns()
    stats = stats if stats is not None else ExtractionStats()
    collected: FirstWins[tuple[str, str], ProductRecord] = FirstWins(lambda record: record.key)

    for entry in entries:
        if not entry.matches(patterns.product_list):
            continue
        stats.processed += 1
        if not entry.response_body:
            stats.skip("response_body_missing")
            continue
        if infer_context and entry.request_body is None:
            stats.skip("request_body_missing")
            continue
        try:
            products = _entry_products(entry, patterns, infer_context, stats)
        except EntryParseError as exc:
            stats.skip("invalid_json")
            LOGGER.warning("Skipping product listing entry: %s", exc)
            continue
        stats.duplicates += collected.extend(products)

    LOGGER.info(
        "Extracted %d products | entries=%d | skipped=%d | duplicates=%d",
        len(collected),
        stats.processed,
        stats.skipped,
        stats.duplicates,
    )
    return collected.to_list()


__all__ = ["extract_products"]
