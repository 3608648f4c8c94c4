"""Ingestion entry point: capture bytes in, persisted catalog out."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_ingest.cancel import CancelToken
from catalog_ingest.capture import read_capture
from catalog_ingest.closure import (
    CategoryLookup,
    LayeredCategoryLookup,
    MemoryCategoryLookup,
    build_closure,
    direct_mappings,
)
from catalog_ingest.config import CapturePatterns
from catalog_ingest.errors import IngestCancelled, PersistenceError
from catalog_ingest.extractors import (
    ExtractionStats,
    drop_dangling_parents,
    extract_categories,
    extract_products,
)
from catalog_ingest.logging_config import get_logger
from catalog_ingest.models import CategoryRecord, ProductCategoryMapping, ProductRecord
from catalog_ingest.storage import repo

LOGGER = get_logger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class IngestOptions:
    """Switches for one ingestion call."""

    infer_context: bool = True
    persist_categories: bool = True
    # Extract and build the closure without touching the database.
    dry_run: bool = False
    patterns: CapturePatterns = field(default_factory=CapturePatterns)


@dataclass
class IngestResult:
    categories_discovered: int = 0
    categories_persisted: int = 0
    products_discovered: int = 0
    direct_mappings: int = 0
    mappings_computed: int = 0
    committed: bool = False
    category_stats: ExtractionStats = field(default_factory=ExtractionStats)
    product_stats: ExtractionStats = field(default_factory=ExtractionStats)

    @property
    def inferred_mappings(self) -> int:
        return self.mappings_computed - self.direct_mappings

    @property
    def skipped_entries(self) -> int:
        return self.category_stats.skipped + self.product_stats.skipped

    def as_dict(self) -> dict[str, Any]:
        return {
            "categories_discovered": self.categories_discovered,
            "categories_persisted": self.categories_persisted,
            "products_discovered": self.products_discovered,
            "direct_mappings": self.direct_mappings,
            "inferred_mappings": self.inferred_mappings,
            "mappings_computed": self.mappings_computed,
            "committed": self.committed,
            "diagnostics": {
                "skipped_entries": self.skipped_entries,
                "categories": self.category_stats.as_dict(),
                "products": self.product_stats.as_dict(),
            },
        }


def persist_categories(
    session_factory: SessionFactory,
    categories: Sequence[CategoryRecord],
    *,
    token: CancelToken,
) -> int:
    """Upsert categories whose parent chain resolves, in their own transaction."""

    if not categories:
        return 0
    token.raise_if_cancelled("category transaction")
    session = session_factory()
    try:
        parent_ids = {record.parent_id for record in categories if record.parent_id}
        known = repo.existing_category_ids(session, parent_ids)
        retained, dangling = drop_dangling_parents(categories, known)
        written = repo.upsert_categories(session, retained)
        session.commit()
    except Exception as exc:
        session.rollback()
        raise PersistenceError(f"Category upsert failed: {exc}") from exc
    finally:
        session.close()
    LOGGER.info("Categories persisted | written=%d | dangling=%d", written, len(dangling))
    return written


def compute_closure(
    session_factory: SessionFactory | None,
    categories: Sequence[CategoryRecord],
    products: Sequence[ProductRecord],
    *,
    overlay: bool,
    token: CancelToken,
) -> tuple[list[ProductCategoryMapping], list[ProductCategoryMapping]]:
    """Return the direct links and their closure.

    Without a session factory the extracted categories are the only lookup.
    With *overlay* they shadow the persisted tree; otherwise only persisted
    categories are consulted.
    """

    direct = direct_mappings(products)
    if session_factory is None:
        return direct, build_closure(direct, MemoryCategoryLookup(categories), token=token)

    session = session_factory()
    try:
        lookup: CategoryLookup = repo.SqlCategoryLookup(session)
        if overlay:
            lookup = LayeredCategoryLookup(MemoryCategoryLookup(categories), lookup)
        closure = build_closure(direct, lookup, token=token)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Category lookup failed: {exc}") from exc
    finally:
        session.close()
    return direct, closure


def persist_catalog(
    session_factory: SessionFactory,
    products: Sequence[ProductRecord],
    mappings: Sequence[ProductCategoryMapping],
    *,
    token: CancelToken,
) -> None:
    """Write products and their category closure as one transaction.

    Any failure rolls the whole transaction back and is raised as
    :class:`PersistenceError` (cancellation stays :class:`IngestCancelled`).
    """

    token.raise_if_cancelled("catalog transaction")
    session = session_factory()
    try:
        if products:
            repo.upsert_products(session, products)
        token.raise_if_cancelled("mapping upsert")
        if mappings:
            repo.upsert_mappings(session, mappings)
        session.commit()
    except IngestCancelled:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        LOGGER.error("Catalog transaction rolled back: %s", exc)
        raise PersistenceError(f"Catalog upsert failed: {exc}") from exc
    finally:
        session.close()
    LOGGER.info(
        "Catalog transaction committed | products=%d | mappings=%d",
        len(products),
        len(mappings),
    )


def ingest(
    capture: bytes | str,
    session_factory: SessionFactory | None = None,
    options: IngestOptions | None = None,
    *,
    token: CancelToken | None = None,
) -> IngestResult:
    """Extract categories and products from *capture* and persist them.

    Categories are written first (unless disabled) so the closure is built
    against the stored tree. Products and the full closure of their category
    links are then upserted atomically.
    """

    options = options or IngestOptions()
    token = token or CancelToken()
    if session_factory is None and not options.dry_run:
        raise ValueError("session_factory is required unless dry_run is set")

    entries = read_capture(capture)

    result = IngestResult()
    categories = extract_categories(entries, options.patterns, result.category_stats)
    products = extract_products(
        entries,
        options.patterns,
        infer_context=options.infer_context,
        stats=result.product_stats,
    )
    result.categories_discovered = len(categories)
    result.products_discovered = len(products)

    if options.dry_run:
        direct, closure = compute_closure(None, categories, products, overlay=False, token=token)
    else:
        if options.persist_categories:
            result.categories_persisted = persist_categories(
                session_factory, categories, token=token
            )
        direct, closure = compute_closure(
            session_factory,
            categories,
            products,
            overlay=not options.persist_categories,
            token=token,
        )
    result.direct_mappings = len(direct)
    result.mappings_computed = len(closure)

    if options.dry_run:
        LOGGER.info("Dry run complete | %s", result.as_dict())
        return result

    persist_catalog(session_factory, products, closure, token=token)
    result.committed = True
    LOGGER.info(
        "Ingestion complete | categories=%d | products=%d | mappings=%d | skipped_entries=%d",
        result.categories_discovered,
        result.products_discovered,
        result.mappings_computed,
        result.skipped_entries,
    )
    return result


__all__ = [
    "IngestOptions",
    "IngestResult",
    "compute_closure",
    "ingest",
    "persist_catalog",
    "persist_categories",
]
