"""Ancestor resolution and product-to-category closure."""

from __future__ import annotations

from typing import Iterable, Mapping, Protocol

from catalog_ingest.cancel import CancelToken
from catalog_ingest.errors import CategoryNotFound
from catalog_ingest.logging_config import get_logger
from catalog_ingest.models import CategoryRecord, ProductCategoryMapping, ProductRecord

LOGGER = get_logger(__name__)


class CategoryLookup(Protocol):
    def get_parent_id(self, category_id: str) -> str | None:
        """Return the parent id of *category_id*, None for a root.

        Raises :class:`CategoryNotFound` when the id is unknown.
        """


class MemoryCategoryLookup:
    """Category lookup backed by an in-memory id -> parent id mapping."""

    def __init__(self, parents: Mapping[str, str | None] | Iterable[CategoryRecord]) -> None:
        if isinstance(parents, Mapping):
            self._parents = dict(parents)
        else:
            self._parents = {record.id: record.parent_id for record in parents}

    def get_parent_id(self, category_id: str) -> str | None:
        try:
            return self._parents[category_id]
        except KeyError:
            raise CategoryNotFound(category_id) from None


class LayeredCategoryLookup:
    """Consult *primary* first and fall back to *fallback* for unknown ids."""

    def __init__(self, primary: CategoryLookup, fallback: CategoryLookup) -> None:
        self.primary = primary
        self.fallback = fallback

    def get_parent_id(self, category_id: str) -> str | None:
        try:
            return self.primary.get_parent_id(category_id)
        except CategoryNotFound:
            return self.fallback.get_parent_id(category_id)


def ancestors_of(
    category_id: str,
    lookup: CategoryLookup,
    *,
    token: CancelToken | None = None,
) -> list[str]:
    """Return the strict ancestors of *category_id*, nearest first.

    The walk stops at a root, at an id the lookup does not know, or at a
    parent already visited during this walk.
    """

    ancestors: list[str] = []
    visited = {category_id}
    current = category_id
    while True:
        if token is not None:
            token.raise_if_cancelled("category lookup")
        try:
            parent_id = lookup.get_parent_id(current)
        except CategoryNotFound:
            if current != category_id:
                LOGGER.debug("Ancestor walk from %s stopped at unknown %s", category_id, current)
            break
        if not parent_id or parent_id in visited:
            if parent_id:
                LOGGER.warning("Category cycle detected at %s while resolving %s", parent_id, category_id)
            break
        visited.add(parent_id)
        ancestors.append(parent_id)
        current = parent_id
    return ancestors


def direct_mappings(products: Iterable[ProductRecord]) -> list[ProductCategoryMapping]:
    """Return the product -> contextual category links carried by *products*."""

    seen: set[ProductCategoryMapping] = set()
    mappings: list[ProductCategoryMapping] = []
    for product in products:
        if not product.category_id:
            continue
        mapping = ProductCategoryMapping(product.spu_id, product.category_id)
        if mapping not in seen:
            seen.add(mapping)
            mappings.append(mapping)
    return mappings


def build_closure(
    direct: Iterable[ProductCategoryMapping],
    lookup: CategoryLookup,
    *,
    token: CancelToken | None = None,
) -> list[ProductCategoryMapping]:
    """Expand *direct* links with one link per ancestor of each category.

    The result holds every direct link followed by the inferred ones, each
    (product, category) pair once. Ancestors are resolved once per category.
    """

    direct = list(direct)
    closure: dict[tuple[str, str], ProductCategoryMapping] = {}
    for mapping in direct:
        closure.setdefault((mapping.product_spu_id, mapping.category_id), mapping)

    resolved: dict[str, list[str]] = {}
    for mapping in direct:
        if mapping.category_id not in resolved:
            resolved[mapping.category_id] = ancestors_of(mapping.category_id, lookup, token=token)
        for ancestor_id in resolved[mapping.category_id]:
            key = (mapping.product_spu_id, ancestor_id)
            if key not in closure:
                closure[key] = ProductCategoryMapping(mapping.product_spu_id, ancestor_id)

    LOGGER.debug(
        "Built closure | direct=%d | total=%d | categories=%d",
        len(set((m.product_spu_id, m.category_id) for m in direct)),
        len(closure),
        len(resolved),
    )
    return list(closure.values())


__all__ = [
    "CategoryLookup",
    "LayeredCategoryLookup",
    "MemoryCategoryLookup",
    "ancestors_of",
    "build_closure",
    "direct_mappings",
]
