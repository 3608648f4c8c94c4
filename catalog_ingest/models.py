"""Plain records exchanged between extraction, closure and storage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CategoryRecord:
    """A node of the storefront category hierarchy.

    ``sort_order`` is only meaningful among siblings sharing ``parent_id``.
    """

    id: str
    parent_id: Optional[str]
    name: str
    level: int
    image_url: Optional[str] = None
    sort_order: int = 0

    def as_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "level": self.level,
            "image_url": self.image_url,
            "sort_order": self.sort_order,
        }


@dataclass(frozen=True)
class ProductRecord:
    """A store-specific product listing keyed by ``(spu_id, store_id)``."""

    spu_id: str
    store_id: str
    title: Optional[str] = None
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    price: str = "0"
    stock_quantity: Optional[int] = None
    is_available: Optional[bool] = None
    is_import: Optional[bool] = None
    # Contextual category of the listing this product was captured from.
    category_id: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.spu_id, self.store_id)

    def as_row(self) -> dict[str, Any]:
        return {
            "spu_id": self.spu_id,
            "store_id": self.store_id,
            "title": self.title,
            "sub_title": self.subtitle,
            "image_url": self.image_url,
            "price": self.price,
            "stock_quantity": self.stock_quantity,
            "is_available": self.is_available,
            "is_import": self.is_import,
        }


@dataclass(frozen=True, order=True)
class ProductCategoryMapping:
    product_spu_id: str
    category_id: str

    def as_row(self) -> dict[str, Any]:
        return {"product_spu_id": self.product_spu_id, "category_id": self.category_id}


__all__ = ["CategoryRecord", "ProductCategoryMapping", "ProductRecord"]
