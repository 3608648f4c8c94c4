"""SQLAlchemy ORM models for catalog storage."""

from __future__ import annotations

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""


class Category(Base):
    """Node of the storefront category hierarchy."""

    __tablename__ = "product_categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_categories_parent_sort", "parent_id", "sort_order"),
        Index("ix_categories_level_sort", "level", "sort_order"),
    )


class Product(Base):
    """Store-specific product listing."""

    __tablename__ = "products"

    spu_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    sub_title: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    price: Mapped[str] = mapped_column(String(32), nullable=False, default="0")
    stock_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_available: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_import: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class ProductCategoryMap(Base):
    """Membership of a product (by SPU) in a category or one of its ancestors."""

    __tablename__ = "product_to_category_map"

    product_spu_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    __table_args__ = (Index("ix_category_map_category", "category_id"),)
