"""Repository helpers for interacting with persistent storage."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from sqlalchemy import Numeric, Table, cast, func, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session

from catalog_ingest.errors import CategoryNotFound
from catalog_ingest.models import CategoryRecord, ProductCategoryMapping, ProductRecord

from .models_sql import Base, Category, Product, ProductCategoryMap

# Keeps multi-row VALUES under SQLite's bound-parameter limit.
UPSERT_CHUNK_SIZE = 500

CATEGORY_UPDATE_COLUMNS = ("name", "level", "image_url", "sort_order")
PRODUCT_UPDATE_COLUMNS = (
    "title",
    "sub_title",
    "image_url",
    "price",
    "stock_quantity",
    "is_available",
    "is_import",
)
PRODUCT_SORT_COLUMNS = {
    "spu_id": Product.spu_id,
    "price": cast(Product.price, Numeric(12, 2)),
    "stock_quantity": Product.stock_quantity,
    "title": Product.title,
}


def _chunks(rows: Sequence[dict[str, Any]], size: int = UPSERT_CHUNK_SIZE):
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _merge_rows(
    session: Session,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    update_columns: Sequence[str],
) -> None:
    mapper = model.__mapper__
    for row in rows:
        identity = tuple(row[column.key] for column in mapper.primary_key)
        instance = session.get(model, identity)
        if instance is None:
            session.add(model(**row))
        else:
            for column in update_columns:
                setattr(instance, column, row[column])
    session.flush()


def _mysql_upsert(
    table: Table,
    rows: Sequence[dict[str, Any]],
    key_columns: Sequence[str],
    update_columns: Sequence[str],
):
    stmt = mysql.insert(table).values(list(rows))
    # ON DUPLICATE KEY needs one assignment; a key column set to itself changes nothing.
    targets = update_columns or key_columns[:1]
    return stmt.on_duplicate_key_update({column: stmt.inserted[column] for column in targets})


def _upsert(
    session: Session,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    key_columns: Sequence[str],
    update_columns: Sequence[str] = (),
) -> int:
    """Insert *rows*, updating *update_columns* when the key already exists.

    With no update columns an existing row is left untouched.
    """

    if not rows:
        return 0

    table: Table = model.__table__  # type: ignore[assignment]
    dialect = session.get_bind().dialect.name

    if dialect in {"sqlite", "postgresql"}:
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        for chunk in _chunks(rows):
            stmt = insert(table).values(list(chunk))
            if update_columns:
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(key_columns),
                    set_={column: stmt.excluded[column] for column in update_columns},
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(key_columns))
            session.execute(stmt)
    elif dialect in {"mysql", "mariadb"}:
        for chunk in _chunks(rows):
            session.execute(_mysql_upsert(table, chunk, key_columns, update_columns))
    else:
        _merge_rows(session, model, rows, update_columns)
    return len(rows)


def upsert_categories(session: Session, records: Iterable[CategoryRecord]) -> int:
    """Upsert categories by id; an existing row keeps its parent link."""

    rows = [record.as_row() for record in records]
    return _upsert(session, Category, rows, ("id",), CATEGORY_UPDATE_COLUMNS)


def upsert_products(session: Session, records: Iterable[ProductRecord]) -> int:
    """Upsert products keyed on (spu_id, store_id), refreshing every mutable field."""

    rows = [record.as_row() for record in records]
    return _upsert(session, Product, rows, ("spu_id", "store_id"), PRODUCT_UPDATE_COLUMNS)


def upsert_mappings(session: Session, mappings: Iterable[ProductCategoryMapping]) -> int:
    """Insert product/category links that are not stored yet."""

    rows = [mapping.as_row() for mapping in mappings]
    return _upsert(session, ProductCategoryMap, rows, ("product_spu_id", "category_id"))


def existing_category_ids(session: Session, ids: Iterable[str]) -> set[str]:
    """Return the subset of *ids* that are persisted categories."""

    wanted = sorted({category_id for category_id in ids if category_id})
    found: set[str] = set()
    for start in range(0, len(wanted), UPSERT_CHUNK_SIZE):
        batch = wanted[start : start + UPSERT_CHUNK_SIZE]
        found.update(session.scalars(select(Category.id).where(Category.id.in_(batch))))
    return found


class SqlCategoryLookup:
    """Parent lookup against the persisted category table."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._cache: dict[str, str | None] = {}

    def get_parent_id(self, category_id: str) -> str | None:
        if category_id in self._cache:
            return self._cache[category_id]
        row = self._session.execute(
            select(Category.parent_id).where(Category.id == category_id)
        ).one_or_none()
        if row is None:
            raise CategoryNotFound(category_id)
        self._cache[category_id] = row.parent_id
        return row.parent_id


def _category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "parent_id": category.parent_id,
        "name": category.name,
        "level": category.level,
        "image_url": category.image_url,
        "sort_order": category.sort_order,
    }


def _product_to_dict(product: Product) -> dict[str, Any]:
    return {
        "spu_id": product.spu_id,
        "store_id": product.store_id,
        "title": product.title,
        "sub_title": product.sub_title,
        "image_url": product.image_url,
        "price": product.price,
        "stock_quantity": product.stock_quantity,
        "is_available": product.is_available,
        "is_import": product.is_import,
    }


def get_all_categories(session: Session) -> list[dict[str, Any]]:
    stmt = select(Category).order_by(Category.level, Category.sort_order, Category.id)
    return [_category_to_dict(row) for row in session.scalars(stmt)]


def get_categories_by_level(session: Session, level: int) -> list[dict[str, Any]]:
    stmt = (
        select(Category)
        .where(Category.level == level)
        .order_by(Category.sort_order, Category.id)
    )
    return [_category_to_dict(row) for row in session.scalars(stmt)]


def get_subcategories(session: Session, parent_id: str) -> list[dict[str, Any]]:
    stmt = (
        select(Category)
        .where(Category.parent_id == parent_id)
        .order_by(Category.sort_order, Category.id)
    )
    return [_category_to_dict(row) for row in session.scalars(stmt)]


def get_category_tree(session: Session) -> list[dict[str, Any]]:
    """Return the category hierarchy as nested dicts, roots first.

    Categories whose parent is not stored are left out of the tree.
    """

    nodes: dict[str, dict[str, Any]] = {}
    categories = get_all_categories(session)
    for category in categories:
        nodes[category["id"]] = {**category, "children": []}

    tree: list[dict[str, Any]] = []
    for category in categories:
        node = nodes[category["id"]]
        if category["parent_id"] is None:
            tree.append(node)
        else:
            parent = nodes.get(category["parent_id"])
            if parent is not None:
                parent["children"].append(node)
    return tree


def get_product_category_ids(session: Session, spu_id: str) -> list[str]:
    stmt = (
        select(ProductCategoryMap.category_id)
        .where(ProductCategoryMap.product_spu_id == spu_id)
        .order_by(ProductCategoryMap.category_id)
    )
    return list(session.scalars(stmt))


def get_all_mappings(session: Session) -> list[ProductCategoryMapping]:
    stmt = select(ProductCategoryMap).order_by(
        ProductCategoryMap.product_spu_id, ProductCategoryMap.category_id
    )
    return [
        ProductCategoryMapping(row.product_spu_id, row.category_id)
        for row in session.scalars(stmt)
    ]


def list_products(
    session: Session,
    *,
    category_id: str | None = None,
    search: str | None = None,
    is_available: bool | None = None,
    is_import: bool | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    sort_by: str = "spu_id",
    sort_order: str = "asc",
    page: int = 1,
    page_size: int = 10,
) -> dict[str, Any]:
    """Return one page of products with the total count of matches."""

    stmt = select(Product)
    if category_id:
        stmt = stmt.join(
            ProductCategoryMap, ProductCategoryMap.product_spu_id == Product.spu_id
        ).where(ProductCategoryMap.category_id == category_id)
    if search:
        stmt = stmt.where(Product.title.like(f"%{search}%"))
    if is_available is not None:
        stmt = stmt.where(Product.is_available.is_(is_available))
    if is_import is not None:
        stmt = stmt.where(Product.is_import.is_(is_import))
    price_value = cast(Product.price, Numeric(12, 2))
    if min_price is not None:
        stmt = stmt.where(price_value >= min_price)
    if max_price is not None:
        stmt = stmt.where(price_value <= max_price)

    total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)

    sort_column = PRODUCT_SORT_COLUMNS.get(sort_by, Product.spu_id)
    ordering = sort_column.desc() if sort_order == "desc" else sort_column.asc()
    page = max(1, page)
    page_size = max(1, page_size)
    stmt = (
        stmt.order_by(ordering, Product.store_id)
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    return {
        "data": [_product_to_dict(row) for row in session.scalars(stmt)],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def count_rows(session: Session) -> dict[str, int]:
    return {
        "categories": int(session.scalar(select(func.count()).select_from(Category)) or 0),
        "products": int(session.scalar(select(func.count()).select_from(Product)) or 0),
        "mappings": int(
            session.scalar(select(func.count()).select_from(ProductCategoryMap)) or 0
        ),
    }
