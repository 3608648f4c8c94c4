"""FastAPI surface over the ingestion pipeline and the stored catalog."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Callable, Iterable

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from catalog_ingest.cancel import CancelToken
from catalog_ingest.capture import read_capture
from catalog_ingest.config import as_bool, deadline_from_config, load_config, patterns_from_config
from catalog_ingest.errors import CaptureFormatError, IngestCancelled, PersistenceError
from catalog_ingest.extractors import extract_categories, extract_products
from catalog_ingest.logging_config import get_logger
from catalog_ingest.pipeline import IngestOptions, ingest
from catalog_ingest.storage import repo
from catalog_ingest.storage.db import get_engine, init_db, make_session

LOGGER = get_logger(__name__)

DB_BUSY_TIMEOUT = float(os.getenv("DB_BUSY_TIMEOUT", "30"))

app = FastAPI(title="Catalog Ingestion API")


class IngestResponse(BaseModel):
    categories_discovered: int
    categories_persisted: int
    products_discovered: int
    direct_mappings: int
    inferred_mappings: int
    mappings_computed: int
    committed: bool
    diagnostics: dict[str, Any] = Field(default_factory=dict)


@lru_cache(maxsize=1)
def get_config() -> dict[str, Any]:
    return load_config()


@lru_cache(maxsize=1)
def get_session_factory() -> Callable[[], Session]:
    """Build the engine lazily so importing the module does not open a database."""

    database = get_config().get("database") or {}
    engine = get_engine(database["url"], busy_timeout=database.get("busy_timeout", DB_BUSY_TIMEOUT))
    init_db(engine)
    return make_session(engine)


def get_session(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> Iterable[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _flag(value: bool | None, configured: Any) -> bool:
    """Query flag when given, otherwise the configured value (default true)."""

    return value if value is not None else as_bool(configured, True)


@app.exception_handler(CaptureFormatError)
async def capture_format_handler(request: Request, exc: CaptureFormatError) -> JSONResponse:
    return JSONResponse({"success": False, "error": f"Invalid capture: {exc}"}, status_code=400)


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    LOGGER.error("Ingestion request failed during persistence: %s", exc)
    return JSONResponse(
        {"success": False, "error": "Catalog write failed and was rolled back"},
        status_code=500,
    )


@app.exception_handler(IngestCancelled)
async def cancelled_handler(request: Request, exc: IngestCancelled) -> JSONResponse:
    return JSONResponse({"success": False, "error": str(exc)}, status_code=504)


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/stats")
def stats(session: Session = Depends(get_session)) -> dict[str, int]:
    return repo.count_rows(session)


@app.post("/ingest", response_model=IngestResponse)
async def ingest_capture(
    request: Request,
    infer_context: bool | None = Query(None),
    persist_categories: bool | None = Query(None),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> dict[str, Any]:
    body = await request.body()
    config = get_config()
    ingest_conf = config.get("ingest") or {}
    options = IngestOptions(
        infer_context=_flag(infer_context, ingest_conf.get("infer_context")),
        persist_categories=_flag(persist_categories, ingest_conf.get("persist_categories")),
        patterns=patterns_from_config(config),
    )
    token = CancelToken.with_timeout(deadline_from_config(config))
    result = await run_in_threadpool(ingest, body, session_factory, options, token=token)
    return result.as_dict()


@app.post("/parse/products")
async def parse_products(
    request: Request, infer_context: bool | None = Query(None)
) -> list[dict[str, Any]]:
    body = await request.body()
    config = get_config()
    infer = _flag(infer_context, (config.get("ingest") or {}).get("infer_context"))

    def _parse() -> list[dict[str, Any]]:
        products = extract_products(
            read_capture(body), patterns_from_config(config), infer_context=infer
        )
        return [{**product.as_row(), "category_id": product.category_id} for product in products]

    return await run_in_threadpool(_parse)


@app.post("/parse/categories")
async def parse_categories(request: Request) -> list[dict[str, Any]]:
    body = await request.body()
    patterns = patterns_from_config(get_config())

    def _parse() -> list[dict[str, Any]]:
        return [record.as_row() for record in extract_categories(read_capture(body), patterns)]

    return await run_in_threadpool(_parse)


@app.get("/categories")
def categories(session: Session = Depends(get_session)) -> dict[str, Any]:
    return {"success": True, "data": repo.get_all_categories(session)}


@app.get("/categories/tree")
def category_tree(session: Session = Depends(get_session)) -> dict[str, Any]:
    return {"success": True, "data": repo.get_category_tree(session)}


@app.get("/categories/level/{level}")
def categories_by_level(level: int, session: Session = Depends(get_session)) -> dict[str, Any]:
    if level < 1 or level > 3:
        raise HTTPException(status_code=400, detail="level must be an integer between 1 and 3")
    return {"success": True, "data": repo.get_categories_by_level(session, level)}


@app.get("/categories/{parent_id}/children")
def category_children(parent_id: str, session: Session = Depends(get_session)) -> dict[str, Any]:
    return {"success": True, "data": repo.get_subcategories(session, parent_id)}


@app.get("/products")
def products(
    search: str | None = None,
    category_id: str | None = Query(None, alias="categoryId"),
    is_available: bool | None = Query(None, alias="isAvailable"),
    is_import: bool | None = Query(None, alias="isImport"),
    min_price: float | None = Query(None, alias="minPrice"),
    max_price: float | None = Query(None, alias="maxPrice"),
    sort_by: str = Query("spu_id", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=200, alias="pageSize"),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    return repo.list_products(
        session,
        category_id=category_id,
        search=search,
        is_available=is_available,
        is_import=is_import,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
