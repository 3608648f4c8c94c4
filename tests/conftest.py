from __future__ import annotations

import json
from typing import Any

import pytest
from sqlalchemy import create_engine

from catalog_ingest.storage.db import init_db, make_session

HOME_URL = "https://api.example-club.cn/api/v1/sams/home/portal/v3/get"
CHILDREN_URL = "https://api.example-club.cn/api/v1/sams/goods-portal/grouping/queryChildren"
LISTING_URL = "https://api.example-club.cn/api/v1/sams/goods-portal/grouping/list"


class Har:
    """Builders for HAR documents shaped like the captured storefront."""

    @staticmethod
    def entry(
        url: str,
        *,
        request: Any = None,
        response: Any = None,
        request_text: str | None = None,
        response_text: str | None = None,
    ) -> dict[str, Any]:
        raw_request: dict[str, Any] = {"method": "POST", "url": url}
        body = request_text if request_text is not None else (
            json.dumps(request) if request is not None else None
        )
        if body is not None:
            raw_request["postData"] = {"mimeType": "application/json", "text": body}
        content_text = response_text if response_text is not None else (
            json.dumps(response) if response is not None else None
        )
        content: dict[str, Any] = {"mimeType": "application/json"}
        if content_text is not None:
            content["text"] = content_text
        return {"request": raw_request, "response": {"status": 200, "content": content}}

    @staticmethod
    def home(items: list[tuple[str | None, str]]) -> dict[str, Any]:
        nav = []
        for category_id, title in items:
            link = "sams://page/category" + (f"?firstCategoryId={category_id}&tab=1" if category_id else "?tab=1")
            nav.append({"title": title, "jumpLink": link, "picUrl": f"https://img.example/{title}.png"})
        payload = {
            "data": {
                "moduleList": [
                    {"moduleType": "banner", "moduleContent": json.dumps({"data": []})},
                    {"moduleType": "kingkong", "moduleContent": json.dumps({"data": nav})},
                ]
            }
        }
        return Har.entry(HOME_URL, response=payload)

    @staticmethod
    def node(category_id: str | None, title: str, level: int, children: list | None = None) -> dict[str, Any]:
        return {"groupingId": category_id, "title": title, "level": level, "children": children or []}

    @staticmethod
    def children(parent_id: str, nodes: list[dict[str, Any]]) -> dict[str, Any]:
        return Har.entry(CHILDREN_URL, request={"groupingId": parent_id}, response={"data": nodes})

    @staticmethod
    def product(spu: str, store: str, *, title: str = "Item", price: str = "9.90", stock: int = 5) -> dict[str, Any]:
        return {
            "spuId": spu,
            "storeId": store,
            "title": title,
            "subTitle": f"{title} subtitle",
            "image": f"https://img.example/{spu}.jpg",
            "priceInfo": [{"priceType": 2, "price": "12.00"}, {"priceType": 1, "price": price}],
            "stockInfo": {"stockQuantity": stock},
            "isAvailable": True,
            "isImport": False,
        }

    @staticmethod
    def listing(category_ids: list[str] | None, products: list[dict[str, Any]]) -> dict[str, Any]:
        request = {"pageNum": 1} if category_ids is None else {"frontCategoryIds": category_ids}
        return Har.entry(LISTING_URL, request=request, response={"data": {"dataList": products}})

    @staticmethod
    def document(entries: list[dict[str, Any]]) -> bytes:
        return json.dumps({"log": {"version": "1.2", "entries": entries}}).encode("utf-8")


@pytest.fixture()
def har() -> type[Har]:
    return Har


@pytest.fixture()
def fruit_capture() -> bytes:
    return Har.document(
        [
            Har.home([("1", "Fruit")]),
            Har.children("1", [Har.node("11", "Apples", 2)]),
            Har.listing(["11"], [Har.product("P1", "S1", title="Gala Apples")]),
        ]
    )


@pytest.fixture()
def session_factory():
    engine = create_engine("sqlite:///:memory:", future=True)
    init_db(engine)
    try:
        yield make_session(engine)
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    with session_factory() as session:
        yield session
