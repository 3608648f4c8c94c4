from __future__ import annotations

import pytest
from sqlalchemy import select

from catalog_ingest.cancel import CancelToken
from catalog_ingest.errors import CaptureFormatError, IngestCancelled, PersistenceError
from catalog_ingest.models import ProductCategoryMapping
from catalog_ingest.pipeline import IngestOptions, ingest
from catalog_ingest.storage import repo
from catalog_ingest.storage.models_sql import Category, Product


def _snapshot(session_factory):
    with session_factory() as session:
        categories = sorted(
            (row.id, row.parent_id, row.name, row.level, row.sort_order)
            for row in session.scalars(select(Category))
        )
        products = sorted(
            (row.spu_id, row.store_id, row.title, row.price) for row in session.scalars(select(Product))
        )
        mappings = repo.get_all_mappings(session)
    return categories, products, mappings


def test_end_to_end_fruit_scenario(session_factory, fruit_capture) -> None:
    result = ingest(fruit_capture, session_factory)

    assert result.committed is True
    assert result.categories_discovered == 2
    assert result.products_discovered == 1
    assert result.direct_mappings == 1
    assert result.inferred_mappings == 1
    assert result.mappings_computed == 2

    categories, products, mappings = _snapshot(session_factory)
    assert categories == [("1", None, "Fruit", 1, 0), ("11", "1", "Apples", 2, 0)]
    assert products == [("P1", "S1", "Gala Apples", "9.90")]
    assert set(mappings) == {ProductCategoryMapping("P1", "11"), ProductCategoryMapping("P1", "1")}


def test_ingesting_twice_is_idempotent(session_factory, har) -> None:
    capture = har.document(
        [
            har.home([("1", "Fruit"), ("2", "Dairy")]),
            har.children("1", [har.node("11", "Apples", 2, [har.node("111", "Gala", 3)])]),
            har.children("2", [har.node("21", "Milk", 2)]),
            har.listing(["111"], [har.product("P1", "S1"), har.product("P1", "S2")]),
            har.listing(["21"], [har.product("P2", "S1")]),
        ]
    )

    first = ingest(capture, session_factory)
    once = _snapshot(session_factory)
    second = ingest(capture, session_factory)
    twice = _snapshot(session_factory)

    assert once == twice
    assert first.as_dict() == second.as_dict()
    assert len(once[2]) == 5


def test_closure_invariant_holds_in_store(session_factory, har) -> None:
    capture = har.document(
        [
            har.home([("1", "Fruit")]),
            har.children("1", [har.node("11", "Apples", 2, [har.node("111", "Gala", 3)])]),
            har.listing(["111"], [har.product("P1", "S1")]),
            har.listing(["11"], [har.product("P2", "S1")]),
        ]
    )

    ingest(capture, session_factory)

    with session_factory() as session:
        lookup = repo.SqlCategoryLookup(session)
        stored = set(repo.get_all_mappings(session))
        for spu_id, category_id in [("P1", "111"), ("P2", "11")]:
            ancestors = []
            current = category_id
            while (parent := lookup.get_parent_id(current)) is not None:
                ancestors.append(parent)
                current = parent
            for ancestor in ancestors:
                assert ProductCategoryMapping(spu_id, ancestor) in stored
    assert ProductCategoryMapping("P1", "1") in stored
    assert ProductCategoryMapping("P1", "11") in stored


def test_closure_uses_previously_persisted_tree(session_factory, har) -> None:
    ingest(har.document([har.home([("1", "Fruit")]), har.children("1", [har.node("11", "Apples", 2)])]), session_factory)

    result = ingest(har.document([har.listing(["11"], [har.product("P1", "S1")])]), session_factory)

    assert result.categories_discovered == 0
    assert result.mappings_computed == 2
    with session_factory() as session:
        assert repo.get_product_category_ids(session, "P1") == ["1", "11"]


def test_mapping_failure_rolls_back_products(session_factory, fruit_capture, monkeypatch) -> None:
    def _boom(session, mappings):
        raise RuntimeError("mapping table unavailable")

    monkeypatch.setattr(repo, "upsert_mappings", _boom)

    with pytest.raises(PersistenceError, match="mapping table unavailable"):
        ingest(fruit_capture, session_factory)

    with session_factory() as session:
        counts = repo.count_rows(session)
    assert counts["products"] == 0
    assert counts["mappings"] == 0


def test_rollback_preserves_previous_product_values(session_factory, har, monkeypatch) -> None:
    ingest(har.document([har.listing(["11"], [har.product("P1", "S1", price="5.00")])]), session_factory)

    monkeypatch.setattr(repo, "upsert_mappings", lambda session, mappings: 1 / 0)
    with pytest.raises(PersistenceError):
        ingest(har.document([har.listing(["11"], [har.product("P1", "S1", price="1.00")])]), session_factory)

    _, products, _ = _snapshot(session_factory)
    assert products == [("P1", "S1", "Item", "5.00")]


def test_malformed_capture_is_fatal(session_factory) -> None:
    with pytest.raises(CaptureFormatError):
        ingest(b"<html>not a har</html>", session_factory)

    with session_factory() as session:
        assert repo.count_rows(session) == {"categories": 0, "products": 0, "mappings": 0}


def test_empty_capture_commits_trivially(session_factory, har) -> None:
    result = ingest(har.document([]), session_factory)

    assert result.committed is True
    assert result.as_dict()["mappings_computed"] == 0


def test_dangling_children_are_not_persisted(session_factory, har) -> None:
    capture = har.document(
        [
            har.children("9", [har.node("91", "Lost", 2, [har.node("911", "Lost child", 3)])]),
            har.home([("1", "Fruit")]),
            har.children("1", [har.node("11", "Apples", 2)]),
        ]
    )

    result = ingest(capture, session_factory)

    assert result.categories_discovered == 4
    assert result.categories_persisted == 2
    categories, _, _ = _snapshot(session_factory)
    assert [row[0] for row in categories] == ["1", "11"]


def test_skipped_entries_surface_only_as_diagnostics(session_factory, har) -> None:
    capture = har.document(
        [
            har.home([("1", "Fruit")]),
            har.entry("https://x.example/goods-portal/grouping/queryChildren", request={"groupingId": "1"}, response_text="{"),
            har.listing(None, [har.product("P1", "S1")]),
            har.listing(["1"], [har.product("P2", "S1")]),
        ]
    )

    result = ingest(capture, session_factory)

    diagnostics = result.as_dict()["diagnostics"]
    assert result.committed is True
    assert diagnostics["skipped_entries"] == 2
    assert diagnostics["categories"]["reasons"] == {"invalid_json": 1}
    assert diagnostics["products"]["reasons"] == {"context_category_missing": 1}


def test_without_context_inference_no_mappings_are_written(session_factory, fruit_capture) -> None:
    result = ingest(fruit_capture, session_factory, IngestOptions(infer_context=False))

    assert result.products_discovered == 1
    assert result.mappings_computed == 0
    with session_factory() as session:
        assert repo.count_rows(session)["mappings"] == 0


def test_skip_category_persistence_still_builds_closure(session_factory, fruit_capture) -> None:
    result = ingest(fruit_capture, session_factory, IngestOptions(persist_categories=False))

    assert result.categories_persisted == 0
    assert result.mappings_computed == 2
    with session_factory() as session:
        assert repo.count_rows(session) == {"categories": 0, "products": 1, "mappings": 2}


def test_dry_run_writes_nothing(session_factory, fruit_capture) -> None:
    result = ingest(fruit_capture, None, IngestOptions(dry_run=True))

    assert result.committed is False
    assert result.mappings_computed == 2
    with session_factory() as session:
        assert repo.count_rows(session)["products"] == 0


def test_session_factory_required_for_writes(fruit_capture) -> None:
    with pytest.raises(ValueError):
        ingest(fruit_capture)


def test_expired_deadline_cancels_before_writing(session_factory, fruit_capture) -> None:
    token = CancelToken(deadline=0.0)

    with pytest.raises(IngestCancelled):
        ingest(fruit_capture, session_factory, token=token)

    with session_factory() as session:
        assert repo.count_rows(session) == {"categories": 0, "products": 0, "mappings": 0}
