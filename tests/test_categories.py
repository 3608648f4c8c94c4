from __future__ import annotations

import json

from catalog_ingest.capture import read_capture
from catalog_ingest.config import CapturePatterns
from catalog_ingest.extractors import (
    ExtractionStats,
    drop_dangling_parents,
    extract_categories,
    flatten_categories,
)
from catalog_ingest.models import CategoryRecord


def _tree(har):
    return [
        har.node("11", "Apples", 2, [har.node("111", "Gala", 3), har.node("112", "Fuji", 3)]),
        har.node("12", "Pears", 2, [har.node("121", "Nashi", 3)]),
    ]


def test_flatten_is_preorder_with_sibling_sort_order(har) -> None:
    records = flatten_categories(_tree(har), "1", 5)

    assert [record.id for record in records] == ["11", "111", "112", "12", "121"]
    by_id = {record.id: record for record in records}
    assert by_id["11"].parent_id == "1"
    assert by_id["111"].parent_id == "11"
    assert by_id["121"].parent_id == "12"
    # Offset applies to the top list only; children restart at zero.
    assert [by_id["11"].sort_order, by_id["12"].sort_order] == [5, 6]
    assert [by_id["111"].sort_order, by_id["112"].sort_order] == [0, 1]
    assert by_id["121"].sort_order == 0
    assert by_id["112"].level == 3


def test_flatten_skips_nodes_without_id_and_their_subtree(har) -> None:
    nodes = [
        har.node("", "Broken", 2, [har.node("999", "Orphan", 3)]),
        har.node("12", "Pears", 2),
    ]
    stats = ExtractionStats()

    records = flatten_categories(nodes, "1", stats=stats)

    assert [(record.id, record.sort_order) for record in records] == [("12", 1)]
    assert stats.reasons["category_missing_id"] == 1


def test_flatten_fills_missing_level_from_parent(har) -> None:
    nodes = [{"groupingId": "11", "title": "Apples", "children": [{"groupingId": "111", "title": "Gala"}]}]

    records = flatten_categories(nodes, "1", parent_level=1)

    assert [(record.id, record.level) for record in records] == [("11", 2), ("111", 3)]


def test_flatten_handles_deep_trees_without_recursion(har) -> None:
    node = har.node("d0", "Depth 0", 1)
    root = node
    for depth in range(1, 3000):
        child = har.node(f"d{depth}", f"Depth {depth}", depth + 1)
        node["children"] = [child]
        node = child

    records = flatten_categories([root], None)

    assert len(records) == 3000
    assert records[-1].parent_id == "d2998"


def test_extract_categories_covers_all_levels(har) -> None:
    entries = read_capture(
        har.document(
            [
                har.home([("1", "Fruit"), (None, "Promo"), ("2", "Dairy")]),
                har.children("1", _tree(har)),
                har.children("2", [har.node("21", "Milk", 2)]),
            ]
        )
    )

    records = extract_categories(entries)

    assert [record.id for record in records] == ["1", "2", "11", "111", "112", "12", "121", "21"]
    assert records[0] == CategoryRecord(
        id="1",
        parent_id=None,
        name="Fruit",
        level=1,
        image_url="https://img.example/Fruit.png",
        sort_order=0,
    )
    # The navigation item without a category id keeps its slot in the ordering.
    assert records[1].sort_order == 2
    assert records[-1].parent_id == "2"


def test_first_occurrence_wins_in_scan_order(har) -> None:
    stats = ExtractionStats()
    entries = read_capture(
        har.document(
            [
                har.children("1", [har.node("100", "From first query", 2)]),
                har.children("2", [har.node("100", "From second query", 2)]),
                har.home([("100", "From home portal")]),
            ]
        )
    )

    records = extract_categories(entries, stats=stats)

    assert len(records) == 1
    # The home portal is processed before any children query regardless of capture order.
    assert records[0].name == "From home portal"
    assert records[0].parent_id is None
    assert stats.duplicates == 2


def test_first_children_query_wins_without_home_portal(har) -> None:
    entries = read_capture(
        har.document(
            [
                har.children("1", [har.node("100", "Earlier", 2)]),
                har.children("2", [har.node("100", "Later", 2)]),
            ]
        )
    )

    records = extract_categories(entries)

    assert [(record.id, record.name, record.parent_id) for record in records] == [("100", "Earlier", "1")]


def test_bad_entry_is_skipped_and_scan_continues(har) -> None:
    stats = ExtractionStats()
    entries = read_capture(
        har.document(
            [
                har.home([("1", "Fruit")]),
                har.entry(
                    "https://x.example/goods-portal/grouping/queryChildren",
                    request={"groupingId": "1"},
                    response_text="{truncated",
                ),
                har.entry("https://x.example/goods-portal/grouping/queryChildren", response={"data": []}),
                har.children("1", [har.node("12", "Pears", 2)]),
            ]
        )
    )

    records = extract_categories(entries, stats=stats)

    assert [record.id for record in records] == ["1", "12"]
    assert stats.skipped == 2
    assert stats.reasons["invalid_json"] == 1
    assert stats.reasons["request_body_missing"] == 1


def test_deeply_nested_body_is_skipped_and_scan_continues(har) -> None:
    stats = ExtractionStats()
    entries = read_capture(
        har.document(
            [
                har.home([("1", "Fruit")]),
                har.entry(
                    "https://x.example/goods-portal/grouping/queryChildren",
                    request={"groupingId": "1"},
                    response_text="[" * 100_000 + "]" * 100_000,
                ),
                har.children("1", [har.node("12", "Pears", 2)]),
            ]
        )
    )

    records = extract_categories(entries, stats=stats)

    assert [record.id for record in records] == ["1", "12"]
    assert stats.reasons["invalid_json"] == 1


def test_no_category_traffic_yields_empty_list(har) -> None:
    entries = read_capture(har.document([har.listing(["1"], [har.product("P1", "S1")])]))

    assert extract_categories(entries) == []


def test_navigation_item_with_blank_first_category_id_is_skipped(har) -> None:
    nav = [
        {"title": "Blank", "jumpLink": "sams://page/category?firstCategoryId=&firstCategoryId=5"},
        {"title": "Fruit", "jumpLink": "sams://page/category?firstCategoryId=1"},
    ]
    payload = {"data": {"moduleList": [{"moduleType": "kingkong", "moduleContent": json.dumps({"data": nav})}]}}
    entry = har.entry("https://x.example/home/portal/v3/get", response=payload)
    stats = ExtractionStats()

    records = extract_categories(read_capture(har.document([entry])), stats=stats)

    assert [(record.id, record.sort_order) for record in records] == [("1", 1)]
    assert stats.reasons["category_missing_id"] == 1


def test_missing_navigation_module_is_not_an_error(har) -> None:
    entry = har.entry(
        "https://x.example/home/portal/v3/get",
        response={"data": {"moduleList": [{"moduleType": "banner"}]}},
    )
    stats = ExtractionStats()

    assert extract_categories(read_capture(har.document([entry])), stats=stats) == []
    assert stats.reasons["navigation_module_missing"] == 1


def test_custom_patterns_are_honoured(har) -> None:
    entry = har.entry(
        "https://x.example/v2/tree/children",
        request={"nodeId": "7"},
        response={"data": [har.node("70", "Snacks", 2)]},
    )
    patterns = CapturePatterns(query_children="/v2/tree/children", parent_field="nodeId")

    records = extract_categories(read_capture(har.document([entry])), patterns)

    assert [(record.id, record.parent_id) for record in records] == [("70", "7")]


def test_drop_dangling_parents_is_transitive() -> None:
    records = [
        CategoryRecord(id="111", parent_id="11", name="Gala", level=3),
        CategoryRecord(id="11", parent_id="1", name="Apples", level=2),
        CategoryRecord(id="1", parent_id=None, name="Fruit", level=1),
        CategoryRecord(id="91", parent_id="9", name="Lost", level=2),
        CategoryRecord(id="911", parent_id="91", name="Lost child", level=3),
        CategoryRecord(id="51", parent_id="5", name="Known parent", level=2),
    ]

    retained, dangling = drop_dangling_parents(records, known_ids={"5"})

    assert [record.id for record in retained] == ["111", "11", "1", "51"]
    assert [record.id for record in dangling] == ["91", "911"]
