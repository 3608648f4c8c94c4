"""Category discovery from home-portal and query-children capture entries."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from catalog_ingest.capture import (
    CaptureEntry,
    as_list,
    dig,
    find_module_by_type,
    first_query_param,
    parse_json_text,
    text_or_none,
)
from catalog_ingest.config import CapturePatterns
from catalog_ingest.errors import EntryParseError
from catalog_ingest.extractors.base import ExtractionStats, FirstWins
from catalog_ingest.logging_config import get_logger
from catalog_ingest.models import CategoryRecord
from catalog_ingest.normalizers import coerce_int, normalize_id

LOGGER = get_logger(__name__)


def flatten_categories(
    nodes: Sequence[Any],
    parent_id: str | None,
    sort_offset: int = 0,
    *,
    parent_level: int = 0,
    stats: ExtractionStats | None = None,
) -> list[CategoryRecord]:
    """Flatten a nested category list in depth-first pre-order.

    Each node's sort order is its index among its siblings, shifted by
    *sort_offset* for the top list only. Nodes without an id are dropped
    together with their subtree. A missing or non-positive level falls back
    to one below the parent.
    """

    results: list[CategoryRecord] = []
    stack = [(iter(enumerate(as_list(nodes))), parent_id, sort_offset, parent_level)]
    while stack:
        siblings, current_parent, offset, current_level = stack[-1]
        step = next(siblings, None)
        if step is None:
            stack.pop()
            continue

        index, node = step
        if not isinstance(node, dict):
            continue
        node_id = normalize_id(node.get("groupingId"))
        if node_id is None:
            LOGGER.debug("Dropping category node without id under parent %s", current_parent)
            if stats is not None:
                stats.drop("category_missing_id")
            continue

        level = coerce_int(node.get("level"))
        if level is None or level <= 0:
            level = current_level + 1

        results.append(
            CategoryRecord(
                id=node_id,
                parent_id=current_parent,
                name=text_or_none(node.get("title")) or "",
                level=level,
                image_url=text_or_none(node.get("image")),
                sort_order=offset + index,
            )
        )

        children = as_list(node.get("children"))
        if children:
            stack.append((iter(enumerate(children)), node_id, 0, level))
    return results


def _top_level_categories(
    entry: CaptureEntry,
    patterns: CapturePatterns,
    stats: ExtractionStats,
) -> list[CategoryRecord]:
    payload = parse_json_text(entry.response_body, url=entry.url)
    module = find_module_by_type(as_list(dig(payload, "data", "moduleList")), patterns.navigation_module)
    if module is None:
        stats.skip("navigation_module_missing")
        LOGGER.warning("Home portal entry has no '%s' module: %s", patterns.navigation_module, entry.url)
        return []

    content = module.get("moduleContent")
    if isinstance(content, str):
        content = parse_json_text(content, url=entry.url)

    records: list[CategoryRecord] = []
    for index, item in enumerate(as_list(dig(content, "data"))):
        if not isinstance(item, dict):
            continue
        category_id = first_query_param(item.get("jumpLink"), patterns.category_param)
        if category_id is None:
            stats.drop("category_missing_id")
            LOGGER.debug("Navigation item %r has no %s parameter", item.get("title"), patterns.category_param)
            continue
        records.append(
            CategoryRecord(
                id=category_id,
                parent_id=None,
                name=text_or_none(item.get("title")) or "",
                level=1,
                image_url=text_or_none(item.get("picUrl")),
                sort_order=index,
            )
        )
    return records


def _child_categories(
    entry: CaptureEntry,
    patterns: CapturePatterns,
    stats: ExtractionStats,
    known_levels: dict[str, int],
) -> list[CategoryRecord]:
    if entry.request_body is None:
        stats.skip("request_body_missing")
        return []
    request = parse_json_text(entry.request_body, url=entry.url)
    parent_id = normalize_id(dig(request, patterns.parent_field))
    if parent_id is None:
        stats.skip("parent_id_missing")
        LOGGER.warning("Children query without %s in request body: %s", patterns.parent_field, entry.url)
        return []

    payload = parse_json_text(entry.response_body, url=entry.url)
    children = as_list(dig(payload, "data"))
    return flatten_categories(
        children,
        parent_id,
        parent_level=known_levels.get(parent_id, 0),
        stats=stats,
    )


def extract_categories(
    entries: Iterable[CaptureEntry],
    patterns: CapturePatterns | None = None,
    stats: ExtractionStats | None = None,
) -> list[CategoryRecord]:
    """Collect every category discoverable in *entries*.

    The home portal entry is processed first, then each children query in
    capture order. When an id appears more than once the first record is
    kept. An entry whose JSON cannot be parsed contributes nothing and the
    scan continues.
    """

    patterns = patterns or CapturePatterns()
    stats = stats if stats is not None else ExtractionStats()
    entries = list(entries)
    collected: FirstWins[str, CategoryRecord] = FirstWins(lambda record: record.id)
    known_levels: dict[str, int] = {}

    def _merge(records: list[CategoryRecord]) -> None:
        for record in records:
            if collected.add(record):
                known_levels[record.id] = record.level
            else:
                stats.duplicates += 1

    home_entry = next(
        (entry for entry in entries if entry.matches(patterns.home_portal) and entry.response_body),
        None,
    )
    if home_entry is not None:
        stats.processed += 1
        try:
            _merge(_top_level_categories(home_entry, patterns, stats))
        except EntryParseError as exc:
            stats.skip("invalid_json")
            LOGGER.warning("Skipping home portal entry: %s", exc)

    for entry in entries:
        if not entry.matches(patterns.query_children):
            continue
        stats.processed += 1
        if not entry.response_body:
            stats.skip("response_body_missing")
            continue
        try:
            _merge(_child_categories(entry, patterns, stats, known_levels))
        except EntryParseError as exc:
            stats.skip("invalid_json")
            LOGGER.warning("Skipping children query entry: %s", exc)

    LOGGER.info(
        "Extracted %d categories | entries=%d | skipped=%d | duplicates=%d",
        len(collected),
        stats.processed,
        stats.skipped,
        stats.duplicates,
    )
    return collected.to_list()


def drop_dangling_parents(
    records: Sequence[CategoryRecord],
    known_ids: Iterable[str] = (),
) -> tuple[list[CategoryRecord], list[CategoryRecord]]:
    """Split *records* into those whose parent chain resolves and those that do not.

    A parent resolves when it is in *known_ids* (already persisted) or is
    itself a retained record. Input order is preserved in both lists.
    """

    resolved = set(known_ids)
    pending = list(records)
    retained_ids: set[str] = set()
    changed = True
    while changed:
        changed = False
        for record in pending:
            if record.id in retained_ids:
                continue
            if record.parent_id is None or record.parent_id in resolved:
                retained_ids.add(record.id)
                resolved.add(record.id)
                changed = True

    retained = [record for record in records if record.id in retained_ids]
    dangling = [record for record in records if record.id not in retained_ids]
    for record in dangling:
        LOGGER.warning("Dropping category %s: parent %s is unknown", record.id, record.parent_id)
    return retained, dangling


__all__ = ["drop_dangling_parents", "extract_categories", "flatten_categories"]
