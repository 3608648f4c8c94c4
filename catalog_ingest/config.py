"""Configuration loading for the ingestion CLI and HTTP surface."""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from catalog_ingest.logging_config import get_logger

LOGGER = get_logger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yml"
CONFIG_PATH_ENV = "CATALOG_CONFIG"


@dataclass(frozen=True)
class CapturePatterns:
    """Endpoint fragments and field names of the captured storefront."""

    home_portal: str = "/home/portal/v3/get"
    query_children: str = "/goods-portal/grouping/queryChildren"
    product_list: str = "/goods-portal/grouping/list"
    navigation_module: str = "kingkong"
    category_param: str = "firstCategoryId"
    parent_field: str = "groupingId"
    context_field: str = "frontCategoryIds"
    sale_price_type: int = 1


DEFAULT_CONFIG: dict[str, Any] = {
    "database": {
        "url": "sqlite:///catalog.sqlite",
        "busy_timeout": 30.0,
    },
    "ingest": {
        "infer_context": True,
        "persist_categories": True,
        "deadline_seconds": None,
    },
    "patterns": {
        "home_portal": CapturePatterns.home_portal,
        "query_children": CapturePatterns.query_children,
        "product_list": CapturePatterns.product_list,
        "navigation_module": CapturePatterns.navigation_module,
        "category_param": CapturePatterns.category_param,
        "parent_field": CapturePatterns.parent_field,
        "context_field": CapturePatterns.context_field,
        "sale_price_type": CapturePatterns.sale_price_type,
    },
    "api": {"host": "127.0.0.1", "port": 8000},
}


def as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in _FALSE_VALUES


def deep_merge(default: Any, override: Any) -> Any:
    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load YAML configuration merged over :data:`DEFAULT_CONFIG`.

    Without *path* the file named by ``CATALOG_CONFIG`` is used, falling back
    to the bundled ``config.yml``. ``CATALOG_DB_URL`` in the environment
    overrides ``database.url``.
    """

    if path is None:
        env_path = os.getenv(CONFIG_PATH_ENV)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise RuntimeError(f"Configuration file {path} must contain a mapping")
    else:
        LOGGER.warning("Configuration file %s not found; using defaults", path)
        data = {}

    merged = deep_merge(DEFAULT_CONFIG, data) if data else deepcopy(DEFAULT_CONFIG)

    env_url = os.getenv("CATALOG_DB_URL")
    if env_url:
        merged["database"]["url"] = env_url
    return merged


def patterns_from_config(config: dict[str, Any]) -> CapturePatterns:
    raw = config.get("patterns") or {}
    defaults = CapturePatterns()
    try:
        sale_price_type = int(raw.get("sale_price_type", defaults.sale_price_type))
    except (TypeError, ValueError):
        LOGGER.warning("patterns.sale_price_type must be an integer; using default")
        sale_price_type = defaults.sale_price_type
    return CapturePatterns(
        home_portal=str(raw.get("home_portal") or defaults.home_portal),
        query_children=str(raw.get("query_children") or defaults.query_children),
        product_list=str(raw.get("product_list") or defaults.product_list),
        navigation_module=str(raw.get("navigation_module") or defaults.navigation_module),
        category_param=str(raw.get("category_param") or defaults.category_param),
        parent_field=str(raw.get("parent_field") or defaults.parent_field),
        context_field=str(raw.get("context_field") or defaults.context_field),
        sale_price_type=sale_price_type,
    )


def deadline_from_config(config: dict[str, Any]) -> float | None:
    value = (config.get("ingest") or {}).get("deadline_seconds")
    if value in (None, ""):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        LOGGER.warning("ingest.deadline_seconds must be numeric; ignoring %r", value)
        return None
    return seconds if seconds > 0 else None
