"""Reader and defensive field accessors for HTTP Archive captures."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import parse_qs, urlparse

from catalog_ingest.errors import CaptureFormatError, EntryParseError
from catalog_ingest.logging_config import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class CaptureEntry:
    """One recorded request/response pair."""

    url: str
    request_body: str | None = None
    response_body: str | None = None

    def matches(self, pattern: str) -> bool:
        return bool(pattern) and pattern in self.url


def _decode_content(content: Any) -> str | None:
    if not isinstance(content, dict):
        return None
    text = content.get("text")
    if not isinstance(text, str) or not text:
        return None
    if str(content.get("encoding") or "").lower() == "base64":
        try:
            return base64.b64decode(text).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            LOGGER.debug("Undecodable base64 response body; keeping raw text")
            return text
    return text


def _entry_from_raw(raw: Any) -> CaptureEntry | None:
    if not isinstance(raw, dict):
        return None
    request = raw.get("request") if isinstance(raw.get("request"), dict) else {}
    response = raw.get("response") if isinstance(raw.get("response"), dict) else {}
    url = request.get("url")
    post_data = request.get("postData") if isinstance(request.get("postData"), dict) else {}
    request_body = post_data.get("text")
    return CaptureEntry(
        url=url if isinstance(url, str) else "",
        request_body=request_body if isinstance(request_body, str) and request_body else None,
        response_body=_decode_content(response.get("content")),
    )


def read_capture(data: bytes | str) -> list[CaptureEntry]:
    """Parse a capture document into its ordered entries.

    Raises :class:`CaptureFormatError` when the document is not JSON or has no
    ``log.entries`` list. Individual entries with missing pieces are kept with
    empty fields.
    """

    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CaptureFormatError(f"Capture is not valid UTF-8: {exc}") from exc

    try:
        document = json.loads(data)
    except (ValueError, RecursionError) as exc:
        raise CaptureFormatError(f"Capture is not valid JSON: {exc}") from exc

    log = document.get("log") if isinstance(document, dict) else None
    entries = log.get("entries") if isinstance(log, dict) else None
    if not isinstance(entries, list):
        raise CaptureFormatError("Capture is missing the log.entries list")

    parsed: list[CaptureEntry] = []
    for index, raw in enumerate(entries):
        entry = _entry_from_raw(raw)
        if entry is None:
            LOGGER.debug("Ignoring non-object capture entry at index %d", index)
            continue
        parsed.append(entry)
    LOGGER.debug("Read %d capture entries", len(parsed))
    return parsed


def parse_json_text(text: str | None, *, url: str = "") -> Any:
    """Decode an embedded JSON body, raising :class:`EntryParseError` on failure."""

    if text is None:
        raise EntryParseError(url, "body is empty")
    try:
        return json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise EntryParseError(url, str(exc)) from exc


def dig(value: Any, *path: str) -> Any:
    """Walk nested dictionaries, returning None as soon as a key is missing."""

    current = value
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def find_module_by_type(modules: Iterable[Any], module_type: str) -> dict[str, Any] | None:
    """Return the first module dict whose ``moduleType`` equals *module_type*."""

    for module in modules:
        if isinstance(module, dict) and module.get("moduleType") == module_type:
            return module
    return None


def first_query_param(link: Any, key: str) -> str | None:
    """Return the first value of *key* in the query string of *link*, None if it is blank."""

    if not isinstance(link, str) or "?" not in link:
        return None
    query = urlparse(link).query or link.split("?", 1)[1]
    values = parse_qs(query, keep_blank_values=True).get(key)
    if not values:
        return None
    return values[0] or None


def text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "CaptureEntry",
    "as_list",
    "dig",
    "find_module_by_type",
    "first_query_param",
    "parse_json_text",
    "read_capture",
    "text_or_none",
]
