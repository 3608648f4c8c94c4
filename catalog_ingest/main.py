"""Command-line interface entry point for catalog ingestion."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any, Iterable

import uvicorn
from dotenv import load_dotenv

from catalog_ingest.cancel import CancelToken
from catalog_ingest.config import (
    CONFIG_PATH_ENV,
    as_bool,
    deadline_from_config,
    load_config,
    patterns_from_config,
)
from catalog_ingest.errors import CaptureFormatError, IngestCancelled, PersistenceError
from catalog_ingest.logging_config import get_logger
from catalog_ingest.pipeline import IngestOptions, ingest
from catalog_ingest.storage import repo
from catalog_ingest.storage.db import get_engine, init_db_safe, make_session

LOGGER = get_logger(__name__)

EXIT_CAPTURE_FORMAT = 2
EXIT_PERSISTENCE = 3
EXIT_CANCELLED = 4


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        description="Ingest storefront HAR captures into the catalog database."
    )
    parser.add_argument(
        "--har",
        dest="hars",
        action="append",
        default=[],
        type=Path,
        help="HAR capture to ingest; repeat to ingest several in order.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: catalog_ingest/config.yml).",
    )
    parser.add_argument(
        "--no-context",
        action="store_true",
        help="Do not infer a product's category from its listing request.",
    )
    parser.add_argument(
        "--skip-categories",
        action="store_true",
        help="Do not write discovered categories before building the closure.",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Extract and build the closure without writing to the database.",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Abort an ingestion that runs longer than this many seconds.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print row counts of the catalog database and exit.",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start the HTTP API with uvicorn.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.deadline is not None and args.deadline <= 0:
        parser.error("--deadline must be a positive number of seconds")
    if not (args.hars or args.stats or args.serve):
        parser.error("nothing to do: pass --har, --stats or --serve")
    return args


def build_options(args: argparse.Namespace, config: dict[str, Any]) -> IngestOptions:
    ingest_conf = config.get("ingest") or {}
    return IngestOptions(
        infer_context=as_bool(ingest_conf.get("infer_context"), True) and not args.no_context,
        persist_categories=as_bool(ingest_conf.get("persist_categories"), True)
        and not args.skip_categories,
        dry_run=args.validate,
        patterns=patterns_from_config(config),
    )


def _serve(config: dict[str, Any], config_path: Path | None) -> None:
    if config_path is not None:
        os.environ[CONFIG_PATH_ENV] = str(config_path.resolve())
    from catalog_ingest import api

    # The app reads its settings lazily; drop anything cached from an earlier load.
    api.get_config.cache_clear()
    api.get_session_factory.cache_clear()

    api_conf = config.get("api") or {}
    uvicorn.run(
        "catalog_ingest.api:app",
        host=str(api_conf.get("host", "127.0.0.1")),
        port=int(api_conf.get("port", 8000)),
    )


def run(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    config = load_config(args.config)

    if args.serve:
        _serve(config, args.config)
        return 0

    session_factory = None
    if not args.validate or args.stats:
        database = config.get("database") or {}
        engine = get_engine(database["url"], busy_timeout=database.get("busy_timeout"))
        init_db_safe(engine)
        session_factory = make_session(engine)

    if args.stats:
        with session_factory() as session:
            print(json.dumps(repo.count_rows(session), indent=2))
        return 0

    options = build_options(args, config)
    deadline = args.deadline if args.deadline is not None else deadline_from_config(config)

    for har_path in args.hars:
        LOGGER.info("Ingesting %s | context=%s | validate=%s", har_path, options.infer_context, options.dry_run)
        try:
            capture = har_path.read_bytes()
        except OSError as exc:
            LOGGER.error("Cannot read capture %s: %s", har_path, exc)
            return EXIT_CAPTURE_FORMAT
        try:
            result = ingest(
                capture,
                None if options.dry_run else session_factory,
                options,
                token=CancelToken.with_timeout(deadline),
            )
        except CaptureFormatError as exc:
            LOGGER.error("Capture %s is not a readable HAR file: %s", har_path, exc)
            return EXIT_CAPTURE_FORMAT
        except PersistenceError as exc:
            LOGGER.error("Database write failed for %s; products and mappings were rolled back: %s", har_path, exc)
            return EXIT_PERSISTENCE
        except IngestCancelled as exc:
            LOGGER.error("Ingestion of %s stopped: %s", har_path, exc)
            return EXIT_CANCELLED
        print(json.dumps({"capture": str(har_path), **result.as_dict()}, indent=2))
    return 0


def main() -> None:
    try:
        raise SystemExit(run())
    except KeyboardInterrupt:  # pragma: no cover - interactive safety
        LOGGER.info("Interrupted by user")
        raise SystemExit(130)


if __name__ == "__main__":
    main()
