"""ezlens: import proxy access logs into DuckDB and serve dashboard queries."""

import glob
import logging
import os
import sys
from argparse import ArgumentParser

from ezlens.config import ImportSettings, load_config
from ezlens.importer import BatchImporter, SourceIOError
from ezlens.models import ImportSummary
from ezlens.queries import QueryEngine
from ezlens.store import SchemaStore, StorageFault
from ezlens.web import create_app

logger = logging.getLogger("ezlens")


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="ezlens",
        description="Proxy access log -> DuckDB -> dashboard API",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file (default: $EZLENS_CONFIG or ./config.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import log files into the store")
    imp.add_argument(
        "paths",
        nargs="+",
        help="Log file(s), glob pattern(s) or directories of *.log files",
    )
    imp.add_argument("--db", default=None, help="DuckDB database file")
    imp.add_argument("--batch-size", type=int, default=None, help="Records per bulk append")

    serve = sub.add_parser("serve", help="Run the dashboard API server")
    serve.add_argument("--db", default=None, help="DuckDB database file")
    serve.add_argument("--host", default=None, help="Bind host")
    serve.add_argument("--port", type=int, default=None, help="Bind port")
    return parser


def expand_paths(raw_paths: list[str]) -> list[str]:
    """Expand globs and directories, preserving order and dropping duplicates.

    Missing plain paths are kept so the importer reports them per file.
    """
    expanded = []
    seen = set()

    for raw in raw_paths:
        if os.path.isdir(raw):
            matches = sorted(glob.glob(os.path.join(raw, "*.log")))
        elif any(c in raw for c in ("*", "?", "[")):
            matches = sorted(glob.glob(raw))
        else:
            matches = [raw]
        for m in matches:
            if m not in seen:
                seen.add(m)
                expanded.append(m)

    return expanded


def run_import(store: SchemaStore, paths: list[str], settings: ImportSettings) -> int:
    """Import *paths* one after another. Returns the process exit code."""
    importer = BatchImporter.from_settings(store, settings)
    total = ImportSummary(max_failure_samples=settings.max_failure_samples)
    exit_code = 0

    if not paths:
        print("No log files found matching the given paths", file=sys.stderr)
        return 1

    for index, path in enumerate(paths, start=1):
        print(f"[{index}/{len(paths)}] Importing {path}")
        try:
            summary = importer.import_file(path)
        except SourceIOError as exc:
            logger.error("Skipping %s: %s", exc.path, exc)
            if exc.summary is not None:
                total = total.merge(exc.summary)
            exit_code = 1
            continue
        except StorageFault as fault:
            logger.error("Storage fault while importing %s: %s", path, fault)
            if fault.summary is not None:
                total = total.merge(fault.summary)
            exit_code = 1
            break

        print(f"  imported={summary.imported} failed={summary.failed}")
        total = total.merge(summary)

    print(
        f"Import complete: files={len(paths)} imported={total.imported} "
        f"failed={total.failed}"
    )
    for reason, count in sorted(total.failure_reasons.items()):
        print(f"  {reason:20s} {count}")
    return exit_code


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    log_level = (config.get("logging") or {}).get("level", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = None
    if args.command == "import":
        try:
            settings = ImportSettings.from_config(config)
            if args.batch_size is not None:
                settings = ImportSettings(
                    batch_size=args.batch_size,
                    progress_every=settings.progress_every,
                    max_failure_samples=settings.max_failure_samples,
                )
        except ValueError as exc:
            parser.error(str(exc))

    db_path = args.db or (config.get("storage") or {}).get("path", "ezlens.duckdb")
    try:
        store = SchemaStore(db_path)
    except StorageFault as fault:
        logger.error("%s", fault)
        return 1

    with store:
        try:
            store.ensure_schema()
        except StorageFault as fault:
            logger.error("%s", fault)
            return 1

        if args.command == "import":
            return run_import(store, expand_paths(args.paths), settings)

        server = config.get("server") or {}
        host = args.host or server.get("host", "127.0.0.1")
        port = args.port or server.get("port", 8080)
        app = create_app(QueryEngine(store))
        logger.info("Serving %s on http://%s:%d", db_path, host, port)
        app.run(host=host, port=port, debug=server.get("debug", False), threaded=True)
        return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
