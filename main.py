"""
Table audit – Supabase table dump / data-quality scan

Flow:
  resolve_config (CLI + env + .env file)
    → discover_tables        (only when no --table/--tables given)
    → per table, in order:
        scan mode : PageFetcher → TableScan   (null / duplicate / PII)
        dump mode : PageFetcher → rows
    → RunReport → stdout (+ --out file)

Usage:
    python main.py --table members --null email,name --dup email --pii email,phone
    python main.py --out db-dump.json
"""

import logging
import sys
from typing import Sequence

from config import Connection, ScanConfig, resolve_config
from errors import AuditError, FetchError, NoTablesFoundError
from issue_scanner import TableScan
from page_fetcher import PageFetcher, get_client
from report import (
    RunReport,
    TableReport,
    assemble_dump_report,
    assemble_scan_report,
    write_report,
)
from schema_discovery import discover_tables

logger = logging.getLogger("table_audit")


def _setup_logging(verbose: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False


def resolve_tables(config: ScanConfig, connection: Connection) -> list[str]:
    if config.tables:
        return list(config.tables)
    tables = discover_tables(connection)
    if not tables:
        raise NoTablesFoundError(
            "No tables discovered. Check your key/permissions and that "
            "tables exist in the exposed schema."
        )
    return tables


def _fetcher(client, table: str, config: ScanConfig) -> PageFetcher:
    return PageFetcher(
        client,
        table,
        columns=config.columns,
        page_size=config.page_size,
        max_rows=config.max_rows,
    )


def run_scan(client, tables: Sequence[str], config: ScanConfig) -> RunReport:
    results: list[TableReport] = []
    for table in tables:
        logger.info("scanning '%s'…", table)
        scan = TableScan(table, config)
        try:
            scan.consume(_fetcher(client, table, config))
        except FetchError as e:
            if config.fail_fast:
                raise
            logger.warning("%s (continuing with remaining tables)", e)
            scan.report.error = str(e)
        results.append(scan.report)
    return assemble_scan_report(results)


def run_dump(client, tables: Sequence[str], config: ScanConfig) -> RunReport:
    dumped: dict[str, list] = {}
    errors: dict[str, str] = {}
    for table in tables:
        logger.info("dumping '%s'…", table)
        try:
            dumped[table] = _fetcher(client, table, config).fetch_all()
        except FetchError as e:
            if config.fail_fast:
                raise
            logger.warning("%s (continuing with remaining tables)", e)
            errors[table] = str(e)
    return assemble_dump_report(dumped, errors)


def run(config: ScanConfig, connection: Connection, client=None) -> RunReport:
    tables = resolve_tables(config, connection)
    client = client or get_client(connection)
    if config.scan_mode:
        return run_scan(client, tables, config)
    return run_dump(client, tables, config)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        config, connection = resolve_config(argv)
        _setup_logging(config.verbose)
        report = run(config, connection)
        write_report(report, config.out)
    except AuditError as e:
        print(e, file=sys.stderr)
        return 1
    except Exception as e:
        # Last-resort CLI boundary: one line on stderr, never a traceback.
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
