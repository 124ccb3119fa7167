"""
Configuration for the table audit.

Merges command-line flags, the process environment and an optional
dotenv settings file into one immutable ScanConfig plus the Connection
used to reach Supabase.

Environment layers are plain mappings merged first-writer-wins: a value
already set in the process environment is never replaced by one read
from the settings file. Nothing is written back into os.environ.
"""

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from dotenv import dotenv_values

from errors import ConfigError

DEFAULT_PAGE_SIZE: int = 1000
DEFAULT_TIMEOUT: float = 30.0

PROJECT_DIR = Path(__file__).resolve().parent

# Settings files, first existing wins.
ENV_FILE_NAMES: tuple[str, ...] = (".env.local", ".env")

URL_ENV_VARS: tuple[str, ...] = ("SUPABASE_URL", "VITE_SUPABASE_URL")
KEY_ENV_VARS: tuple[str, ...] = (
    "SUPABASE_KEY",
    "SUPABASE_SERVICE_KEY",
    "VITE_SUPABASE_ANON_KEY",
)
TIMEOUT_ENV_VAR = "SUPABASE_TIMEOUT"


@dataclass(frozen=True)
class ScanConfig:
    tables:           tuple[str, ...] = ()
    columns:          tuple[str, ...] | None = None
    null_columns:     tuple[str, ...] = ()
    duplicate_column: str | None = None
    pii_columns:      tuple[str, ...] = ()
    page_size:        int = DEFAULT_PAGE_SIZE
    max_rows:         int | None = None
    out:              str | None = None
    fail_fast:        bool = False
    verbose:          bool = False

    def __post_init__(self):
        if self.page_size <= 0:
            raise ConfigError("Invalid --page-size")
        if self.max_rows is not None and self.max_rows <= 0:
            raise ConfigError("Invalid --max-rows")

    @property
    def scan_mode(self) -> bool:
        return bool(self.null_columns or self.duplicate_column or self.pii_columns)

    def to_meta(self) -> dict:
        """Echo of the scan settings, stored in every table report."""
        return {
            "pageSize":        self.page_size,
            "maxRows":         self.max_rows,
            "columns":         list(self.columns) if self.columns else None,
            "nullColumns":     list(self.null_columns),
            "duplicateColumn": self.duplicate_column,
            "piiColumns":      list(self.pii_columns),
        }


@dataclass(frozen=True)
class Connection:
    url:     str
    key:     str = field(repr=False)
    timeout: float = DEFAULT_TIMEOUT

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1/"


# ──────────────────────────────────────────────────────────────
# Environment layers
# ──────────────────────────────────────────────────────────────

def env_file_candidates(cwd: Path | None = None) -> list[Path]:
    base = cwd or Path.cwd()
    paths = [base / name for name in ENV_FILE_NAMES]
    paths += [PROJECT_DIR / name for name in ENV_FILE_NAMES]
    # Same directory twice when run from the project root.
    seen: set[Path] = set()
    unique = []
    for p in paths:
        if p not in seen:
            seen.add(p)
            unique.append(p)
    return unique


def load_env_file(candidates: Sequence[Path] | None = None) -> dict[str, str]:
    """
    Read the first settings file that exists.
    Missing files are skipped; keys declared without a value are dropped.
    """
    for path in candidates if candidates is not None else env_file_candidates():
        if not Path(path).is_file():
            continue
        values = dotenv_values(path)
        return {k: v for k, v in values.items() if v is not None}
    return {}


def merge_layers(*layers: Mapping[str, str]) -> dict[str, str]:
    """Merge layers given in precedence order; the first layer to set a key wins."""
    merged: dict[str, str] = {}
    for layer in layers:
        for key, value in layer.items():
            merged.setdefault(key, value)
    return merged


def resolve_environment(
    environ: Mapping[str, str] | None = None,
    candidates: Sequence[Path] | None = None,
) -> dict[str, str]:
    process_env = os.environ if environ is None else environ
    return merge_layers(process_env, load_env_file(candidates))


def _first_set(env: Mapping[str, str], names: Sequence[str]) -> str:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return ""


def resolve_connection(
    env: Mapping[str, str], timeout: float | None = None
) -> Connection:
    url = _first_set(env, URL_ENV_VARS)
    key = _first_set(env, KEY_ENV_VARS)
    if not url:
        raise ConfigError("Missing env SUPABASE_URL")
    if not key:
        raise ConfigError("Missing env SUPABASE_KEY")

    if timeout is None:
        raw = (env.get(TIMEOUT_ENV_VAR) or "").strip()
        timeout = _positive_float(raw) if raw else DEFAULT_TIMEOUT
    return Connection(url=url, key=key, timeout=timeout)


# ──────────────────────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────────────────────

class _ArgumentParser(argparse.ArgumentParser):
    """argparse that raises ConfigError instead of exiting with status 2."""

    def error(self, message):
        raise ConfigError(message)


def _csv(value: str) -> list[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    if n <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return n


def _positive_float(value: str) -> float:
    try:
        n = float(value)
    except ValueError:
        raise ConfigError(f"Invalid timeout: {value!r}")
    if not n > 0:
        raise ConfigError(f"Invalid timeout: {value!r}")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(
        prog="table-audit",
        description="Supabase table scan (JSON report).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Required env (or .env.local / .env):\n"
            "  SUPABASE_URL\n"
            "  SUPABASE_KEY\n\n"
            "Without --table/--tables every accessible table is discovered.\n"
            "Without --null/--dup/--pii the tables are dumped instead of scanned.\n\n"
            "Examples:\n"
            "  table-audit --table members --null email,name --dup email "
            "--pii email,phone --out report.json\n"
            "  table-audit --out db-dump.json\n"
        ),
    )
    p.add_argument("--table",     dest="tables", action="append", default=[],
                   metavar="NAME", help="Table to scan (repeatable)")
    p.add_argument("--tables",    dest="tables", action="extend", type=_csv,
                   metavar="A,B,C", help="Comma-separated tables")
    p.add_argument("--columns",   type=_csv, metavar="A,B,C",
                   help="Only select these columns (default: *)")
    p.add_argument("--null",      dest="null_columns", type=_csv, default=[],
                   metavar="A,B,C", help="Flag rows where any of these columns is null/empty")
    p.add_argument("--dup",       dest="duplicate_column", metavar="COLUMN",
                   help="Flag duplicate values in a column")
    p.add_argument("--pii",       dest="pii_columns", type=_csv, default=[],
                   metavar="A,B,C", help="PII-like pattern scan on these columns")
    p.add_argument("--page-size", type=_positive_int, default=DEFAULT_PAGE_SIZE,
                   metavar="N", help=f"Pagination size (default: {DEFAULT_PAGE_SIZE})")
    p.add_argument("--max-rows",  type=_positive_int, metavar="N",
                   help="Stop after reading N rows per table")
    p.add_argument("--out",       metavar="PATH", help="Write JSON report to a file")
    p.add_argument("--timeout",   type=float, metavar="SECONDS",
                   help=f"Per-request timeout (default: ${TIMEOUT_ENV_VAR} or {DEFAULT_TIMEOUT:g})")
    p.add_argument("--fail-fast", action="store_true",
                   help="Abort the whole run on the first table that cannot be read")
    p.add_argument("--verbose",   action="store_true", help="Log progress on stderr")
    return p


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def scan_config_from_args(args: argparse.Namespace) -> ScanConfig:
    return ScanConfig(
        tables=tuple(args.tables),
        columns=tuple(args.columns) if args.columns else None,
        null_columns=tuple(args.null_columns),
        duplicate_column=(args.duplicate_column or "").strip() or None,
        pii_columns=tuple(args.pii_columns),
        page_size=args.page_size,
        max_rows=args.max_rows,
        out=args.out,
        fail_fast=args.fail_fast,
        verbose=args.verbose,
    )


def resolve_config(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
    candidates: Sequence[Path] | None = None,
) -> tuple[ScanConfig, Connection]:
    """
    Parse the CLI, merge environment layers and validate credentials.
    Raises ConfigError for any bad input; --help exits through argparse.
    """
    args = parse_args(argv)
    config = scan_config_from_args(args)

    timeout = None
    if args.timeout is not None:
        timeout = _positive_float(str(args.timeout))

    env = resolve_environment(environ, candidates)
    return config, resolve_connection(env, timeout=timeout)
