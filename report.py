"""
Table audit – report model and JSON output.

Scan mode produces one TableReport per table; dump mode maps each table
to its rows. Both are wrapped in a RunReport stamped with the generation
time and rendered as indented JSON with camelCase keys.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence, TextIO

from errors import OutputWriteError

logger = logging.getLogger("table_audit.report")

Row = dict[str, Any]

MODE_SCAN = "scan"
MODE_DUMP = "dump"


# ──────────────────────────────────────────────────────────────
# Issues
# ──────────────────────────────────────────────────────────────

@dataclass
class NullIssue:
    row:             Row
    missing_columns: list[str]

    def to_dict(self) -> dict:
        return {"row": self.row, "missingColumns": self.missing_columns}


@dataclass
class DuplicateIssue:
    """Only the first collision of a value is recorded: rows = (first seen, second seen)."""
    column: str
    value:  str
    rows:   tuple[Row, Row]

    def to_dict(self) -> dict:
        return {"column": self.column, "value": self.value, "rows": list(self.rows)}


@dataclass
class PiiIssue:
    column: str
    kind:   str
    value:  Any
    row:    Row

    def to_dict(self) -> dict:
        return {"column": self.column, "kind": self.kind, "value": self.value, "row": self.row}


# ──────────────────────────────────────────────────────────────
# Reports
# ──────────────────────────────────────────────────────────────

@dataclass
class TableReport:
    table:        str
    meta:         dict = field(default_factory=dict)
    scanned_rows: int = 0
    null_or_empty: list[NullIssue] = field(default_factory=list)
    duplicates:    list[DuplicateIssue] = field(default_factory=list)
    pii_like:      list[PiiIssue] = field(default_factory=list)
    error:        str | None = None

    @property
    def issue_count(self) -> int:
        return len(self.null_or_empty) + len(self.duplicates) + len(self.pii_like)

    def to_dict(self) -> dict:
        out = {
            "table":       self.table,
            "scannedRows": self.scanned_rows,
            "issues": {
                "nullOrEmpty": [i.to_dict() for i in self.null_or_empty],
                "duplicates":  [i.to_dict() for i in self.duplicates],
                "piiLike":     [i.to_dict() for i in self.pii_like],
            },
            "meta": self.meta,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class RunReport:
    generated_at: str
    mode:         str
    tables:       list[TableReport] | dict[str, list[Row]]
    errors:       dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        if self.mode == MODE_SCAN:
            tables = [t.to_dict() for t in self.tables]
        else:
            tables = dict(self.tables)
        out = {"generatedAt": self.generated_at, "mode": self.mode, "tables": tables}
        if self.errors:
            out["errors"] = dict(self.errors)
        return out


def _timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def assemble_scan_report(tables: Sequence[TableReport]) -> RunReport:
    return RunReport(generated_at=_timestamp(), mode=MODE_SCAN, tables=list(tables))


def assemble_dump_report(
    tables: Mapping[str, list[Row]],
    errors: Mapping[str, str] | None = None,
) -> RunReport:
    return RunReport(
        generated_at=_timestamp(),
        mode=MODE_DUMP,
        tables=dict(tables),
        errors=dict(errors or {}),
    )


# ──────────────────────────────────────────────────────────────
# Output
# ──────────────────────────────────────────────────────────────

def render_json_report(report: RunReport) -> str:
    # default=str: timestamptz/numeric values may come back as non-JSON types
    return json.dumps(report.to_dict(), indent=2, ensure_ascii=False, default=str)


def write_report(
    report: RunReport,
    out: str | None = None,
    stream: TextIO | None = None,
) -> str:
    """
    Print the report on stdout and, when requested, save it to `out`.
    A failed file write is fatal: the user explicitly asked for it.
    """
    text = render_json_report(report)
    stream = stream or sys.stdout
    stream.write(text + "\n")
    stream.flush()

    if out:
        try:
            Path(out).write_text(text, encoding="utf-8")
        except OSError as e:
            raise OutputWriteError(f"Failed writing report to {out}: {e.strerror or e}") from e
        logger.info("report saved to %s", out)

    return text
