"""
Table audit – issue detection.

Three independent row checks:
  null/empty – configured columns absent, null or blank
  duplicate  – a value of the duplicate column already seen in this table
  PII-like   – email, payment-card-like or phone-like values

TableScan consumes a lazy row source one row at a time; only the
duplicate map (value → first row) grows with the table.
"""

import json
import logging
import re
from typing import Any, Iterable

from config import ScanConfig
from report import DuplicateIssue, NullIssue, PiiIssue, Row, TableReport

logger = logging.getLogger("table_audit.scan")

# Checked in this order, first match wins.
EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
CREDIT_CARD_PATTERN = re.compile(r"\b(?:\d[ -]*?){13,19}\b")
PHONE_PATTERN = re.compile(
    r"(?:(?:\+?\d{1,3})?[\s.-]?)?(?:\(?\d{2,3}\)?[\s.-]?)?\d{3,4}[\s.-]?\d{4}"
)

PII_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("email", EMAIL_PATTERN),
    ("credit_card_like", CREDIT_CARD_PATTERN),
    ("phone_like", PHONE_PATTERN),
]


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def stringify(value: Any) -> str:
    """Text form used for duplicate keys and pattern matching."""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def pii_match(value: Any) -> str | None:
    if value is None:
        return None
    text = stringify(value)
    for kind, pattern in PII_PATTERNS:
        if pattern.search(text):
            return kind
    return None


class TableScan:
    """Streaming scan of one table. The partial report survives a failing row source."""

    def __init__(self, table: str, config: ScanConfig):
        self.config = config
        self.report = TableReport(table=table, meta=config.to_meta())
        self._first_seen: dict[str, Row] = {}
        self._reported: set[str] = set()

    @property
    def done(self) -> bool:
        cap = self.config.max_rows
        return cap is not None and self.report.scanned_rows >= cap

    def check_row(self, row: Row) -> None:
        self.report.scanned_rows += 1
        self._check_nulls(row)
        self._check_duplicate(row)
        self._check_pii(row)

    def consume(self, rows: Iterable[Row]) -> TableReport:
        for row in rows:
            if self.done:
                break
            self.check_row(row)
            if self.done:
                break
        r = self.report
        logger.info(
            "%s: %d row(s) scanned, %d null/empty, %d duplicate, %d PII-like",
            r.table, r.scanned_rows, len(r.null_or_empty), len(r.duplicates), len(r.pii_like),
        )
        return r

    def _check_nulls(self, row: Row) -> None:
        missing = [c for c in self.config.null_columns if is_empty_value(row.get(c))]
        if missing:
            self.report.null_or_empty.append(NullIssue(row=row, missing_columns=missing))

    def _check_duplicate(self, row: Row) -> None:
        column = self.config.duplicate_column
        if not column:
            return
        value = row.get(column)
        if is_empty_value(value):
            return
        key = stringify(value)
        first = self._first_seen.get(key)
        if first is None:
            self._first_seen[key] = row
        elif key not in self._reported:
            self._reported.add(key)
            self.report.duplicates.append(
                DuplicateIssue(column=column, value=key, rows=(first, row))
            )

    def _check_pii(self, row: Row) -> None:
        for column in self.config.pii_columns:
            value = row.get(column)
            kind = pii_match(value)
            if kind:
                self.report.pii_like.append(
                    PiiIssue(column=column, kind=kind, value=value, row=row)
                )


def scan_table(table: str, rows: Iterable[Row], config: ScanConfig) -> TableReport:
    return TableScan(table, config).consume(rows)
