"""
Range-paginated reads against one Supabase table.

PageFetcher is a lazy, restartable row source: every iteration starts
again at offset 0 and asks PostgREST for one [offset, offset + page_size)
slice at a time, so a scan never holds more than one page in memory.
"""

import logging
from typing import Any, Iterator, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client
from supabase.client import ClientOptions

from config import Connection, DEFAULT_PAGE_SIZE
from errors import FetchError

logger = logging.getLogger("table_audit.fetch")

Row = dict[str, Any]


def get_client(connection: Connection) -> Client:
    # One-shot job with a static key: no session to keep or refresh.
    options = ClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        postgrest_client_timeout=connection.timeout,
    )
    return create_client(connection.url, connection.key, options=options)


class PageFetcher:

    def __init__(
        self,
        client: Client,
        table: str,
        columns: Sequence[str] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_rows: int | None = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if max_rows is not None and max_rows <= 0:
            raise ValueError("max_rows must be positive")
        self.client = client
        self.table = table
        self.columns = list(columns) if columns else None
        self.page_size = page_size
        self.max_rows = max_rows
        self.pages_fetched = 0

    @property
    def select_clause(self) -> str:
        return ",".join(self.columns) if self.columns else "*"

    def fetch_page(self, offset: int) -> list[Row]:
        end = offset + self.page_size - 1  # PostgREST ranges are inclusive
        try:
            resp = (
                self.client.table(self.table)
                .select(self.select_clause)
                .range(offset, end)
                .execute()
            )
        except APIError as e:
            raise FetchError(self.table, e.message or str(e), e.code) from e
        except httpx.HTTPError as e:
            raise FetchError(self.table, str(e) or type(e).__name__) from e

        self.pages_fetched += 1
        rows = resp.data or []
        logger.debug("%s: rows %d-%d → %d received", self.table, offset, end, len(rows))
        return rows

    def __iter__(self) -> Iterator[Row]:
        self.pages_fetched = 0
        offset = 0
        delivered = 0

        while True:
            rows = self.fetch_page(offset)
            if not rows:
                break

            if self.max_rows is not None and delivered + len(rows) >= self.max_rows:
                yield from rows[: self.max_rows - delivered]
                delivered = self.max_rows
                break

            yield from rows
            delivered += len(rows)

            if len(rows) < self.page_size:
                break
            offset += len(rows)

        logger.info("%s: %d row(s) in %d page(s)", self.table, delivered, self.pages_fetched)

    def fetch_all(self) -> list[Row]:
        return list(self)
