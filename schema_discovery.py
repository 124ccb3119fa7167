"""
Table discovery through the PostgREST OpenAPI description.

Supabase exposes the schema of every table the key can read at
/rest/v1/. Each table shows up as a top-level path; RPC functions live
under /rpc/ and per-row sub-resources carry a {param} placeholder.
"""

import logging

import httpx

from config import Connection
from errors import DiscoveryError

logger = logging.getLogger("table_audit.discovery")

OPENAPI_MEDIA_TYPE = "application/openapi+json"


def tables_from_openapi(document: dict) -> list[str]:
    """Deduplicated, sorted table names from the `paths` of an OpenAPI document."""
    if not isinstance(document, dict):
        return []
    paths = document.get("paths") or {}
    names: set[str] = set()
    for path in paths:
        if "{" in path:
            continue
        segments = [s for s in path.split("/") if s]
        if not segments:
            continue
        name = segments[0]
        if name.startswith("rpc"):
            continue
        names.add(name)
    return sorted(names)


def fetch_openapi(connection: Connection) -> dict:
    """
    GET the OpenAPI document. The key goes both in the query string and
    in the headers since the gateway accepts either.
    """
    try:
        resp = httpx.get(
            connection.rest_url,
            params={"apikey": connection.key},
            headers={
                "apikey": connection.key,
                "Authorization": f"Bearer {connection.key}",
                "Accept": OPENAPI_MEDIA_TYPE,
            },
            timeout=connection.timeout,
        )
    except httpx.HTTPError as e:
        raise DiscoveryError(None, str(e) or type(e).__name__) from e

    if not resp.is_success:
        raise DiscoveryError(resp.status_code, resp.text.strip())

    try:
        return resp.json()
    except ValueError as e:
        raise DiscoveryError(resp.status_code, f"invalid JSON in response: {e}") from e


def discover_tables(connection: Connection) -> list[str]:
    tables = tables_from_openapi(fetch_openapi(connection))
    logger.info("discovered %d table(s): %s", len(tables), ", ".join(tables))
    return tables
