"""
Table audit – error taxonomy.

Every failure the CLI reports to the operator is an AuditError; main()
turns it into a single line on stderr and a non-zero exit code.
"""


class AuditError(RuntimeError):
    pass


class ConfigError(AuditError):
    """Bad or missing CLI input, or missing connection credentials."""


class DiscoveryError(AuditError):
    """The schema description endpoint could not be read."""

    def __init__(self, status: int | None, body: str = ""):
        self.status = status
        self.body = body
        detail = f"HTTP {status}" if status is not None else "request failed"
        msg = f"Failed to discover tables from PostgREST OpenAPI: {detail}"
        if body:
            msg += f" - {body}"
        super().__init__(msg)


class NoTablesFoundError(AuditError):
    pass


class FetchError(AuditError):
    """A page read against one table failed."""

    def __init__(self, table: str, message: str, code: str | None = None):
        self.table = table
        self.message = message
        self.code = code
        detail = f"{message} (code {code})" if code else message
        super().__init__(f"Failed reading {table}: {detail}")


class OutputWriteError(AuditError, OSError):
    pass
