"""
Level 3 – End-to-end test: main.run() / main.main() (everything mocked)

Scenarios:
  1. Scan 1500 rows with 3 empty emails      → 2 page reads, 3 null issues
  2. Dump twice                              → identical JSON except generatedAt
  3. No explicit tables                      → discovery order is used
  4. Discovery returns nothing               → NoTablesFoundError, exit 1
  5. One table unreadable                    → recorded, other tables continue
  6. --fail-fast                             → whole run aborts, no report
  7. CLI: success, missing env, --help, unwritable --out
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from postgrest.exceptions import APIError

import main
from config import Connection, ScanConfig
from errors import DiscoveryError, FetchError, NoTablesFoundError
from report import render_json_report


CONN = Connection(url="https://demo.supabase.co", key="anon-key")

ENV_VARS = (
    "SUPABASE_URL", "VITE_SUPABASE_URL",
    "SUPABASE_KEY", "SUPABASE_SERVICE_KEY", "VITE_SUPABASE_ANON_KEY",
    "SUPABASE_TIMEOUT",
)

DENIED = APIError({"message": "permission denied for table secrets", "code": "42501"})


def _mock_client(tables: dict, calls: list | None = None, failures: dict | None = None) -> MagicMock:
    client = MagicMock()

    def _table(name):
        builder = MagicMock()

        def _range(start, end):
            if calls is not None:
                calls.append((name, start, end))
            query = MagicMock()
            if failures and name in failures:
                query.execute.side_effect = failures[name]
            else:
                query.execute.return_value = MagicMock(data=tables.get(name, [])[start:end + 1])
            return query

        builder.select.return_value.range.side_effect = _range
        return builder

    client.table.side_effect = _table
    return client


def _members(n: int, empty_email_ids=()) -> list[dict]:
    return [
        {"id": i, "name": f"Member {i}", "email": "" if i in empty_email_ids else f"m{i}@club.org"}
        for i in range(n)
    ]


@pytest.fixture
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("config.env_file_candidates", lambda cwd=None: [])
    return monkeypatch


# ── 1. Scan scenario ─────────────────────────────────────────────────────────

def test_scan_members_end_to_end():
    calls = []
    client = _mock_client({"members": _members(1500, empty_email_ids={3, 700, 1499})}, calls)
    cfg = ScanConfig(tables=("members",), null_columns=("email",), page_size=1000)

    report = main.run(cfg, CONN, client=client)
    d = report.to_dict()

    assert len(calls) == 2
    assert d["mode"] == "scan"
    assert d["tables"][0]["scannedRows"] == 1500
    assert len(d["tables"][0]["issues"]["nullOrEmpty"]) == 3
    assert [i["row"]["id"] for i in d["tables"][0]["issues"]["nullOrEmpty"]] == [3, 700, 1499]


def test_scan_row_cap_matches_fetcher():
    calls = []
    client = _mock_client({"members": _members(1500)}, calls)
    cfg = ScanConfig(tables=("members",), pii_columns=("email",), page_size=1000, max_rows=1200)

    d = main.run(cfg, CONN, client=client).to_dict()

    assert d["tables"][0]["scannedRows"] == 1200
    assert len(d["tables"][0]["issues"]["piiLike"]) == 1200
    assert len(calls) == 2


# ── 2. Dump ──────────────────────────────────────────────────────────────────

def test_dump_is_idempotent_apart_from_timestamp():
    tables = {"members": _members(12), "events": [{"id": 1, "title": "Gala"}]}
    cfg = ScanConfig(tables=("members", "events"), page_size=5)

    first = json.loads(render_json_report(main.run(cfg, CONN, client=_mock_client(tables))))
    second = json.loads(render_json_report(main.run(cfg, CONN, client=_mock_client(tables))))
    first.pop("generatedAt")
    second.pop("generatedAt")

    assert json.dumps(first, indent=2) == json.dumps(second, indent=2)
    assert first["mode"] == "dump"
    assert len(first["tables"]["members"]) == 12
    assert list(first["tables"]) == ["members", "events"]


def test_dump_respects_projection_and_cap():
    client = _mock_client({"members": _members(30)})
    cfg = ScanConfig(tables=("members",), columns=("id", "email"), page_size=10, max_rows=15)

    d = main.run(cfg, CONN, client=client).to_dict()

    assert len(d["tables"]["members"]) == 15
    client.table.assert_called_with("members")


# ── 3. / 4. Discovery ────────────────────────────────────────────────────────

def test_tables_discovered_when_not_given():
    client = _mock_client({"announcements": [{"id": 1}], "members": _members(2)})
    with patch("main.discover_tables", return_value=["announcements", "members"]) as discover:
        d = main.run(ScanConfig(), CONN, client=client).to_dict()
    discover.assert_called_once_with(CONN)
    assert list(d["tables"]) == ["announcements", "members"]


def test_explicit_tables_skip_discovery():
    client = _mock_client({"members": []})
    with patch("main.discover_tables") as discover:
        main.run(ScanConfig(tables=("members",)), CONN, client=client)
    discover.assert_not_called()


def test_no_tables_discovered():
    with patch("main.discover_tables", return_value=[]):
        with pytest.raises(NoTablesFoundError, match="No tables discovered"):
            main.run(ScanConfig(), CONN, client=MagicMock())


# ── 5. / 6. Per-table failures ───────────────────────────────────────────────

def test_scan_failure_isolated_per_table():
    client = _mock_client(
        {"members": _members(3, empty_email_ids={1}), "events": [{"id": 1, "email": None}]},
        failures={"secrets": DENIED},
    )
    cfg = ScanConfig(tables=("members", "secrets", "events"), null_columns=("email",))

    d = main.run(cfg, CONN, client=client).to_dict()

    assert [t["table"] for t in d["tables"]] == ["members", "secrets", "events"]
    secrets = d["tables"][1]
    assert "permission denied" in secrets["error"]
    assert secrets["scannedRows"] == 0
    assert len(d["tables"][0]["issues"]["nullOrEmpty"]) == 1
    assert len(d["tables"][2]["issues"]["nullOrEmpty"]) == 1
    assert "error" not in d["tables"][0]


def test_dump_failure_isolated_per_table():
    client = _mock_client({"members": _members(2)}, failures={"secrets": DENIED})
    cfg = ScanConfig(tables=("secrets", "members"))

    d = main.run(cfg, CONN, client=client).to_dict()

    assert list(d["tables"]) == ["members"]
    assert "permission denied" in d["errors"]["secrets"]


def test_fail_fast_aborts():
    client = _mock_client({"members": _members(2)}, failures={"secrets": DENIED})
    cfg = ScanConfig(tables=("secrets", "members"), null_columns=("email",), fail_fast=True)

    with pytest.raises(FetchError) as exc:
        main.run(cfg, CONN, client=client)
    assert exc.value.table == "secrets"


# ── 7. CLI ───────────────────────────────────────────────────────────────────

class TestMainCli:

    def test_success_writes_stdout_and_file(self, clean_env, tmp_path, capsys):
        clean_env.setenv("SUPABASE_URL", "https://demo.supabase.co")
        clean_env.setenv("SUPABASE_KEY", "anon-key")
        target = tmp_path / "report.json"
        client = _mock_client({"members": _members(4, empty_email_ids={2})})

        with patch("main.get_client", return_value=client):
            code = main.main(["--table", "members", "--null", "email", "--out", str(target)])

        assert code == 0
        out = capsys.readouterr().out
        data = json.loads(out)
        assert data["tables"][0]["scannedRows"] == 4
        assert json.loads(target.read_text(encoding="utf-8")) == data

    def test_missing_env(self, clean_env, capsys):
        code = main.main(["--table", "members"])
        captured = capsys.readouterr()
        assert code == 1
        assert captured.out == ""
        assert captured.err.strip() == "Missing env SUPABASE_URL"

    def test_bad_flag(self, clean_env, capsys):
        code = main.main(["--page-size", "zero"])
        assert code == 1
        assert "--page-size" in capsys.readouterr().err

    def test_help(self, clean_env, capsys):
        with pytest.raises(SystemExit) as exc:
            main.main(["--help"])
        assert exc.value.code == 0
        assert "--max-rows" in capsys.readouterr().out

    def test_fetch_failure_with_fail_fast_writes_no_report(self, clean_env, capsys):
        clean_env.setenv("SUPABASE_URL", "https://demo.supabase.co")
        clean_env.setenv("SUPABASE_KEY", "anon-key")
        client = _mock_client({}, failures={"secrets": DENIED})

        with patch("main.get_client", return_value=client):
            code = main.main(["--table", "secrets", "--fail-fast"])

        captured = capsys.readouterr()
        assert code == 1
        assert captured.out == ""
        assert "Failed reading secrets" in captured.err

    def test_unwritable_out(self, clean_env, tmp_path, capsys):
        clean_env.setenv("SUPABASE_URL", "https://demo.supabase.co")
        clean_env.setenv("SUPABASE_KEY", "anon-key")
        target = tmp_path / "nope" / "report.json"

        with patch("main.get_client", return_value=_mock_client({"members": []})):
            code = main.main(["--table", "members", "--out", str(target)])

        assert code == 1
        assert "Failed writing report" in capsys.readouterr().err

    def test_discovery_error_is_fatal(self, clean_env, capsys):
        clean_env.setenv("SUPABASE_URL", "https://demo.supabase.co")
        clean_env.setenv("SUPABASE_KEY", "anon-key")
        with patch("main.discover_tables", side_effect=DiscoveryError(401, "Invalid API key")):
            code = main.main([])

        err = capsys.readouterr().err
        assert code == 1
        assert "401" in err
        assert "Invalid API key" in err
