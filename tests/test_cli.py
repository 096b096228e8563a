"""Tests for the operator CLI in main.py.

Subcommands are called through main() with a patched argv. The directory
client and user store are swapped for test doubles so nothing leaves the
process.
"""

from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import main as cli
from auth.handshake import verify_signature
from auth.models import LocalUser
from conftest import make_profile
from core.directory import UpstreamError


def _store_double(store):
    """Wrap the fixture store; the CLI closes its store, the fixture owns this one."""
    double = MagicMock(wraps=store)
    double.close = MagicMock()
    return double


def _run(argv: list[str]) -> int:
    with patch("sys.argv", ["main.py", *argv]):
        return cli.main()


def test_sign_prints_verifiable_link(capsys):
    assert _run(["sign", "--id", "12345", "--user", "jsmith"]) == 0
    url = urlparse(capsys.readouterr().out.strip())
    assert url.path == "/dashboard"
    q = {k: v[0] for k, v in parse_qs(url.query).items()}
    assert q["id"] == "12345"
    assert q["user"] == "jsmith"
    assert verify_signature(q["key"], q["time"], q["id"]) is True


def test_sign_appends_to_existing_query(capsys):
    _run(["sign", "--id", "1", "--user", "u", "--base-url", "http://x/?a=1"])
    assert capsys.readouterr().out.startswith("http://x/?a=1&key=")


def test_sync_dry_run_touches_no_store(capsys):
    client = MagicMock()
    client.fetch_all_staff.return_value = [make_profile()]
    with patch.object(cli.DirectoryClient, "from_settings", return_value=client), patch.object(
        cli, "UserStore"
    ) as store_cls:
        assert _run(["sync", "--dry-run"]) == 0
    store_cls.assert_not_called()
    out = capsys.readouterr().out
    assert "1 staff found" in out
    assert "jane.smith@school.test" in out
    client.close.assert_called_once()


def test_sync_writes_users(store, capsys):
    client = MagicMock()
    client.fetch_all_staff.return_value = [make_profile()]
    with patch.object(cli.DirectoryClient, "from_settings", return_value=client), patch.object(
        cli, "UserStore", return_value=_store_double(store)
    ):
        assert _run(["sync"]) == 0
    assert "1 created" in capsys.readouterr().out
    assert store.get_by_email("jane.smith@school.test") is not None


def test_sync_directory_failure_exit_code(capsys):
    client = MagicMock()
    client.fetch_all_staff.side_effect = UpstreamError("Schoolbox API error: 503")
    with patch.object(cli.DirectoryClient, "from_settings", return_value=client):
        assert _run(["sync"]) == 1
    assert "[!]" in capsys.readouterr().out


def test_users_lists_rows(store, capsys):
    store.create_user(LocalUser(name="Jane Smith", email="jane@school.test", roles=["staff", "hr"]))
    with patch.object(cli, "UserStore", return_value=_store_double(store)):
        assert _run(["users"]) == 0
    out = capsys.readouterr().out
    assert "jane@school.test" in out
    assert "staff,hr" in out
    assert "1 user(s)." in out
