from __future__ import annotations

import importlib.util
from pathlib import Path

from supabase_client import CredentialStore
from supabase_fakes import SERVICE_KEY, URL, FakeBackend

SCRIPT = Path(__file__).resolve().parent / "scripts" / "fix_admin_access.py"


def _load_cli():
    spec = importlib.util.spec_from_file_location("fix_admin_access", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _configure(monkeypatch, service_key: str = SERVICE_KEY) -> FakeBackend:
    monkeypatch.setenv("SUPABASE_URL", URL)
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", service_key)
    return FakeBackend()


def test_cli_requires_service_key(monkeypatch, capsys) -> None:
    cli = _load_cli()
    _configure(monkeypatch, service_key="")

    assert cli.main(["list-users"]) == 1
    assert "SUPABASE_SERVICE_ROLE_KEY" in capsys.readouterr().out


def test_cli_grant_and_check(monkeypatch, capsys) -> None:
    cli = _load_cli()
    backend = _configure(monkeypatch)
    backend.add_user("shopper@example.com", "pw", role="customer")
    monkeypatch.setattr(
        cli, "CredentialStore", lambda settings: CredentialStore(settings, client_factory=backend.factory)
    )

    assert cli.main(["check", "shopper@example.com"]) == 0
    assert "Is admin: False" in capsys.readouterr().out

    assert cli.main(["grant", "shopper@example.com"]) == 0
    assert cli.main(["list-admins"]) == 0
    out = capsys.readouterr().out
    assert "is now an admin" in out
    assert "1. shopper@example.com" in out

    assert cli.main(["grant", "ghost@example.com"]) == 1
    assert "User not found" in capsys.readouterr().out


def test_cli_create_admin(monkeypatch, capsys) -> None:
    cli = _load_cli()
    backend = _configure(monkeypatch)
    monkeypatch.setattr(
        cli, "CredentialStore", lambda settings: CredentialStore(settings, client_factory=backend.factory)
    )

    assert cli.main(["create-admin", "ops@example.com", "--password", "pw123456"]) == 0
    assert "Admin user created: ops@example.com" in capsys.readouterr().out

    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt: "rotated-pw")
    assert cli.main(["create-admin", "ops@example.com"]) == 0
    assert "Admin user updated" in capsys.readouterr().out
    assert backend.users["ops@example.com"]["password"] == "rotated-pw"
