"""
Tests for the administration command line.
"""

import pytest

from tests.conftest import get_test_settings
from tracker import cli
from tracker.auth import verify_password


@pytest.fixture
def cli_settings(tmp_path, monkeypatch):
    settings = get_test_settings(tmp_path, database_url=f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": "hunter22")
    return settings


def test_hash_password_prints_argon2id(cli_settings, capsys):
    cli.main(["hash-password"])

    encoded = capsys.readouterr().out.strip()
    assert encoded.startswith("$argon2id$v=19$m=1024,t=1,p=1$")
    assert verify_password("hunter22", encoded)


def test_create_user(cli_settings, capsys):
    cli.main(["create-user", "dave", "--name", "Dave"])

    assert "Created user dave" in capsys.readouterr().out


def test_duplicate_user_exits(cli_settings):
    cli.main(["create-user", "dave"])

    with pytest.raises(SystemExit):
        cli.main(["create-user", "dave"])


def test_mismatched_passwords_exit(cli_settings, monkeypatch):
    answers = iter(["one", "two"])
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))

    with pytest.raises(SystemExit):
        cli.main(["hash-password"])


def test_command_is_required():
    with pytest.raises(SystemExit):
        cli.main([])
