"""Tests for settings and the accounts file."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mail_digest.config.accounts import load_accounts, parse_account, select_accounts
from mail_digest.config.settings import MailDigestSettings
from mail_digest.core.exceptions import ConfigurationError
from mail_digest.core.models import Account


def _write(path: Path, data: object) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        settings = MailDigestSettings()
        assert settings.batch_size == 200
        assert settings.authorization_timeout_seconds == 120.0
        assert settings.token_expiry_skew_seconds == 60
        assert settings.refetch_on_uid_validity_change is False

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAIL_DIGEST_BATCH_SIZE", "50")
        monkeypatch.setenv("MAIL_DIGEST_DIGEST_DIR", str(tmp_path / "d"))
        monkeypatch.setenv("MAIL_DIGEST_REFETCH_ON_UID_VALIDITY_CHANGE", "true")

        settings = MailDigestSettings()

        assert settings.batch_size == 50
        assert settings.digest_dir == tmp_path / "d"
        assert settings.refetch_on_uid_validity_change is True

    def test_ensure_directories(self, tmp_settings: MailDigestSettings) -> None:
        tmp_settings.ensure_directories()
        assert tmp_settings.digest_dir.is_dir()
        assert tmp_settings.token_dir.is_dir()


class TestParseAccount:
    def test_minimal_password_account(self) -> None:
        account = parse_account(
            "home", {"address": "me@home.net", "host": "imap.home.net", "password": "pw"}, "x"
        )
        assert account == Account(
            name="home", address="me@home.net", host="imap.home.net", password="pw"
        )
        assert not account.uses_oauth2

    def test_oauth2_account_needs_no_password(self) -> None:
        account = parse_account(
            "gmail",
            {"address": "me@gmail.com", "host": "imap.gmail.com", "auth": "oauth2",
             "folders": ["INBOX", "[Gmail]/Sent Mail"]},
            "x",
        )
        assert account.uses_oauth2
        assert account.folders == ("INBOX", "[Gmail]/Sent Mail")

    def test_password_is_not_in_repr(self) -> None:
        account = parse_account("h", {"address": "a@b.c", "host": "h", "password": "hunter2"}, "x")
        assert "hunter2" not in repr(account)

    @pytest.mark.parametrize(
        ("raw", "message"),
        [
            ([], "must be an object"),
            ({"address": "a@b.c", "host": "h", "auth": "kerberos"}, "auth must be one of"),
            ({"address": "a@b.c", "host": "h"}, "no password"),
            ({"address": "a@b.c", "host": "h", "password": "p", "port": 0}, "port"),
            ({"address": "a@b.c", "host": "h", "password": "p", "folders": "INBOX"}, "folders"),
            ({"host": "h", "password": "p"}, "address"),
            ({"address": "a@b.c", "host": " ", "password": "p"}, "host"),
        ],
    )
    def test_invalid_entries(self, raw: object, message: str) -> None:
        with pytest.raises(ConfigurationError, match=message):
            parse_account("acct", raw, "accounts.json:acct")


class TestLoadAccounts:
    def test_load(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "accounts.json",
            {
                "work": {"address": "me@example.com", "host": "imap.example.com",
                         "password": "pw"},
                "gmail": {"address": "me@gmail.com", "host": "imap.gmail.com",
                          "auth": "oauth2"},
            },
        )

        accounts = load_accounts(path)

        assert [a.name for a in accounts] == ["work", "gmail"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_accounts(tmp_path / "accounts.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "accounts.json"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Could not read"):
            load_accounts(path)

    def test_empty_object(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="non-empty"):
            load_accounts(_write(tmp_path / "accounts.json", {}))

    def test_error_names_the_entry(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "accounts.json", {"broken": {"host": "h", "password": "p"}})
        with pytest.raises(ConfigurationError, match="accounts.json:broken.address"):
            load_accounts(path)


class TestSelectAccounts:
    @pytest.fixture
    def accounts(self, sample_account: Account, oauth_account: Account) -> list[Account]:
        return [sample_account, oauth_account]

    def test_none_selects_all(self, accounts: list[Account]) -> None:
        assert select_accounts(accounts, None) == accounts

    def test_by_name_or_address(self, accounts: list[Account]) -> None:
        assert select_accounts(accounts, ["gmail"]) == [accounts[1]]
        assert select_accounts(accounts, ["me@example.com"]) == [accounts[0]]

    def test_unknown_name(self, accounts: list[Account]) -> None:
        with pytest.raises(ConfigurationError, match="nobody"):
            select_accounts(accounts, ["work", "nobody"])
