"""Shared fixtures for Mail Digest tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from mail_digest.config.settings import MailDigestSettings
from mail_digest.core.models import Account, HeaderRecord, MailboxDigest
from tests.helpers import make_digest


@pytest.fixture
def sample_header() -> HeaderRecord:
    """A fully populated header record."""
    return HeaderRecord(
        id=42,
        date_raw="Mon, 15 Jan 2024 10:30:00 -0500",
        sender="Sender <sender@example.com>",
        to="me@example.com",
        cc="cc@example.com",
        bcc="",
        subject="Test Subject",
        flags=("\\Seen", "\\Answered"),
        parsed_year=2024,
        parsed_epoch=1705332600,
    )


@pytest.fixture
def sample_digest() -> MailboxDigest:
    """A ten-message digest for me@example.com/INBOX."""
    return make_digest(list(range(1, 11)))


@pytest.fixture
def sample_account() -> Account:
    return Account(
        name="work",
        address="me@example.com",
        host="imap.example.com",
        password="app-password",
        folders=("INBOX",),
    )


@pytest.fixture
def oauth_account() -> Account:
    return Account(
        name="gmail",
        address="me@gmail.com",
        host="imap.gmail.com",
        auth="oauth2",
    )


@pytest.fixture
def tmp_settings(tmp_path: Path) -> MailDigestSettings:
    """Settings pointing to temporary directories."""
    return MailDigestSettings(
        digest_dir=tmp_path / "digests",
        token_dir=tmp_path / "tokens",
        accounts_path=tmp_path / "accounts.json",
        client_secrets_path=tmp_path / "client_secret.json",
        batch_size=4,
    )
