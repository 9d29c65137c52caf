"""Account file loading.

The accounts file is a JSON object keyed by account name::

    {
      "work": {"address": "me@example.com", "host": "imap.example.com",
               "auth": "oauth2", "folders": ["INBOX", "Archive"]},
      "home": {"address": "me@home.net", "host": "imap.home.net",
               "password": "app-password"}
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mail_digest.core.exceptions import ConfigurationError
from mail_digest.core.models import Account

logger = logging.getLogger(__name__)

AUTH_MODES = ("password", "oauth2")


def _require_str(raw: dict[str, Any], key: str, source: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{source}.{key} must be a non-empty string")
    return value.strip()


def parse_account(name: str, raw: object, source: str) -> Account:
    """Validate a single account entry."""
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{source} must be an object")

    auth = raw.get("auth", "password")
    if auth not in AUTH_MODES:
        raise ConfigurationError(f"{source}.auth must be one of {', '.join(AUTH_MODES)}")

    password = raw.get("password")
    if auth == "password" and not password:
        raise ConfigurationError(f"{source} uses password auth but has no password")

    port = raw.get("port", 993)
    if not isinstance(port, int) or port <= 0:
        raise ConfigurationError(f"{source}.port must be a positive integer")

    folders = raw.get("folders", ["INBOX"])
    if not isinstance(folders, list) or not all(isinstance(f, str) and f for f in folders):
        raise ConfigurationError(f"{source}.folders must be a list of folder names")

    return Account(
        name=name,
        address=_require_str(raw, "address", source),
        host=_require_str(raw, "host", source),
        port=port,
        auth=auth,
        password=password,
        folders=tuple(folders) or ("INBOX",),
    )


def load_accounts(path: Path) -> list[Account]:
    """Load every account from ``path``.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    if not path.exists():
        raise ConfigurationError(f"Accounts file not found: {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read accounts file {path}: {e}") from e

    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError(f"Accounts file {path} must contain a non-empty JSON object")

    accounts = [
        parse_account(name, entry, f"{path.name}:{name}") for name, entry in raw.items()
    ]
    logger.debug("Loaded %d accounts from %s", len(accounts), path)
    return accounts


def select_accounts(accounts: list[Account], names: list[str] | None) -> list[Account]:
    """Filter accounts by name or address; None selects all."""
    if not names:
        return accounts
    wanted = set(names)
    selected = [a for a in accounts if a.name in wanted or a.address in wanted]
    unknown = wanted - {a.name for a in selected} - {a.address for a in selected}
    if unknown:
        raise ConfigurationError(f"Unknown account(s): {', '.join(sorted(unknown))}")
    return selected
