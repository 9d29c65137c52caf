"""Per-account OAuth2 token persistence."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from mail_digest.core.models import TokenSet
from mail_digest.storage.atomic import atomic_write_text, safe_name

logger = logging.getLogger(__name__)

TOKEN_FILE_MODE = 0o600


class TokenStore:
    """Store one token file per account address, readable by the owner only."""

    def __init__(self, token_dir: Path) -> None:
        self._token_dir = token_dir

    def path_for(self, address: str) -> Path:
        return self._token_dir / f"{safe_name(address)}.token.json"

    def load(self, address: str) -> TokenSet | None:
        """Load the stored token for ``address``.

        A missing or unreadable file is treated as no token.
        """
        path = self.path_for(address)
        if not path.exists():
            return None
        try:
            return TokenSet.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", path, e)
            return None

    def save(self, address: str, token: TokenSet) -> Path:
        path = self.path_for(address)
        atomic_write_text(path, json.dumps(token.to_dict(), indent=2), mode=TOKEN_FILE_MODE)
        logger.info("Token cached for %s at %s", address, path)
        return path

    def delete(self, address: str) -> bool:
        path = self.path_for(address)
        if not path.exists():
            return False
        path.unlink()
        return True
