"""Digest snapshot files with timestamp/address/folder naming convention."""

from __future__ import annotations

import json
import logging
from datetime import UTC
from pathlib import Path

from mail_digest.core.exceptions import DigestError
from mail_digest.core.models import MailboxDigest
from mail_digest.storage.atomic import atomic_write_text, safe_name

logger = logging.getLogger(__name__)

DIGEST_SUFFIX = ".digest.json"
STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
STAMP_LENGTH = len("20240115T103000000000Z")


class DigestStore:
    """Locate, load and save ``MailboxDigest`` snapshots in one directory.

    File naming: {utc-timestamp}_{address}_{folder}.digest.json
    Example: 20240115T103000123456Z_me@example.com_INBOX.digest.json

    Timestamps sort lexicographically, so the newest snapshot for an
    (address, folder) pair is the last name ending in its suffix.
    """

    def __init__(self, digest_dir: Path) -> None:
        self._digest_dir = digest_dir

    @property
    def digest_dir(self) -> Path:
        return self._digest_dir

    @staticmethod
    def suffix_for(address: str, folder: str) -> str:
        return f"_{safe_name(address)}_{safe_name(folder)}{DIGEST_SUFFIX}"

    def path_for(self, digest: MailboxDigest) -> Path:
        stamp = digest.timestamp.astimezone(UTC).strftime(STAMP_FORMAT)
        return self._digest_dir / (
            stamp + self.suffix_for(digest.mail_address, digest.folder_name)
        )

    def save(self, digest: MailboxDigest) -> Path:
        """Write ``digest`` to a new file and return its path."""
        path = self.path_for(digest)
        if path.exists():
            raise DigestError(f"Refusing to overwrite existing digest {path}")
        self._write(path, digest)
        logger.info(
            "Saved digest %s/%s (%d headers) to %s",
            digest.mail_address, digest.folder_name, len(digest), path.name,
        )
        return path

    def rewrite(self, path: Path, digest: MailboxDigest) -> Path:
        """Replace an existing digest file in place (used for flag updates)."""
        if not path.exists():
            raise DigestError(f"Digest file not found: {path}")
        self._write(path, digest)
        logger.info("Rewrote digest %s", path.name)
        return path

    def _write(self, path: Path, digest: MailboxDigest) -> None:
        try:
            atomic_write_text(path, json.dumps(digest.to_dict(), indent=1, ensure_ascii=False))
        except OSError as e:
            raise DigestError(f"Failed to write digest {path}: {e}") from e

    def load(self, path: Path) -> MailboxDigest:
        """Load a digest file.

        Raises:
            DigestError: If the file is missing or not a valid digest.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return MailboxDigest.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise DigestError(f"Failed to load digest {path}: {e}") from e

    def list_digests(self, address: str | None = None, folder: str | None = None) -> list[Path]:
        """List digest files, oldest first, optionally for one account/folder."""
        if not self._digest_dir.is_dir():
            return []
        paths = sorted(self._digest_dir.glob(f"*{DIGEST_SUFFIX}"))
        if address is not None and folder is not None:
            suffix = self.suffix_for(address, folder)
            paths = [p for p in paths if p.name[STAMP_LENGTH:] == suffix]
        elif address is not None:
            prefix = f"_{safe_name(address)}_"
            paths = [p for p in paths if p.name[STAMP_LENGTH:].startswith(prefix)]
        return paths

    def find_latest(self, address: str, folder: str) -> Path | None:
        latest = self.load_latest(address, folder)
        return latest[0] if latest else None

    def load_latest(self, address: str, folder: str) -> tuple[Path, MailboxDigest] | None:
        """Load the newest digest whose contents belong to (address, folder).

        Files whose stored key differs from the one their name encodes are
        skipped, so a misnamed file is never returned for another folder.
        """
        for path in reversed(self.list_digests(address, folder)):
            digest = self.load(path)
            if digest.key == (address, folder):
                return path, digest
            logger.warning(
                "Skipping digest %s: it belongs to %s/%s, not %s/%s",
                path.name, digest.mail_address, digest.folder_name, address, folder,
            )
        return None
