"""Pipeline orchestrator: connect → batch fetch → merge → persist."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path

from mail_digest.config.settings import MailDigestSettings
from mail_digest.core.auth import OAuth2SessionEngine, open_session
from mail_digest.core.dates import DateNormalizer
from mail_digest.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    MailDigestError,
)
from mail_digest.core.fetcher import BatchFetcher
from mail_digest.core.imap_client import MailSession
from mail_digest.core.merge import merge, uid_validity_changed
from mail_digest.core.models import Account, FetchProgress, IndexRange, MailboxDigest
from mail_digest.storage.digest_store import DigestStore

logger = logging.getLogger(__name__)

DELETED_FLAG = "\\Deleted"

SessionFactory = Callable[[Account, str, bool], MailSession]


@dataclass
class FolderResult:
    """Outcome of syncing one (account, folder) unit."""

    account: str
    folder: str
    path: Path | None = None
    headers: int = 0
    added: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    """Per-folder outcomes of a multi-account run."""

    results: list[FolderResult] = field(default_factory=list)

    @property
    def failed(self) -> list[FolderResult]:
        return [r for r in self.results if not r.ok]

    @property
    def succeeded(self) -> list[FolderResult]:
        return [r for r in self.results if r.ok]


class DigestSynchronizer:
    """Orchestrates full and incremental digest capture for IMAP folders.

    Full fetch:        sequence numbers 1..EXISTS → new digest file
    Incremental fetch: sequence numbers beyond the latest digest's upper
                       bound → merged with the latest digest → new digest file
    Flag mirroring:    STORE on the server → latest digest rewritten in place
    """

    def __init__(
        self,
        settings: MailDigestSettings | None = None,
        *,
        store: DigestStore | None = None,
        session_engine: OAuth2SessionEngine | None = None,
        session_factory: SessionFactory | None = None,
        normalizer: DateNormalizer | None = None,
        on_progress: Callable[[FetchProgress], None] | None = None,
    ) -> None:
        self._settings = settings or MailDigestSettings()
        self._store = store or DigestStore(self._settings.digest_dir)
        self._session_engine = session_engine
        self._session_factory = session_factory or self._default_session
        self._normalizer = normalizer or DateNormalizer()
        self._on_progress = on_progress

    @property
    def store(self) -> DigestStore:
        return self._store

    def _default_session(self, account: Account, folder: str, readonly: bool) -> MailSession:
        engine = None
        if account.uses_oauth2:
            if self._session_engine is None:
                self._session_engine = OAuth2SessionEngine.from_settings(self._settings)
            engine = self._session_engine
        return open_session(
            account,
            folder,
            session_engine=engine,
            readonly=readonly,
            timeout=self._settings.imap_timeout_seconds,
        )

    def _capture(
        self, session: MailSession, account: Account, folder: str, index_range: IndexRange
    ) -> MailboxDigest:
        fetcher = BatchFetcher(
            session,
            self._settings.batch_size,
            normalizer=self._normalizer,
            on_progress=self._on_progress,
        )
        headers = fetcher.fetch(index_range)
        return MailboxDigest(
            mail_address=account.address,
            folder_name=folder,
            uid_validity=session.uid_validity(),
            index_range=index_range,
            headers=tuple(headers),
        )

    def fetch_folder(self, account: Account, folder: str) -> tuple[Path, MailboxDigest]:
        """Capture every message of ``folder`` into a new digest file."""
        with self._session_factory(account, folder, True) as session:
            full_range = IndexRange(1, session.message_count())
            logger.info(
                "Full fetch of %s/%s: %d messages", account.address, folder, len(full_range)
            )
            digest = self._capture(session, account, folder, full_range)
        return self._store.save(digest), digest

    def update_folder(self, account: Account, folder: str) -> tuple[Path | None, MailboxDigest]:
        """Fetch only messages beyond the latest digest and merge them in.

        Returns:
            The path of the newly written digest (None when nothing changed)
            and the resulting digest.
        """
        path, digest, _added = self._update(account, folder)
        return path, digest

    def _update(self, account: Account, folder: str) -> tuple[Path | None, MailboxDigest, int]:
        """``update_folder`` plus the number of headers not in the previous digest."""
        latest = self._store.load_latest(account.address, folder)
        if latest is None:
            logger.info("No digest yet for %s/%s, doing a full fetch", account.address, folder)
            path, digest = self.fetch_folder(account, folder)
            return path, digest, len(digest)
        old_path, old = latest

        with self._session_factory(account, folder, True) as session:
            if session.uid_validity() != old.uid_validity:
                logger.warning(
                    "UIDVALIDITY of %s/%s changed from %d to %d since %s; "
                    "stored ids may now refer to different messages",
                    account.address, folder, old.uid_validity,
                    session.uid_validity(), old_path.name,
                )
                if self._settings.refetch_on_uid_validity_change:
                    full_range = IndexRange(1, session.message_count())
                    digest = self._capture(session, account, folder, full_range)
                    return self._store.save(digest), digest, len(digest.ids - old.ids)

            new_range = IndexRange(old.index_range.high + 1, session.message_count())
            if new_range.is_empty:
                logger.info("%s/%s is up to date (%d headers)", account.address, folder, len(old))
                return None, old, 0
            logger.info(
                "Incremental fetch of %s/%s: messages %d..%d",
                account.address, folder, new_range.low, new_range.high,
            )
            new = self._capture(session, account, folder, new_range)

        if new.is_empty:
            return None, old, 0
        merged = merge(old, new)
        added = len(merged) - len(old)
        logger.info(
            "Merged %d new headers into %s/%s (%d total)",
            added, account.address, folder, len(merged),
        )
        return self._store.save(merged), merged, added

    def merge_files(self, old_path: Path, new_path: Path) -> Path:
        """Merge two digest files into a new file stamped with the current time."""
        old = self._store.load(old_path)
        new = self._store.load(new_path)
        if uid_validity_changed(old, new):
            logger.warning(
                "UIDVALIDITY differs between %s and %s", old_path.name, new_path.name
            )
        merged = replace(merge(old, new), timestamp=datetime.now(UTC))
        return self._store.save(merged)

    def store_flags(
        self, account: Account, folder: str, ids: Iterable[int], op: str, flags: Iterable[str]
    ) -> Path | None:
        """Change flags on the server, then mirror the change into the latest digest."""
        ids = sorted(set(ids))
        flags = list(flags)
        with self._session_factory(account, folder, False) as session:
            session.store_flags(ids, op, flags)
        return self._rewrite_latest(
            account, folder, lambda digest: digest.with_flag_update(ids, op, flags)
        )

    def delete_messages(
        self, account: Account, folder: str, ids: Iterable[int], *, expunge: bool = False
    ) -> Path | None:
        """Mark messages ``\\Deleted``; with ``expunge`` also remove them for good."""
        ids = sorted(set(ids))
        with self._session_factory(account, folder, False) as session:
            session.store_flags(ids, "add", [DELETED_FLAG])
            if expunge:
                session.expunge()

        if expunge:
            return self._rewrite_latest(account, folder, lambda d: d.without_ids(ids))
        return self._rewrite_latest(
            account, folder, lambda d: d.with_flag_update(ids, "add", [DELETED_FLAG])
        )

    def _rewrite_latest(
        self,
        account: Account,
        folder: str,
        change: Callable[[MailboxDigest], MailboxDigest],
    ) -> Path | None:
        latest = self._store.load_latest(account.address, folder)
        if latest is None:
            logger.info("No local digest for %s/%s to update", account.address, folder)
            return None
        path, digest = latest
        return self._store.rewrite(path, change(digest))

    def sync_accounts(self, accounts: Iterable[Account], *, incremental: bool = True) -> SyncReport:
        """Sync every folder of every account, isolating failures per unit.

        Raises:
            ConfigurationError: Fatal; no further accounts are attempted.
        """
        report = SyncReport()
        for account in accounts:
            for folder in account.folders:
                result = FolderResult(account=account.address, folder=folder)
                report.results.append(result)
                try:
                    if incremental:
                        path, digest, result.added = self._update(account, folder)
                    else:
                        path, digest = self.fetch_folder(account, folder)
                        result.added = len(digest)
                    result.path = path
                    result.headers = len(digest)
                except ConfigurationError:
                    raise
                except AuthenticationError as e:
                    logger.error("Authentication failed for %s: %s", account.address, e)
                    result.error = str(e)
                    break
                except (MailDigestError, OSError) as e:
                    logger.error("Sync of %s/%s failed: %s", account.address, folder, e)
                    result.error = str(e)
        return report
