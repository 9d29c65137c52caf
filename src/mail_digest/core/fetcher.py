"""Batched header fetch: sequence-number slices into HeaderRecords."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from dataclasses import replace
from email.header import decode_header, make_header
from email.parser import BytesHeaderParser
from email.policy import compat32
from typing import Protocol

from mail_digest.core.dates import DateNormalizer
from mail_digest.core.exceptions import FetchError
from mail_digest.core.imap_client import RawMessage
from mail_digest.core.models import HEADER_FIELDS, FetchProgress, HeaderRecord, IndexRange

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200


class FetchSession(Protocol):
    """The part of ``MailSession`` the fetcher needs."""

    def fetch(self, low: int, high: int) -> list[RawMessage]: ...


def _decode_field(value: str) -> str:
    """Decode RFC 2047 words and unfold continuation lines."""
    text = str(make_header(decode_header(value)))
    return " ".join(text.split())


def extract_fields(header_bytes: bytes) -> dict[str, str]:
    """Extract the summary header fields, degrading each bad field to ``""``."""
    fields = dict.fromkeys(HEADER_FIELDS, "")
    if not header_bytes:
        return fields
    try:
        message = BytesHeaderParser(policy=compat32).parsebytes(header_bytes)
    except Exception as e:
        logger.debug("Unparseable header block: %s", e)
        return fields

    for name in HEADER_FIELDS:
        raw = message.get(name)
        if raw is None:
            continue
        try:
            fields[name] = _decode_field(str(raw))
        except Exception as e:
            logger.debug("Dropping undecodable %s header %r: %s", name, raw, e)
    return fields


class BatchFetcher:
    """Pages through a folder's sequence-number range in fixed-size batches.

    Batches are fetched strictly one after another on a single session. A
    failed batch aborts the whole fetch; a bad field only blanks that field.
    """

    def __init__(
        self,
        session: FetchSession,
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        normalizer: DateNormalizer | None = None,
        on_progress: Callable[[FetchProgress], None] | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        self._session = session
        self._batch_size = batch_size
        self._normalizer = normalizer or DateNormalizer()
        self._on_progress = on_progress

    def convert(self, raw: RawMessage) -> HeaderRecord | None:
        """Convert one raw message, or None if it carries no usable UID."""
        if not raw.uid or raw.uid <= 0:
            logger.warning("Skipping message #%d without a UID", raw.seq)
            return None
        return HeaderRecord.from_raw(
            raw.uid,
            extract_fields(raw.header_bytes),
            raw.flags,
            self._normalizer,
        )

    def iter_batches(self, index_range: IndexRange) -> Generator[list[HeaderRecord], None, None]:
        """Yield the converted records of each slice, in sequence order.

        Raises:
            FetchError: If any batch fails; nothing after it is fetched.
        """
        progress = FetchProgress(total=len(index_range), current_stage="fetch")
        for chunk in index_range.slices(self._batch_size):
            try:
                raw_messages = self._session.fetch(chunk.low, chunk.high)
            except FetchError:
                raise
            except Exception as e:
                raise FetchError(f"Batch {chunk.low}:{chunk.high} failed: {e}") from e

            records = [r for r in map(self.convert, raw_messages) if r is not None]
            progress.batch_size = len(chunk)
            progress.fetched += len(chunk)
            logger.info(
                "Fetched %d headers (%d/%d, %.1f%%)",
                len(records), progress.fetched, progress.total, progress.percent,
            )
            if self._on_progress:
                self._on_progress(replace(progress))
            yield records

    def fetch(self, index_range: IndexRange) -> list[HeaderRecord]:
        """Fetch every message in ``index_range``, keeping the first of any repeated UID."""
        records: list[HeaderRecord] = []
        seen: set[int] = set()
        for batch in self.iter_batches(index_range):
            for record in batch:
                if record.id in seen:
                    logger.warning("Duplicate UID %d in fetch response, ignoring", record.id)
                    continue
                seen.add(record.id)
                records.append(record)
        return records
