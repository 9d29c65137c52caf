"""Test doubles and builders shared across test modules."""

from __future__ import annotations

from datetime import UTC, datetime

from mail_digest.core.imap_client import RawMessage
from mail_digest.core.models import HeaderRecord, IndexRange, MailboxDigest


def header_bytes(uid: int, date: str = "Mon, 15 Jan 2024 10:30:00 -0500") -> bytes:
    return (
        f"Date: {date}\r\n"
        f"From: Sender {uid} <sender{uid}@example.com>\r\n"
        f"To: me@example.com\r\n"
        f"Subject: Message {uid}\r\n\r\n"
    ).encode()


class FakeMailSession:
    """In-memory stand-in for ``MailSession`` over a list of messages.

    Sequence number ``n`` refers to the n-th entry of ``uids``.
    """

    def __init__(
        self, uids: list[int], uid_validity: int = 1000, fail_on_call: int | None = None
    ) -> None:
        self.uids = list(uids)
        self._uid_validity = uid_validity
        self.fail_on_call = fail_on_call
        self.fetch_calls: list[tuple[int, int]] = []
        self.store_calls: list[tuple[list[int], str, list[str]]] = []
        self.expunged = False
        self.closed = False

    def message_count(self) -> int:
        return len(self.uids)

    def uid_validity(self) -> int:
        return self._uid_validity

    def fetch(self, low: int, high: int) -> list[RawMessage]:
        self.fetch_calls.append((low, high))
        if self.fail_on_call is not None and len(self.fetch_calls) == self.fail_on_call:
            raise ConnectionResetError("connection dropped")
        return [
            RawMessage(seq, uid, ("\\Seen",), header_bytes(uid))
            for seq, uid in enumerate(self.uids, start=1)
            if low <= seq <= high
        ]

    def store_flags(self, ids: list[int], op: str, flags: list[str]) -> None:
        self.store_calls.append((list(ids), op, list(flags)))

    def expunge(self) -> None:
        self.expunged = True

    def disconnect(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeMailSession:
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()


def make_digest(
    ids: list[int],
    *,
    low: int = 1,
    high: int | None = None,
    address: str = "me@example.com",
    folder: str = "INBOX",
    uid_validity: int = 1000,
    timestamp: datetime | None = None,
) -> MailboxDigest:
    return MailboxDigest(
        mail_address=address,
        folder_name=folder,
        uid_validity=uid_validity,
        index_range=IndexRange(low, high if high is not None else low + len(ids) - 1),
        headers=tuple(HeaderRecord(id=i, subject=f"Message {i}") for i in ids),
        timestamp=timestamp or datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
    )
