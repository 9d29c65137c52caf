"""Frozen dataclasses for the Mail Digest domain model."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from mail_digest.core.dates import DateNormalizer

DIGEST_FORMAT = "mail-digest/1"
TOKEN_FORMAT = "mail-digest-token/1"

HEADER_FIELDS = ("date", "from", "to", "cc", "bcc", "subject")

FLAG_OPS = ("add", "remove", "set")


def _ordered_flags(flags: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate flags while keeping first-seen order."""
    return tuple(dict.fromkeys(flags))


@dataclass(frozen=True)
class HeaderRecord:
    """Metadata of one message, captured at fetch time.

    ``parsed_year`` and ``parsed_epoch`` are either both set or both None.
    """

    id: int
    date_raw: str = ""
    sender: str = ""
    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    flags: tuple[str, ...] = field(default_factory=tuple)
    parsed_year: int | None = None
    parsed_epoch: int | None = None

    def __post_init__(self) -> None:
        if self.id <= 0:
            raise ValueError(f"Message id must be positive, got {self.id}")
        if (self.parsed_year is None) != (self.parsed_epoch is None):
            raise ValueError(
                f"Message {self.id}: parsed_year and parsed_epoch must be set together"
            )
        object.__setattr__(self, "flags", _ordered_flags(self.flags))

    @classmethod
    def from_raw(
        cls,
        uid: int,
        fields: Mapping[str, str],
        flags: Iterable[str] = (),
        normalizer: DateNormalizer | None = None,
    ) -> HeaderRecord:
        """Build a record from decoded header fields keyed by lowercase name."""
        normalizer = normalizer or DateNormalizer()
        date_raw = fields.get("date", "")
        parsed = normalizer.year_and_epoch(date_raw)
        year, epoch = parsed if parsed else (None, None)
        return cls(
            id=uid,
            date_raw=date_raw,
            sender=fields.get("from", ""),
            to=fields.get("to", ""),
            cc=fields.get("cc", ""),
            bcc=fields.get("bcc", ""),
            subject=fields.get("subject", ""),
            flags=tuple(flags),
            parsed_year=year,
            parsed_epoch=epoch,
        )

    @property
    def has_date(self) -> bool:
        return self.parsed_epoch is not None

    def with_flags(self, flags: Iterable[str]) -> HeaderRecord:
        return replace(self, flags=tuple(flags))

    def add_flags(self, flags: Iterable[str]) -> HeaderRecord:
        return self.with_flags((*self.flags, *flags))

    def remove_flags(self, flags: Iterable[str]) -> HeaderRecord:
        dropped = set(flags)
        return self.with_flags(f for f in self.flags if f not in dropped)

    def apply_flag_op(self, op: str, flags: Iterable[str]) -> HeaderRecord:
        """Apply an ``add``/``remove``/``set`` flag operation."""
        if op == "add":
            return self.add_flags(flags)
        if op == "remove":
            return self.remove_flags(flags)
        if op == "set":
            return self.with_flags(flags)
        raise ValueError(f"Unknown flag operation: {op}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date_raw": self.date_raw,
            "from": self.sender,
            "to": self.to,
            "cc": self.cc,
            "bcc": self.bcc,
            "subject": self.subject,
            "flags": list(self.flags),
            "parsed_year": self.parsed_year,
            "parsed_epoch": self.parsed_epoch,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HeaderRecord:
        return cls(
            id=int(data["id"]),
            date_raw=data.get("date_raw", ""),
            sender=data.get("from", ""),
            to=data.get("to", ""),
            cc=data.get("cc", ""),
            bcc=data.get("bcc", ""),
            subject=data.get("subject", ""),
            flags=tuple(data.get("flags", ())),
            parsed_year=data.get("parsed_year"),
            parsed_epoch=data.get("parsed_epoch"),
        )


@dataclass(frozen=True)
class IndexRange:
    """Inclusive range of IMAP sequence numbers covered by a fetch."""

    low: int
    high: int

    def __post_init__(self) -> None:
        if self.low < 1:
            raise ValueError(f"Sequence numbers start at 1, got low={self.low}")

    @property
    def is_empty(self) -> bool:
        return self.high < self.low

    def __len__(self) -> int:
        return max(0, self.high - self.low + 1)

    def contains(self, other: IndexRange) -> bool:
        if other.is_empty:
            return True
        return self.low <= other.low and other.high <= self.high

    def union(self, other: IndexRange) -> IndexRange:
        if other.is_empty:
            return self
        if self.is_empty:
            return other
        return IndexRange(min(self.low, other.low), max(self.high, other.high))

    def slices(self, size: int) -> list[IndexRange]:
        """Split into consecutive sub-ranges of at most ``size`` numbers."""
        if size <= 0:
            raise ValueError(f"Slice size must be positive, got {size}")
        return [
            IndexRange(start, min(start + size - 1, self.high))
            for start in range(self.low, self.high + 1, size)
        ]


@dataclass(frozen=True)
class MailboxDigest:
    """Point-in-time snapshot of one (account, folder) header listing."""

    mail_address: str
    folder_name: str
    uid_validity: int
    index_range: IndexRange
    headers: tuple[HeaderRecord, ...] = field(default_factory=tuple)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", tuple(self.headers))
        seen: set[int] = set()
        for header in self.headers:
            if header.id in seen:
                raise ValueError(
                    f"Duplicate message id {header.id} in digest "
                    f"{self.mail_address}/{self.folder_name}"
                )
            seen.add(header.id)

    @property
    def key(self) -> tuple[str, str]:
        return (self.mail_address, self.folder_name)

    @property
    def ids(self) -> frozenset[int]:
        return frozenset(h.id for h in self.headers)

    @property
    def is_empty(self) -> bool:
        return not self.headers

    def __len__(self) -> int:
        return len(self.headers)

    def get(self, message_id: int) -> HeaderRecord | None:
        for header in self.headers:
            if header.id == message_id:
                return header
        return None

    def with_headers(self, headers: Iterable[HeaderRecord]) -> MailboxDigest:
        return replace(self, headers=tuple(headers))

    def with_flag_update(
        self, ids: Iterable[int], op: str, flags: Iterable[str]
    ) -> MailboxDigest:
        """Return a copy whose matching headers carry the updated flags."""
        if op not in FLAG_OPS:
            raise ValueError(f"Unknown flag operation: {op}")
        targets = set(ids)
        flags = tuple(flags)
        return self.with_headers(
            h.apply_flag_op(op, flags) if h.id in targets else h for h in self.headers
        )

    def without_ids(self, ids: Iterable[int]) -> MailboxDigest:
        dropped = set(ids)
        return self.with_headers(h for h in self.headers if h.id not in dropped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": DIGEST_FORMAT,
            "mail_address": self.mail_address,
            "folder_name": self.folder_name,
            "uid_validity": self.uid_validity,
            "index_range": [self.index_range.low, self.index_range.high],
            "timestamp": self.timestamp.isoformat(),
            "headers": [h.to_dict() for h in self.headers],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MailboxDigest:
        if data.get("format") != DIGEST_FORMAT:
            raise ValueError(f"Unsupported digest format: {data.get('format')!r}")
        low, high = data["index_range"]
        return cls(
            mail_address=data["mail_address"],
            folder_name=data["folder_name"],
            uid_validity=int(data["uid_validity"]),
            index_range=IndexRange(int(low), int(high)),
            headers=tuple(HeaderRecord.from_dict(h) for h in data.get("headers", [])),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class TokenSet:
    """OAuth2 tokens for one account. Always replaced as a whole."""

    access_token: str
    refresh_token: str | None = None
    expires_at: int = 0

    def is_valid(self, now: float, skew: int = 60) -> bool:
        """True when the token outlives ``now`` by more than ``skew`` seconds."""
        return self.expires_at - now > skew

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": TOKEN_FORMAT,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokenSet:
        if data.get("format") != TOKEN_FORMAT:
            raise ValueError(f"Unsupported token format: {data.get('format')!r}")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=int(data["expires_at"]),
        )


@dataclass(frozen=True)
class Account:
    """One remote mailbox account as read from the accounts file."""

    name: str
    address: str
    host: str
    port: int = 993
    auth: str = "password"
    password: str | None = field(default=None, repr=False)
    folders: tuple[str, ...] = ("INBOX",)

    @property
    def uses_oauth2(self) -> bool:
        return self.auth == "oauth2"


@dataclass
class FetchProgress:
    """Mutable progress tracker for batch fetch reporting."""

    total: int = 0
    fetched: int = 0
    batch_size: int = 0
    current_stage: str = "idle"

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return self.fetched * 100.0 / self.total
