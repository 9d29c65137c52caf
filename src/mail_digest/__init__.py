"""Mail Digest - Incrementally cached IMAP header snapshots."""

from mail_digest.core.dates import DateNormalizer, DatePattern
from mail_digest.core.merge import merge
from mail_digest.core.models import (
    Account,
    FetchProgress,
    HeaderRecord,
    IndexRange,
    MailboxDigest,
    TokenSet,
)
from mail_digest.pipeline.synchronizer import DigestSynchronizer

__all__ = [
    "Account",
    "DateNormalizer",
    "DatePattern",
    "DigestSynchronizer",
    "FetchProgress",
    "HeaderRecord",
    "IndexRange",
    "MailboxDigest",
    "TokenSet",
    "merge",
]
