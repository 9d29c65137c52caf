"""Deduplicated union of two digests for the same (account, folder)."""

from __future__ import annotations

import logging

from mail_digest.core.exceptions import DigestMismatchError
from mail_digest.core.models import MailboxDigest

logger = logging.getLogger(__name__)


def uid_validity_changed(old: MailboxDigest, new: MailboxDigest) -> bool:
    """True when the server reset its UID epoch between the two captures."""
    return old.uid_validity != new.uid_validity


def merge(old: MailboxDigest, new: MailboxDigest) -> MailboxDigest:
    """Combine ``old`` and ``new`` into a new digest.

    Every header of ``old`` is kept as-is. Headers of ``new`` whose id is not
    already present are appended in ``new``'s order. Message ids are the merge
    key; sequence numbers only widen ``index_range``. ``uid_validity`` and
    ``timestamp`` come from ``new``.

    Raises:
        DigestMismatchError: If the digests describe different folders.
    """
    if old.key != new.key:
        raise DigestMismatchError(
            f"Cannot merge {new.mail_address}/{new.folder_name} "
            f"into {old.mail_address}/{old.folder_name}"
        )

    known = old.ids
    added = tuple(h for h in new.headers if h.id not in known)
    logger.debug(
        "Merging %s/%s: %d existing, %d incoming, %d new",
        old.mail_address, old.folder_name, len(old), len(new), len(added),
    )

    return MailboxDigest(
        mail_address=old.mail_address,
        folder_name=old.folder_name,
        uid_validity=new.uid_validity,
        index_range=old.index_range.union(new.index_range),
        headers=old.headers + added,
        timestamp=new.timestamp,
    )
