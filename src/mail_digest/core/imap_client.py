"""Thin IMAP session wrapper over imapclient for header fetch and flag updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from mail_digest.core.exceptions import AuthenticationError, FetchError
from mail_digest.core.models import FLAG_OPS

logger = logging.getLogger(__name__)

HEADER_FIELDS_ITEM = "BODY.PEEK[HEADER.FIELDS (DATE FROM TO CC BCC SUBJECT)]"
FETCH_ITEMS = ["UID", "FLAGS", HEADER_FIELDS_ITEM]


@dataclass(frozen=True)
class RawMessage:
    """One FETCH response entry before conversion to a HeaderRecord."""

    seq: int
    uid: int | None
    flags: tuple[str, ...]
    header_bytes: bytes


def _decode_flag(flag: Any) -> str:
    if isinstance(flag, bytes):
        return flag.decode("ascii", errors="replace")
    return str(flag)


def _header_payload(data: dict[bytes, Any]) -> bytes:
    """Pick the header literal out of a FETCH response, whatever its exact key."""
    for key, value in data.items():
        if isinstance(key, bytes) and key.upper().startswith(b"BODY[HEADER"):
            return value if isinstance(value, bytes) else b""
    return b""


class MailSession:
    """One logged-in IMAP connection with a selected folder.

    Sequence-number operations (``fetch``) drive paging; UID operations
    (``store_flags``) address individual messages.
    """

    def __init__(self, client: IMAPClient, folder: str, select_info: dict[bytes, Any]) -> None:
        self._client = client
        self._folder = folder
        self._select_info = select_info

    @classmethod
    def connect(
        cls,
        host: str,
        address: str,
        folder: str,
        *,
        password: str | None = None,
        access_token: str | None = None,
        port: int = 993,
        readonly: bool = True,
        timeout: float | None = None,
    ) -> MailSession:
        """Open a connection, authenticate and select ``folder``.

        Exactly one of ``password`` or ``access_token`` (XOAUTH2) is used.

        Raises:
            AuthenticationError: If the server rejects the credentials.
            FetchError: On connection or folder selection failure.
        """
        if not password and not access_token:
            raise AuthenticationError(f"No password or access token for {address}")

        logger.info("Connecting to %s:%d as %s", host, port, address)
        try:
            client = IMAPClient(host, port=port, ssl=True, timeout=timeout)
        except (IMAPClientError, OSError) as e:
            raise FetchError(f"Could not connect to {host}:{port}: {e}") from e

        try:
            if access_token:
                client.oauth2_login(address, access_token)
            else:
                client.login(address, password)
        except (LoginError, IMAPClientError) as e:
            cls._quiet_logout(client)
            raise AuthenticationError(f"Login failed for {address}: {e}") from e

        try:
            select_info = client.select_folder(folder, readonly=readonly)
        except (IMAPClientError, OSError) as e:
            cls._quiet_logout(client)
            raise FetchError(f"Could not select folder {folder!r}: {e}") from e

        logger.debug("Selected %s: %s", folder, select_info)
        return cls(client, folder, select_info)

    @property
    def folder(self) -> str:
        return self._folder

    def message_count(self) -> int:
        return int(self._select_info.get(b"EXISTS", 0))

    def uid_validity(self) -> int:
        return int(self._select_info.get(b"UIDVALIDITY", 0))

    def fetch(self, low: int, high: int) -> list[RawMessage]:
        """Fetch UID, FLAGS and the summary headers for sequence numbers low..high.

        Raises:
            FetchError: If the FETCH command fails.
        """
        self._client.use_uid = False
        try:
            response = self._client.fetch(f"{low}:{high}", FETCH_ITEMS)
        except (IMAPClientError, OSError) as e:
            raise FetchError(f"Fetch {low}:{high} in {self._folder!r} failed: {e}") from e
        finally:
            self._client.use_uid = True

        messages = []
        for seq in sorted(response):
            data = response[seq]
            uid = data.get(b"UID")
            messages.append(
                RawMessage(
                    seq=int(seq),
                    uid=int(uid) if uid is not None else None,
                    flags=tuple(_decode_flag(f) for f in data.get(b"FLAGS", ())),
                    header_bytes=_header_payload(data),
                )
            )
        return messages

    def store_flags(self, ids: list[int], op: str, flags: list[str]) -> None:
        """Add, remove or replace flags on messages by UID."""
        if op not in FLAG_OPS:
            raise ValueError(f"Unknown flag operation: {op}")
        if not ids:
            return
        self._client.use_uid = True
        action = {
            "add": self._client.add_flags,
            "remove": self._client.remove_flags,
            "set": self._client.set_flags,
        }[op]
        try:
            action(ids, flags)
        except (IMAPClientError, OSError) as e:
            raise FetchError(f"Storing flags on {len(ids)} messages failed: {e}") from e
        logger.info("%s flags %s on %d messages in %s", op, flags, len(ids), self._folder)

    def expunge(self) -> None:
        try:
            self._client.expunge()
        except (IMAPClientError, OSError) as e:
            raise FetchError(f"Expunge of {self._folder!r} failed: {e}") from e
        logger.info("Expunged %s", self._folder)

    def list_folders(self) -> list[str]:
        try:
            return [name for _flags, _delim, name in self._client.list_folders()]
        except (IMAPClientError, OSError) as e:
            raise FetchError(f"Listing folders failed: {e}") from e

    def disconnect(self) -> None:
        self._quiet_logout(self._client)

    @staticmethod
    def _quiet_logout(client: IMAPClient) -> None:
        try:
            client.logout()
        except (IMAPClientError, OSError) as e:
            logger.debug("Logout failed: %s", e)

    def __enter__(self) -> MailSession:
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()
