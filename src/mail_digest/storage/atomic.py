"""Whole-file replacement so readers never see a partial write."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import quote

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str, mode: int | None = None) -> None:
    """Write ``text`` to a temp file beside ``path`` and rename it into place.

    Args:
        path: Destination file.
        text: Content, written as UTF-8.
        mode: Optional permission bits applied before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Wrote %s", path)


def safe_name(text: str) -> str:
    """Percent-encode an address or folder name for use inside a file name.

    The encoding is reversible, so distinct names never share a file name.
    ``_`` is encoded too because it separates the name fields.
    """
    return quote(text, safe="@.+-").replace("_", "%5F")
