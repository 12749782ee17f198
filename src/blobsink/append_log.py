from __future__ import annotations

import logging
from typing import Optional, Protocol

from blobsink.storage_client import BlobNotFoundError, CreateOutcome

logger = logging.getLogger(__name__)


class AppendLogStorage(Protocol):
    async def create_append_log(self, path: str) -> CreateOutcome: ...

    async def append_block(self, path: str, data: bytes) -> None: ...


def _line(row: str) -> bytes:
    if not row.endswith("\n"):
        row += "\n"
    return row.encode("utf-8")


class AppendLogWriter:
    """
    Appends rows to append logs that may not exist yet.

    The append is tried first. A missing log is created with an existence
    precondition, so when several writers race on the first row exactly one
    create wins and the rest see CONFLICT and simply append. Per call that is
    at most one create and two appends, with no lock anywhere.

    A header row is only written by the creator, bundled with its own row. A
    racing writer that sees CONFLICT may still land its row between the create
    and that block, so the header is not guaranteed to be the first line.
    """

    def __init__(self, storage: AppendLogStorage):
        self.storage = storage

    async def append(self, path: str, row: str, header: Optional[str] = None) -> Optional[CreateOutcome]:
        """
        Returns the outcome of the create attempt, or None when the log already existed.
        """
        data = _line(row)
        try:
            await self.storage.append_block(path, data)
            return None
        except BlobNotFoundError:
            logger.debug("append log %r missing, creating it", path)

        outcome = await self.storage.create_append_log(path)
        if outcome is CreateOutcome.CREATED and header:
            # header and first row go out as one block
            data = _line(header) + data
        # CONFLICT: another writer created it between our append and create
        await self.storage.append_block(path, data)
        return outcome
