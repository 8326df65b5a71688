"""Snapshot store - keeps the page (or an explanation) seen when a check failed."""
import asyncio
import html
import logging
import os
from datetime import datetime
from typing import Optional

from ..config import get_snapshot_dir
from ..utils.db_utils import utcnow

logger = logging.getLogger(__name__)


def placeholder_page(url: str, error: Optional[str], status_code: Optional[int], checked_at: datetime) -> bytes:
    """HTML written when the failing response carried no body."""
    reason = error or (f"HTTP {status_code} with an empty response body" if status_code else "No response")
    page = (
        "<!DOCTYPE html>\n"
        "<html><head><meta charset=\"utf-8\"><title>Check failed</title></head>\n"
        "<body>\n"
        "<h1>No response body captured</h1>\n"
        f"<p>URL: {html.escape(url)}</p>\n"
        f"<p>Checked at: {checked_at.strftime('%Y-%m-%d %H:%M:%S')} UTC</p>\n"
        f"<p>Reason: {html.escape(reason)}</p>\n"
        "</body></html>\n"
    )
    return page.encode("utf-8")


class SnapshotStore:
    """Writes failure snapshots under <base_dir>/<target_id>/.

    Stored paths are relative to base_dir so the directory can be moved or
    served statically.
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or get_snapshot_dir()

    def _write(self, target_id: int, content: bytes, checked_at: datetime) -> str:
        target_dir = os.path.join(self.base_dir, str(target_id))
        os.makedirs(target_dir, exist_ok=True)

        stamp = checked_at.strftime("%Y%m%dT%H%M%S%f")
        file_name = f"snapshot-{stamp}.html"
        suffix = 1
        # Two failures of one target within the same microsecond keep separate files
        while os.path.exists(os.path.join(target_dir, file_name)):
            file_name = f"snapshot-{stamp}-{suffix}.html"
            suffix += 1

        with open(os.path.join(target_dir, file_name), "wb") as fh:
            fh.write(content)
        return f"{target_id}/{file_name}"

    async def save(
        self,
        target_id: int,
        url: str,
        body: Optional[bytes],
        error: Optional[str] = None,
        status_code: Optional[int] = None,
        checked_at: Optional[datetime] = None,
    ) -> Optional[str]:
        """Persist the failure evidence and return its relative path.

        Returns None if the file could not be written; a missing snapshot
        never prevents the check from being recorded.
        """
        checked_at = checked_at or utcnow()
        content = body if body else placeholder_page(url, error, status_code, checked_at)
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._write, target_id, content, checked_at)
        except OSError as e:
            logger.error(f"Could not write snapshot for target {target_id}: {e}")
            return None

    def delete(self, relative_path: str) -> bool:
        """Remove a stored snapshot. Used by the retention purge."""
        full_path = os.path.join(self.base_dir, relative_path)
        try:
            os.remove(full_path)
            return True
        except FileNotFoundError:
            return False


# Global instance
snapshot_store = SnapshotStore()
