"""Append-only download audit log.

Entries are written as JSON lines and indexed in memory by grant id and
document id. Past entries are never mutated. Writing is best-effort: a
failure is logged and never reaches the caller.
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable

from docgate.models import AccessGrant, DownloadAction, DownloadAuditEntry, Page, utcnow

logger = logging.getLogger(__name__)


class DownloadAuditLog:
    """Append-only audit log keyed by grant, queryable by document."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow):
        self.path = path
        self.clock = clock
        self._by_grant: dict[str, list[DownloadAuditEntry]] = {}
        self._by_document: dict[str, list[DownloadAuditEntry]] = {}
        self._ensure_dir()
        self._load()

    def _ensure_dir(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    self._index(DownloadAuditEntry.model_validate_json(line))
                except ValueError:
                    logger.warning(f"Skipping malformed audit line in {self.path}")

    def _index(self, entry: DownloadAuditEntry) -> None:
        self._by_grant.setdefault(entry.access_grant_id, []).append(entry)
        self._by_document.setdefault(entry.document_id, []).append(entry)

    def _append(self, entry: DownloadAuditEntry) -> None:
        with open(self.path, "a") as f:
            f.write(entry.model_dump_json() + "\n")

    def record(
        self,
        grant: AccessGrant,
        action: DownloadAction,
        details: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        bytes_downloaded: int | None = None,
    ) -> DownloadAuditEntry | None:
        """Write an audit entry. Returns None if the write failed."""
        try:
            entry = DownloadAuditEntry(
                id=str(uuid.uuid4()),
                access_grant_id=grant.id,
                document_id=grant.document_id,
                requestor_email=grant.requestor_email,
                action=action,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                bytes_downloaded=bytes_downloaded,
                created_at=self.clock(),
            )
            self._append(entry)
        except Exception as e:
            logger.error(f"Failed to create audit log: {e}", exc_info=True)
            return None

        self._index(entry)
        logger.debug(f"Audit: {action.value} grant={grant.id} doc={grant.document_id}")
        return entry

    def list_for_grant(self, grant_id: str) -> list[DownloadAuditEntry]:
        return list(self._by_grant.get(grant_id, []))

    def list_for_document(
        self,
        document_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Page[DownloadAuditEntry]:
        """Newest first; entries written in the same instant keep reverse write order."""
        entries = sorted(
            reversed(self._by_document.get(document_id, [])),
            key=lambda e: e.created_at,
            reverse=True,
        )
        return Page[DownloadAuditEntry].build(entries, page, limit)
