"""Grant repository with per-row locking.

Grants live in memory keyed by id. When a path is configured, every save
writes an atomic JSON snapshot which is reloaded on start. Reads hand out
copies, so a change only lands through ``save``.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from docgate.models import AccessGrant, AccessStatus

logger = logging.getLogger(__name__)


def write_snapshot(path: Path, records: list[dict[str, Any]]) -> None:
    """Atomic write: temp file then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    temp_path.write_text(json.dumps(records, indent=2))
    temp_path.chmod(0o600)
    temp_path.rename(path)


def read_snapshot(path: Path | None) -> list[dict[str, Any]]:
    if path is None or not path.exists():
        return []
    return json.loads(path.read_text())


class GrantStore:
    """Access grants, one row per request instance."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._grants: dict[str, AccessGrant] = {}
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        for record in read_snapshot(path):
            grant = AccessGrant.model_validate(record)
            self._grants[grant.id] = grant
        if self._grants:
            logger.info(f"Loaded {len(self._grants)} access grants from {path}")

    def _flush(self) -> None:
        if self.path is None:
            return
        write_snapshot(
            self.path,
            [grant.model_dump(mode="json") for grant in self._grants.values()],
        )

    @asynccontextmanager
    async def transaction(self, key: str) -> AsyncIterator[None]:
        """Serialize read-modify-write cycles on one key (usually a grant id).

        A key's lock is dropped once no holder or waiter is left on it.
        """
        lock, users = self._locks.get(key, (asyncio.Lock(), 0))
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def add(self, grant: AccessGrant) -> AccessGrant:
        if grant.id in self._grants:
            raise ValueError(f"Duplicate grant id: {grant.id}")
        self._grants[grant.id] = grant.model_copy(deep=True)
        self._flush()
        return grant

    def save(self, grant: AccessGrant) -> AccessGrant:
        self._grants[grant.id] = grant.model_copy(deep=True)
        self._flush()
        return grant

    def get(self, grant_id: str) -> AccessGrant | None:
        grant = self._grants.get(grant_id)
        return grant.model_copy(deep=True) if grant else None

    def _select(self, predicate) -> Iterable[AccessGrant]:
        return (g.model_copy(deep=True) for g in self._grants.values() if predicate(g))

    def find_by_token_and_email(self, access_token: str, email: str) -> AccessGrant | None:
        """Exact match on both halves; email comparison is case-sensitive."""
        return next(
            self._select(lambda g: g.access_token == access_token and g.requestor_email == email),
            None,
        )

    def find_by_access_token(self, access_token: str) -> AccessGrant | None:
        return next(self._select(lambda g: g.access_token == access_token), None)

    def find_by_session_token(self, session_token: str) -> AccessGrant | None:
        return next(
            self._select(lambda g: g.is_verified and g.download_session_token == session_token),
            None,
        )

    def find_pending(self, document_id: str, email: str) -> AccessGrant | None:
        return next(
            self._select(
                lambda g: g.document_id == document_id
                and g.requestor_email == email
                and g.status == AccessStatus.PENDING
            ),
            None,
        )

    def list_for_document(
        self,
        document_id: str,
        statuses: Iterable[AccessStatus] | None = None,
    ) -> list[AccessGrant]:
        wanted = set(statuses) if statuses is not None else None
        grants = self._select(
            lambda g: g.document_id == document_id and (wanted is None or g.status in wanted)
        )
        return sorted(grants, key=lambda g: g.requested_at, reverse=True)

    def list_all(self) -> list[AccessGrant]:
        return list(self._select(lambda g: True))
