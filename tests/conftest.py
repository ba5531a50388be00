"""Shared fixtures: a controllable clock and fully wired services."""

import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from docgate.access import AccessManagementService
from docgate.audit import DownloadAuditLog
from docgate.catalog import DocumentCatalog
from docgate.config import DocGateConfig
from docgate.documents import DocumentService
from docgate.storage import FileStorage
from docgate.store import GrantStore
from docgate.verification import VerificationService

OWNER_ID = "owner-1"
OWNER_EMAIL = "owner@example.com"
REQUESTOR = "alice@example.com"


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    """Notification sink that keeps every message."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send(self, to_email: str, message: str) -> None:
        self.sent.append((to_email, message))

    def to(self, email: str) -> list[str]:
        return [m for e, m in self.sent if e == email]


@dataclass
class Services:
    config: DocGateConfig
    clock: FakeClock
    sink: RecordingSink
    grants: GrantStore
    catalog: DocumentCatalog
    storage: FileStorage
    audit: DownloadAuditLog
    documents: DocumentService
    access: AccessManagementService
    verification: VerificationService

    def upload(self, filename: str = "report.pdf", public: bool = True, content: bytes = b"%PDF-1.7 data"):
        return self.documents.upload_document(
            owner_id=OWNER_ID,
            owner_email=OWNER_EMAIL,
            filename=filename,
            content=content,
            public=public,
        )

    def otp_for(self, grant_id: str) -> str:
        return self.grants.get(grant_id).otp


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(temp_dir, clock):
    config = DocGateConfig(
        storage_dir=temp_dir / "documents",
        state_dir=temp_dir / "state",
        audit_log_path=temp_dir / "logs" / "download_audit.jsonl",
        socket_path=temp_dir / "gateway.sock",
    )
    sink = RecordingSink()
    grants = GrantStore(config.grants_path)
    catalog = DocumentCatalog(config.documents_path)
    storage = FileStorage(config.storage_dir)
    audit = DownloadAuditLog(config.audit_log_path, clock=clock)
    return Services(
        config=config,
        clock=clock,
        sink=sink,
        grants=grants,
        catalog=catalog,
        storage=storage,
        audit=audit,
        documents=DocumentService(catalog, storage, grants, clock=clock),
        access=AccessManagementService(grants, catalog, sink, clock=clock),
        verification=VerificationService(grants, catalog, audit, sink, config, clock=clock),
    )
