"""Tests for the download audit log."""

import json
from datetime import datetime, timedelta

from conftest import FakeClock
from docgate.audit import DownloadAuditLog
from docgate.models import AccessGrant, DownloadAction


def make_grant(grant_id="g-1", document_id="d-1") -> AccessGrant:
    return AccessGrant(
        id=grant_id,
        document_id=document_id,
        requestor_email="alice@example.com",
        request_purpose="audit",
        access_token="11111111-2222-3333-4444-555555555555",
        requested_at=datetime(2026, 1, 1),
    )


class TestDownloadAuditLog:
    """Test audit persistence and queries."""

    def test_creates_log_file(self, temp_dir):
        log_path = temp_dir / "logs" / "audit.jsonl"
        audit = DownloadAuditLog(log_path)

        audit.record(make_grant(), DownloadAction.OTP_REQUESTED, "sent")

        assert log_path.exists()

    def test_appends_json_lines(self, temp_dir):
        log_path = temp_dir / "audit.jsonl"
        audit = DownloadAuditLog(log_path)
        grant = make_grant()

        audit.record(grant, DownloadAction.SESSION_CREATED, "one")
        audit.record(grant, DownloadAction.OTP_REQUESTED, "two")
        audit.record(
            grant,
            DownloadAction.DOWNLOAD_COMPLETED,
            "three",
            ip_address="10.0.0.1",
            user_agent="curl",
            bytes_downloaded=42,
        )

        lines = log_path.read_text().strip().split("\n")
        assert len(lines) == 3
        entry = json.loads(lines[-1])
        assert entry["action"] == "download_completed"
        assert entry["access_grant_id"] == "g-1"
        assert entry["document_id"] == "d-1"
        assert entry["bytes_downloaded"] == 42
        assert entry["ip_address"] == "10.0.0.1"

    def test_reloads_on_start(self, temp_dir):
        log_path = temp_dir / "audit.jsonl"
        DownloadAuditLog(log_path).record(make_grant(), DownloadAction.OTP_VERIFIED, "ok")

        reopened = DownloadAuditLog(log_path)
        assert [e.action for e in reopened.list_for_grant("g-1")] == [DownloadAction.OTP_VERIFIED]

    def test_skips_malformed_lines(self, temp_dir):
        log_path = temp_dir / "audit.jsonl"
        DownloadAuditLog(log_path).record(make_grant(), DownloadAction.OTP_VERIFIED, "ok")
        with open(log_path, "a") as f:
            f.write("not json\n")

        assert len(DownloadAuditLog(log_path).list_for_grant("g-1")) == 1

    def test_document_listing_newest_first_and_paged(self, temp_dir):
        clock = FakeClock()
        audit = DownloadAuditLog(temp_dir / "audit.jsonl", clock=clock)
        for i in range(5):
            audit.record(make_grant(f"g-{i}"), DownloadAction.OTP_REQUESTED, f"event {i}")
            clock.advance(minutes=1)
        audit.record(make_grant("other", document_id="d-2"), DownloadAction.OTP_REQUESTED, "elsewhere")

        page = audit.list_for_document("d-1", page=1, limit=2)
        assert page.total == 5
        assert page.total_pages == 3
        assert [e.details for e in page.data] == ["event 4", "event 3"]
        assert page.data[0].created_at == datetime(2026, 1, 1, 12, 0) + timedelta(minutes=4)

    def test_write_failure_is_swallowed(self, temp_dir):
        log_path = temp_dir / "audit.jsonl"
        audit = DownloadAuditLog(log_path)
        log_path.mkdir()

        assert audit.record(make_grant(), DownloadAction.DOWNLOAD_FAILED, "boom") is None
        assert audit.list_for_grant("g-1") == []
