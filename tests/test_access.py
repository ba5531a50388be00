"""Tests for the access grant lifecycle."""

import asyncio
from datetime import timedelta

import pytest

from conftest import OWNER_EMAIL, OWNER_ID, REQUESTOR
from docgate.errors import BadRequestError, ConflictError, NotFoundError
from docgate.models import AccessStatus, AuditAction, VisibilityStatus


async def submit(services, document_id, email=REQUESTOR, purpose="Due diligence"):
    return await services.access.submit_access_request(document_id, email, purpose)


async def approved(services, document_id, email=REQUESTOR, days=7):
    submission = await submit(services, document_id, email)
    await services.access.approve_access_request(
        submission.id, services.clock() + timedelta(days=days), "Enjoy"
    )
    return submission


class TestSubmitAccessRequest:
    """Test requestor submission."""

    @pytest.mark.asyncio
    async def test_creates_pending_grant(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)

        assert submission.status == AccessStatus.PENDING
        assert submission.filename == "report.pdf"
        assert submission.retrieval_page_url.endswith(f"/request-status/{submission.request_uuid}")

        grant = services.grants.get(submission.id)
        assert grant.access_token == submission.request_uuid
        assert grant.requestor_name == REQUESTOR

    @pytest.mark.asyncio
    async def test_notifies_requestor_and_owner(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)

        assert submission.request_uuid in services.sink.to(REQUESTOR)[0]
        assert "Purpose: Due diligence" in services.sink.to(OWNER_EMAIL)[0]

    @pytest.mark.asyncio
    async def test_hidden_document_not_found(self, services):
        doc = services.upload(public=False)
        with pytest.raises(NotFoundError):
            await submit(services, doc.id)

    @pytest.mark.asyncio
    async def test_unknown_document_not_found(self, services):
        with pytest.raises(NotFoundError):
            await submit(services, "missing")

    @pytest.mark.asyncio
    async def test_duplicate_pending_conflicts(self, services):
        doc = services.upload()
        await submit(services, doc.id)
        with pytest.raises(ConflictError):
            await submit(services, doc.id)

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_create_one_grant(self, services):
        doc = services.upload()

        results = await asyncio.gather(
            submit(services, doc.id),
            submit(services, doc.id),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == 1
        assert len(services.grants.list_for_document(doc.id)) == 1

    @pytest.mark.asyncio
    async def test_other_email_can_request(self, services):
        doc = services.upload()
        await submit(services, doc.id)
        await submit(services, doc.id, email="bob@example.com")
        assert len(services.grants.list_for_document(doc.id)) == 2

    @pytest.mark.asyncio
    async def test_resubmit_after_decision(self, services):
        doc = services.upload()
        first = await submit(services, doc.id)
        await services.access.deny_access_request(first.id, "No")

        second = await submit(services, doc.id)
        assert second.request_uuid != first.request_uuid

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_submission(self, services):
        class Broken:
            async def send(self, to_email, message):
                raise RuntimeError("smtp down")

        services.access.notifier = Broken()
        doc = services.upload()
        submission = await submit(services, doc.id)
        assert services.grants.get(submission.id).status == AccessStatus.PENDING


class TestRequestStatus:
    """Test status lookup by request UUID."""

    @pytest.mark.asyncio
    async def test_pending_has_no_access_url(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)

        status = services.access.get_request_status(submission.request_uuid)
        assert status.status == AccessStatus.PENDING
        assert status.owner_email == OWNER_EMAIL
        assert status.access_url is None

    @pytest.mark.asyncio
    async def test_active_has_access_url(self, services):
        doc = services.upload()
        submission = await approved(services, doc.id)

        status = services.access.get_request_status(submission.request_uuid)
        assert status.access_url.endswith(f"/access-token/{submission.request_uuid}")
        assert status.approval_message == "Enjoy"

    def test_unknown_uuid(self, services):
        with pytest.raises(NotFoundError):
            services.access.get_request_status("00000000-0000-0000-0000-000000000000")


class TestOwnerDecisions:
    """Test approve / deny / revoke."""

    @pytest.mark.asyncio
    async def test_approve_sets_expiry(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)
        expiry = services.clock() + timedelta(days=3)

        summary = await services.access.approve_access_request(submission.id, expiry.isoformat())

        assert summary.status == AccessStatus.APPROVED
        assert summary.expiry_date == expiry
        assert summary.is_active
        assert summary.action_completed_at == services.clock()

    @pytest.mark.asyncio
    async def test_approve_accepts_timezone_aware_iso(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)

        summary = await services.access.approve_access_request(submission.id, "2026-06-01T12:00:00+02:00")
        assert summary.expiry_date.hour == 10
        assert summary.expiry_date.tzinfo is None

    @pytest.mark.asyncio
    async def test_approve_past_expiry_rejected(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)

        with pytest.raises(BadRequestError, match="future"):
            await services.access.approve_access_request(submission.id, services.clock())
        assert services.grants.get(submission.id).status == AccessStatus.PENDING

    @pytest.mark.asyncio
    async def test_approve_garbage_date_rejected(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)
        with pytest.raises(BadRequestError):
            await services.access.approve_access_request(submission.id, "next tuesday")

    @pytest.mark.asyncio
    async def test_approve_twice_rejected(self, services):
        doc = services.upload()
        submission = await approved(services, doc.id)
        with pytest.raises(BadRequestError, match="status approved"):
            await services.access.approve_access_request(submission.id, services.clock() + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_deny_records_reason(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)

        summary = await services.access.deny_access_request(submission.id, "Not a customer")

        assert summary.status == AccessStatus.DENIED
        assert summary.denial_reason == "Not a customer"
        assert "Reason: Not a customer" in services.sink.to(REQUESTOR)[-1]

    @pytest.mark.asyncio
    async def test_deny_approved_rejected(self, services):
        doc = services.upload()
        submission = await approved(services, doc.id)
        with pytest.raises(BadRequestError):
            await services.access.deny_access_request(submission.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("decide", ["pending", "approved", "denied", "revoked"])
    async def test_revoke_from_any_state(self, services, decide):
        doc = services.upload()
        submission = await submit(services, doc.id)
        if decide == "approved":
            await services.access.approve_access_request(submission.id, services.clock() + timedelta(days=1))
        elif decide == "denied":
            await services.access.deny_access_request(submission.id)
        elif decide == "revoked":
            await services.access.revoke_access_grant(submission.id)

        summary = await services.access.revoke_access_grant(submission.id, "Project ended")

        assert summary.status == AccessStatus.REVOKED
        assert not summary.is_active
        assert services.grants.get(submission.id).revocation_message == "Project ended"

    @pytest.mark.asyncio
    async def test_decision_scoped_to_owner(self, services):
        doc = services.upload()
        submission = await submit(services, doc.id)
        with pytest.raises(NotFoundError):
            await services.access.approve_access_request(
                submission.id, services.clock() + timedelta(days=1), owner_id="someone-else"
            )

    @pytest.mark.asyncio
    async def test_unknown_grant(self, services):
        with pytest.raises(NotFoundError):
            await services.access.deny_access_request("missing")


class TestBulkRevoke:
    """Test revoking every active grant on a document."""

    @pytest.mark.asyncio
    async def test_revokes_active_and_leaves_expired(self, services):
        doc = services.upload()
        short = await approved(services, doc.id, email="short@example.com", days=1)
        long = await approved(services, doc.id, email="long@example.com", days=30)
        pending = await submit(services, doc.id, email="pending@example.com")

        services.clock.advance(days=2)
        revoked = await services.access.bulk_revoke_access(doc.id, "Closing data room")

        assert [s.id for s in revoked] == [long.id]
        assert services.grants.get(long.id).status == AccessStatus.REVOKED
        assert services.grants.get(short.id).status == AccessStatus.APPROVED
        assert services.grants.get(pending.id).status == AccessStatus.PENDING

    @pytest.mark.asyncio
    async def test_nothing_to_revoke(self, services):
        doc = services.upload()
        assert await services.access.bulk_revoke_access(doc.id) == []


class TestListings:
    """Test owner-side listings and the decision trail."""

    @pytest.mark.asyncio
    async def test_pending_list_newest_first(self, services):
        doc = services.upload()
        first = await submit(services, doc.id, email="a@example.com")
        services.clock.advance(minutes=1)
        second = await submit(services, doc.id, email="b@example.com")

        page = services.access.list_access_requests(OWNER_ID)
        assert [g.id for g in page.data] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_pending_list_filters(self, services):
        report = services.upload("report.pdf")
        sheet = services.upload("numbers.xlsx")
        await submit(services, report.id, email="alice@example.com")
        await submit(services, sheet.id, email="bob@example.com")

        by_email = services.access.list_access_requests(OWNER_ID, search_email="ALICE")
        assert [g.requestor_email for g in by_email.data] == ["alice@example.com"]

        by_file = services.access.list_access_requests(OWNER_ID, filter_filename="numbers")
        assert [g.filename for g in by_file.data] == ["numbers.xlsx"]

    @pytest.mark.asyncio
    async def test_other_owner_sees_nothing(self, services):
        doc = services.upload()
        await submit(services, doc.id)
        assert services.access.list_access_requests("someone-else").total == 0

    @pytest.mark.asyncio
    async def test_history_excludes_pending(self, services):
        doc = services.upload()
        await submit(services, doc.id, email="a@example.com")
        denied = await submit(services, doc.id, email="b@example.com")
        await services.access.deny_access_request(denied.id)
        grant = await approved(services, doc.id, email="c@example.com")

        history = services.access.list_access_request_history(OWNER_ID)
        assert {g.id for g in history.data} == {denied.id, grant.id}

        only_denied = services.access.list_access_request_history(OWNER_ID, filter_status=AccessStatus.DENIED)
        assert [g.id for g in only_denied.data] == [denied.id]

    @pytest.mark.asyncio
    async def test_grant_buckets(self, services):
        doc = services.upload()
        active = await approved(services, doc.id, email="a@example.com", days=10)
        expired = await approved(services, doc.id, email="b@example.com", days=1)
        revoked = await approved(services, doc.id, email="c@example.com")
        await services.access.revoke_access_grant(revoked.id)
        await submit(services, doc.id, email="d@example.com")

        services.clock.advance(days=2)
        buckets = services.access.get_access_grants_for_document(doc.id)

        assert [g.id for g in buckets.active] == [active.id]
        assert [g.id for g in buckets.expired] == [expired.id]
        assert [g.id for g in buckets.revoked] == [revoked.id]

    @pytest.mark.asyncio
    async def test_audit_trail_follows_status(self, services):
        doc = services.upload()
        denied = await submit(services, doc.id, email="a@example.com")
        await services.access.deny_access_request(denied.id)
        services.clock.advance(minutes=5)
        grant = await approved(services, doc.id, email="b@example.com")
        services.clock.advance(minutes=5)
        await services.access.revoke_access_grant(grant.id, "Done")

        trail = services.access.get_audit_trail(OWNER_ID)

        assert [(e.id, e.action) for e in trail.data] == [
            (grant.id, AuditAction.REQUEST_REVOKED),
            (denied.id, AuditAction.REQUEST_DENIED),
        ]
        assert trail.data[0].details == "Done"
        assert trail.data[1].details == "No reason provided"


class TestDocumentLifecycle:
    """Test owner document management around grants."""

    @pytest.mark.asyncio
    async def test_delete_blocked_by_active_grant(self, services):
        doc = services.upload()
        submission = await approved(services, doc.id)

        with pytest.raises(BadRequestError, match="Revoke all access"):
            services.documents.delete_document(doc.id, OWNER_ID)

        await services.access.revoke_access_grant(submission.id)
        services.documents.delete_document(doc.id, OWNER_ID)
        assert services.catalog.find_document(doc.id) is None

    @pytest.mark.asyncio
    async def test_delete_allowed_once_grant_expired(self, services):
        doc = services.upload()
        await approved(services, doc.id, days=1)
        services.clock.advance(days=2)

        services.documents.delete_document(doc.id, OWNER_ID)
        assert services.catalog.find_document(doc.id, include_deleted=True).is_deleted

    def test_delete_removes_file(self, services):
        doc = services.upload()
        path = services.catalog.find_document(doc.id).storage_path

        services.documents.delete_document(doc.id, OWNER_ID)
        with pytest.raises(OSError):
            services.storage.read_file(path)

    def test_deleted_document_cannot_change_visibility(self, services):
        doc = services.upload()
        services.documents.delete_document(doc.id, OWNER_ID)
        with pytest.raises(BadRequestError, match="deleted"):
            services.documents.update_visibility(doc.id, VisibilityStatus.PUBLIC, OWNER_ID)

    @pytest.mark.parametrize("filename", ["../../../tmp/evil.pdf", "nested/report.pdf", "..\\evil.pdf", ".."])
    def test_upload_rejects_path_components(self, services, filename):
        with pytest.raises(BadRequestError, match="path components"):
            services.upload(filename)
        assert services.documents.list_owner_documents(OWNER_ID) == []

    def test_visibility_toggle(self, services):
        doc = services.upload(public=False)
        summary = services.documents.update_visibility(doc.id, VisibilityStatus.PUBLIC, OWNER_ID)
        assert summary.visibility_status == VisibilityStatus.PUBLIC
        assert services.catalog.find_public_document(doc.id) is not None

    @pytest.mark.asyncio
    async def test_owner_listing_counts_grants(self, services):
        doc = services.upload()
        await approved(services, doc.id, email="a@example.com")
        await submit(services, doc.id, email="b@example.com")

        [summary] = services.documents.list_owner_documents(OWNER_ID)
        assert summary.access_grants_count == 2
        assert summary.active_access_grants_count == 1
