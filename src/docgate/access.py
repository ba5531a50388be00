"""Access grant lifecycle: requestor submission and owner decisions.

Status only moves forward: PENDING -> APPROVED | DENIED, APPROVED -> REVOKED.
Revocation itself carries no status guard, so an owner can force-terminate a
grant in any state. Expiry is never swept; it is evaluated on each read.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from docgate.catalog import DocumentCatalog
from docgate.errors import BadRequestError, ConflictError, NotFoundError
from docgate.models import (
    AccessGrant,
    AccessRequestSubmission,
    AccessStatus,
    AuditAction,
    AuditTrailEntry,
    Document,
    GrantBuckets,
    GrantSummary,
    Page,
    RequestStatus,
    utcnow,
)
from docgate.notifications import NotificationSink, notify
from docgate.store import GrantStore

logger = logging.getLogger(__name__)

DECIDED_STATUSES = (AccessStatus.APPROVED, AccessStatus.DENIED, AccessStatus.REVOKED)


def parse_expiry_date(value: str | datetime) -> datetime:
    """Parse an ISO date or datetime into naive UTC.

    A bare date ("2026-12-01") means midnight UTC of that day.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            raise BadRequestError(f"Invalid expiry date: {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def summarize(grant: AccessGrant, document: Document | None, now: datetime) -> GrantSummary:
    return GrantSummary(
        id=grant.id,
        document_id=grant.document_id,
        filename=document.filename if document else "Unknown",
        requestor_email=grant.requestor_email,
        requestor_name=grant.requestor_name,
        requestor_organization=grant.requestor_organization,
        request_purpose=grant.request_purpose,
        status=grant.status,
        expiry_date=grant.expiry_date,
        denial_reason=grant.denial_reason,
        approval_message=grant.approval_message,
        requested_at=grant.requested_at,
        action_completed_at=grant.action_completed_at,
        is_active=grant.is_active(now),
        is_expired=grant.is_expired(now),
    )


class AccessManagementService:
    """Submission of access requests and the owner's decisions on them."""

    def __init__(
        self,
        grants: GrantStore,
        catalog: DocumentCatalog,
        notifier: NotificationSink,
        clock: Callable[[], datetime] = utcnow,
        frontend_url: str = "http://localhost:3000",
    ):
        self.grants = grants
        self.catalog = catalog
        self.notifier = notifier
        self.clock = clock
        self.frontend_url = frontend_url.rstrip("/")

    def _owned_document(self, document_id: str, owner_id: str | None) -> Document:
        document = self.catalog.find_document(document_id, include_deleted=True)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            raise NotFoundError("Document not found")
        return document

    def _load_grant(self, grant_id: str, owner_id: str | None) -> tuple[AccessGrant, Document]:
        grant = self.grants.get(grant_id)
        if grant is None:
            raise NotFoundError("Access grant not found")
        return grant, self._owned_document(grant.document_id, owner_id)

    # Requestor side

    async def submit_access_request(
        self,
        document_id: str,
        requestor_email: str,
        request_purpose: str,
        requestor_name: str | None = None,
        requestor_organization: str | None = None,
    ) -> AccessRequestSubmission:
        """Create a PENDING grant against a public document.

        Raises:
            NotFoundError: document missing, hidden or deleted
            ConflictError: a PENDING request already exists for this email
        """
        document = self.catalog.find_public_document(document_id)
        if document is None:
            raise NotFoundError("Document not found or is not publicly available")

        async with self.grants.transaction(f"submit:{document_id}:{requestor_email}"):
            if self.grants.find_pending(document_id, requestor_email):
                raise ConflictError(
                    "You already have a pending request for this document. "
                    "Please wait for the owner's response."
                )

            now = self.clock()
            request_uuid = str(uuid.uuid4())
            grant = AccessGrant(
                id=str(uuid.uuid4()),
                document_id=document_id,
                requestor_email=requestor_email,
                requestor_name=requestor_name or requestor_email,
                requestor_organization=requestor_organization,
                request_purpose=request_purpose,
                status=AccessStatus.PENDING,
                access_token=request_uuid,
                requested_at=now,
                updated_at=now,
            )
            self.grants.add(grant)

        logger.info(f"Access request {grant.id} submitted for document {document_id}")

        await notify(
            self.notifier,
            requestor_email,
            f"Hello,\n\nYour access request for \"{document.filename}\" has been submitted "
            f"successfully.\n\nRequest UUID: {request_uuid}\n\nThe document owner will review "
            "your request and send a decision via email. You can also use your UUID to check "
            "your request status.",
        )
        owner_lines = [
            f"New access request for document \"{document.filename}\".",
            "",
            f"Requestor Email: {requestor_email}",
        ]
        if requestor_name:
            owner_lines.append(f"Name: {requestor_name}")
        if requestor_organization:
            owner_lines.append(f"Organization: {requestor_organization}")
        owner_lines.append(f"Purpose: {request_purpose}")
        await notify(self.notifier, document.owner_email, "\n".join(owner_lines))

        return AccessRequestSubmission(
            id=grant.id,
            document_id=document_id,
            filename=document.filename,
            requestor_email=requestor_email,
            request_uuid=request_uuid,
            status=AccessStatus.PENDING,
            message="Request submitted successfully. Check your email for confirmation.",
            retrieval_page_url=f"{self.frontend_url}/request-status/{request_uuid}",
        )

    def get_request_status(self, request_uuid: str) -> RequestStatus:
        grant = self.grants.find_by_access_token(request_uuid)
        if grant is None:
            raise NotFoundError("Request not found. Please verify your UUID and try again.")
        document = self._owned_document(grant.document_id, None)

        status = RequestStatus(
            id=grant.id,
            document_id=grant.document_id,
            filename=document.filename,
            requestor_email=grant.requestor_email,
            requestor_name=grant.requestor_name,
            owner_email=document.owner_email,
            status=grant.status,
            requested_at=grant.requested_at,
            expiry_date=grant.expiry_date,
            denial_reason=grant.denial_reason,
            approval_message=grant.approval_message,
            action_completed_at=grant.action_completed_at,
        )
        if grant.is_active(self.clock()):
            status.access_url = f"{self.frontend_url}/access-token/{request_uuid}"
        return status

    # Owner side

    async def approve_access_request(
        self,
        grant_id: str,
        expiry_date: str | datetime,
        message: str | None = None,
        owner_id: str | None = None,
    ) -> GrantSummary:
        """Approve a PENDING grant until ``expiry_date`` (must be in the future)."""
        async with self.grants.transaction(grant_id):
            grant, document = self._load_grant(grant_id, owner_id)
            if grant.status != AccessStatus.PENDING:
                raise BadRequestError(f"Cannot approve request with status {grant.status.value}")

            expiry = parse_expiry_date(expiry_date)
            now = self.clock()
            if expiry <= now:
                raise BadRequestError("Expiry date must be in the future")

            grant.status = AccessStatus.APPROVED
            grant.expiry_date = expiry
            if message:
                grant.approval_message = message
            grant.action_completed_at = now
            grant.updated_at = now
            self.grants.save(grant)

        logger.info(f"Approved access grant {grant_id} until {expiry.isoformat()}")

        text = (
            f"Your access request for {document.filename} has been approved. "
            f"Access expires on {expiry.date().isoformat()}"
        )
        if message:
            text += f"\n\nMessage from owner: {message}"
        await notify(self.notifier, grant.requestor_email, text)
        return summarize(grant, document, now)

    async def deny_access_request(
        self,
        grant_id: str,
        reason: str | None = None,
        owner_id: str | None = None,
    ) -> GrantSummary:
        async with self.grants.transaction(grant_id):
            grant, document = self._load_grant(grant_id, owner_id)
            if grant.status != AccessStatus.PENDING:
                raise BadRequestError(f"Cannot deny request with status {grant.status.value}")

            now = self.clock()
            grant.status = AccessStatus.DENIED
            if reason:
                grant.denial_reason = reason
            grant.action_completed_at = now
            grant.updated_at = now
            self.grants.save(grant)

        logger.info(f"Denied access grant {grant_id}")

        text = f"Your access request for {document.filename} has been denied"
        if reason:
            text += f"\n\nReason: {reason}"
        await notify(self.notifier, grant.requestor_email, text)
        return summarize(grant, document, now)

    async def _revoke(self, grant: AccessGrant, document: Document, message: str | None) -> None:
        now = self.clock()
        grant.status = AccessStatus.REVOKED
        if message:
            grant.revocation_message = message
        grant.action_completed_at = now
        grant.updated_at = now
        self.grants.save(grant)

        logger.info(f"Revoked access grant {grant.id}")

        text = f"Your access to {document.filename} has been revoked"
        if message:
            text += f". Reason: {message}"
        await notify(self.notifier, grant.requestor_email, text)

    async def revoke_access_grant(
        self,
        grant_id: str,
        message: str | None = None,
        owner_id: str | None = None,
    ) -> GrantSummary:
        """Revoke a grant regardless of its current status."""
        async with self.grants.transaction(grant_id):
            grant, document = self._load_grant(grant_id, owner_id)
            await self._revoke(grant, document, message)
        return summarize(grant, document, self.clock())

    async def bulk_revoke_access(
        self,
        document_id: str,
        message: str | None = None,
        owner_id: str | None = None,
    ) -> list[GrantSummary]:
        """Revoke every APPROVED, unexpired grant on a document.

        Expired APPROVED grants are left as they are; their own expiry
        already keeps them out of the active set.
        """
        document = self._owned_document(document_id, owner_id)
        revoked = []
        for candidate in self.grants.list_for_document(document_id, [AccessStatus.APPROVED]):
            async with self.grants.transaction(candidate.id):
                grant = self.grants.get(candidate.id)
                now = self.clock()
                if grant.status != AccessStatus.APPROVED or grant.is_expired(now):
                    continue
                await self._revoke(grant, document, message)
            revoked.append(summarize(grant, document, now))

        logger.info(f"Bulk revoked {len(revoked)} grants on document {document_id}")
        return revoked

    # Listings

    def _owner_grants(
        self,
        owner_id: str,
        statuses: tuple[AccessStatus, ...],
        search_email: str | None,
        filter_filename: str | None,
    ) -> list[tuple[AccessGrant, Document]]:
        documents = {d.id: d for d in self.catalog.list_for_owner(owner_id)}
        rows = []
        for grant in self.grants.list_all():
            document = documents.get(grant.document_id)
            if document is None or grant.status not in statuses:
                continue
            if search_email and search_email.lower() not in grant.requestor_email.lower():
                continue
            if filter_filename and filter_filename.lower() not in document.filename.lower():
                continue
            rows.append((grant, document))
        return rows

    def list_access_requests(
        self,
        owner_id: str,
        search_email: str | None = None,
        filter_filename: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[GrantSummary]:
        """Pending requests across the owner's documents, newest first."""
        now = self.clock()
        rows = self._owner_grants(owner_id, (AccessStatus.PENDING,), search_email, filter_filename)
        rows.sort(key=lambda row: row[0].requested_at, reverse=True)
        return Page[GrantSummary].build([summarize(g, d, now) for g, d in rows], page, limit)

    def list_access_request_history(
        self,
        owner_id: str,
        search_email: str | None = None,
        filter_filename: str | None = None,
        filter_status: AccessStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[GrantSummary]:
        """Decided requests, most recent decision first."""
        now = self.clock()
        statuses = (filter_status,) if filter_status else DECIDED_STATUSES
        rows = self._owner_grants(owner_id, statuses, search_email, filter_filename)
        rows.sort(key=lambda row: row[0].action_completed_at or row[0].requested_at, reverse=True)
        return Page[GrantSummary].build([summarize(g, d, now) for g, d in rows], page, limit)

    def get_access_grants_for_document(
        self,
        document_id: str,
        owner_id: str | None = None,
    ) -> GrantBuckets:
        document = self._owned_document(document_id, owner_id)
        now = self.clock()
        buckets = GrantBuckets()
        for grant in self.grants.list_for_document(document_id):
            summary = summarize(grant, document, now)
            if grant.status == AccessStatus.REVOKED:
                buckets.revoked.append(summary)
            elif grant.is_expired(now):
                buckets.expired.append(summary)
            elif grant.is_active(now):
                buckets.active.append(summary)
        return buckets

    def get_audit_trail(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Page[AuditTrailEntry]:
        """Owner decisions derived from the current status of each grant."""
        rows = self._owner_grants(owner_id, DECIDED_STATUSES, None, None)
        rows.sort(
            key=lambda row: row[0].action_completed_at or row[0].updated_at or row[0].requested_at,
            reverse=True,
        )

        entries = []
        for grant, document in rows:
            if grant.status == AccessStatus.APPROVED:
                action = AuditAction.REQUEST_APPROVED
                details = f"Approved until {grant.expiry_date.date().isoformat()}"
            elif grant.status == AccessStatus.DENIED:
                action = AuditAction.REQUEST_DENIED
                details = grant.denial_reason or "No reason provided"
            else:
                action = AuditAction.REQUEST_REVOKED
                details = grant.revocation_message or "No message provided"

            entries.append(AuditTrailEntry(
                id=grant.id,
                action=action,
                document_id=document.id,
                filename=document.filename,
                requestor_email=grant.requestor_email,
                reason=grant.denial_reason,
                message=grant.approval_message or grant.revocation_message,
                timestamp=grant.action_completed_at or grant.updated_at or grant.requested_at,
                details=details,
            ))

        return Page[AuditTrailEntry].build(entries, page, limit)
