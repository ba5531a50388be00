"""Identity verification and time-boxed download sessions.

Flow for a requestor holding an approved grant:

1. initiate_verification: checks the (request UUID, email) pair, the grant
   status and expiry, and that the document is still public
2. request_otp: issues a 6-digit code valid for 15 minutes
3. verify_otp: up to 3 guesses per code; a match opens a download session
4. validate_download_session / get_document_for_download / record_download:
   each use of the session token pushes its 60-minute inactivity window

Every step writes to the download audit log. Timeouts are evaluated against
the injected clock at each check; nothing runs in the background.
"""

import hmac
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Callable

from docgate.audit import DownloadAuditLog
from docgate.catalog import DocumentCatalog
from docgate.config import DocGateConfig
from docgate.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from docgate.models import (
    AccessGrant,
    AccessStatus,
    Document,
    DownloadAction,
    DownloadAuditEntry,
    OtpSent,
    OtpVerified,
    Page,
    SessionStatus,
    VerificationInitiated,
    utcnow,
)
from docgate.notifications import NotificationSink, notify
from docgate.storage import FileStorage
from docgate.store import GrantStore

logger = logging.getLogger(__name__)

LOOKUP_FAILED = "Request UUID not found or email does not match our records."
DOCUMENT_RESTRICTED = (
    "This document is no longer available for download. The owner has restricted access."
)
SESSION_EXPIRED = "Your session has expired for security reasons. Please verify again."

STATUS_MESSAGES = {
    AccessStatus.PENDING: (
        "Your request is still pending review by the document owner. "
        "You will receive an email once a decision has been made."
    ),
    AccessStatus.DENIED: "Your access request has been denied by the document owner.",
    AccessStatus.REVOKED: "Your access to this document has been revoked.",
}


def generate_otp() -> str:
    """Uniformly random code in 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


class VerificationService:
    """OTP verification and download sessions over a single grant."""

    def __init__(
        self,
        grants: GrantStore,
        catalog: DocumentCatalog,
        audit: DownloadAuditLog,
        notifier: NotificationSink,
        config: DocGateConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.grants = grants
        self.catalog = catalog
        self.audit = audit
        self.notifier = notifier
        self.config = config or DocGateConfig()
        self.clock = clock

    @property
    def otp_ttl_seconds(self) -> int:
        return self.config.otp_validity_minutes * 60

    @property
    def session_ttl_seconds(self) -> int:
        return self.config.session_timeout_minutes * 60

    def _session_active(self, grant: AccessGrant, now: datetime) -> bool:
        return grant.is_session_active(now, self.config.session_timeout_minutes)

    def _lookup(self, request_uuid: str, email: str) -> AccessGrant:
        """Find a grant by the exact (token, email) pair.

        A wrong email and an unknown token get the same answer.
        """
        grant = self.grants.find_by_token_and_email(request_uuid, email)
        if grant is None:
            logger.warning(f"Verification failed: invalid UUID or email mismatch - {request_uuid}")
            raise NotFoundError(LOOKUP_FAILED)
        return grant

    def _lookup_session(self, session_token: str) -> AccessGrant:
        grant = self.grants.find_by_session_token(session_token)
        if grant is None:
            raise NotFoundError("Invalid or expired download session.")
        return grant

    def _public_document(self, grant: AccessGrant) -> Document | None:
        return self.catalog.find_public_document(grant.document_id)

    async def initiate_verification(self, request_uuid: str, email: str) -> VerificationInitiated:
        """Check that the grant may be used. Informational only: no token issued."""
        grant = self._lookup(request_uuid, email)
        now = self.clock()

        if grant.status != AccessStatus.APPROVED:
            raise BadRequestError(
                STATUS_MESSAGES.get(
                    grant.status, "You do not have permission to access this document."
                )
            )

        if grant.is_expired(now):
            raise BadRequestError(
                f"This access request has expired as of {grant.expiry_date.date().isoformat()}. "
                "You can no longer retrieve this document."
            )

        document = self._public_document(grant)
        if document is None:
            raise ForbiddenError(DOCUMENT_RESTRICTED)

        self.audit.record(grant, DownloadAction.SESSION_CREATED, "Verification session initiated")

        return VerificationInitiated(
            message="Verification initiated. OTP will be sent to your email.",
            request_uuid=grant.access_token,
            requestor_email=grant.requestor_email,
            requestor_name=grant.requestor_name,
            document_name=document.filename,
        )

    async def request_otp(self, request_uuid: str, email: str) -> OtpSent:
        """Issue a fresh OTP, invalidating any previous code and resetting attempts."""
        grant = self._lookup(request_uuid, email)

        async with self.grants.transaction(grant.id):
            grant = self.grants.get(grant.id)
            now = self.clock()

            if not grant.can_request_otp(now):
                raise BadRequestError("Cannot request OTP for this access grant.")

            document = self._public_document(grant)
            if document is None:
                raise ForbiddenError(DOCUMENT_RESTRICTED)

            # Drop a stale session before issuing the new code
            if grant.is_verified and not self._session_active(grant, now):
                grant.clear_session()
                self.audit.record(
                    grant,
                    DownloadAction.SESSION_EXPIRED,
                    "Previous session expired. Verification state reset for new OTP request.",
                )

            otp = generate_otp()
            grant.otp = otp
            grant.otp_expiry_date = now + timedelta(minutes=self.config.otp_validity_minutes)
            grant.otp_attempts = 0
            grant.updated_at = now
            self.grants.save(grant)

        await notify(
            self.notifier,
            grant.requestor_email,
            f"Hello {grant.requestor_name or grant.requestor_email},\n\n"
            f"Your One-Time Password (OTP) for document access is: {otp}\n\n"
            f"This code is valid for {self.config.otp_validity_minutes} minutes. "
            f"Please enter it in the verification form to access \"{document.filename}\".\n\n"
            "For security, do not share this code with anyone.",
        )

        self.audit.record(
            grant,
            DownloadAction.OTP_REQUESTED,
            f"OTP generated and sent to {grant.requestor_email}",
        )

        return OtpSent(
            message=(
                f"OTP sent to {grant.requestor_email}. "
                f"Valid for {self.config.otp_validity_minutes} minutes."
            ),
            otp_sent_to=grant.requestor_email,
            expires_in=self.otp_ttl_seconds,
        )

    async def verify_otp(self, request_uuid: str, email: str, otp: str) -> OtpVerified:
        """Check a candidate code and open a download session on match.

        The grant's own expiry is not re-checked here: a grant that expired
        after the code was issued can still be verified.

        Raises:
            NotFoundError: unknown (token, email) pair
            ConflictError: attempt limit reached; a new OTP must be requested
            BadRequestError: no code, expired code, or wrong code
        """
        grant = self._lookup(request_uuid, email)

        async with self.grants.transaction(grant.id):
            grant = self.grants.get(grant.id)
            now = self.clock()

            if not grant.can_verify_otp(now, self.config.otp_max_attempts):
                if grant.otp_attempts >= self.config.otp_max_attempts:
                    self.audit.record(
                        grant,
                        DownloadAction.OTP_FAILED,
                        "Maximum OTP attempts exceeded. A new OTP must be requested.",
                    )
                    raise ConflictError("Too many incorrect attempts. Please request a new OTP.")
                raise BadRequestError("OTP is invalid or expired.")

            if not hmac.compare_digest(str(otp).encode(), grant.otp.encode()):
                grant.otp_attempts += 1
                grant.updated_at = now
                self.grants.save(grant)

                remaining = self.config.otp_max_attempts - grant.otp_attempts
                self.audit.record(
                    grant,
                    DownloadAction.OTP_FAILED,
                    f"Invalid OTP attempt. {remaining} attempts remaining.",
                )
                raise BadRequestError(f"Invalid OTP. {remaining} attempts remaining.")

            session_token = str(uuid.uuid4())
            grant.is_verified = True
            grant.verified_at = now
            grant.download_session_token = session_token
            grant.last_activity_at = now
            grant.otp = ""
            grant.updated_at = now
            self.grants.save(grant)

        self.audit.record(
            grant,
            DownloadAction.OTP_VERIFIED,
            "OTP verified successfully. Download session created.",
        )
        logger.info(f"Download session opened for grant {grant.id}")

        return OtpVerified(
            message="OTP verified successfully. You can now download your document.",
            download_session_token=session_token,
            expires_in=self.session_ttl_seconds,
        )

    async def _touch_session(
        self,
        session_token: str,
        expired_details: str,
        restricted_action: DownloadAction,
        restricted_details: str,
    ) -> tuple[AccessGrant, Document]:
        """Check an active session on a public document and refresh its activity."""
        grant = self._lookup_session(session_token)

        async with self.grants.transaction(grant.id):
            grant = self.grants.get(grant.id)
            if grant.download_session_token != session_token:
                raise NotFoundError("Invalid or expired download session.")
            now = self.clock()

            if not self._session_active(grant, now):
                self.audit.record(grant, DownloadAction.SESSION_EXPIRED, expired_details)
                raise ForbiddenError(SESSION_EXPIRED)

            document = self._public_document(grant)
            if document is None:
                self.audit.record(grant, restricted_action, restricted_details)
                raise ForbiddenError(DOCUMENT_RESTRICTED)

            grant.last_activity_at = now
            grant.updated_at = now
            self.grants.save(grant)

        return grant, document

    async def validate_download_session(self, session_token: str) -> SessionStatus:
        grant, document = await self._touch_session(
            session_token,
            "Download session expired due to inactivity or access expiry.",
            DownloadAction.SESSION_EXPIRED,
            "Session validation failed: Document is no longer publicly accessible.",
        )
        return SessionStatus(
            is_valid=True,
            expires_in=self.session_ttl_seconds,
            requestor_email=grant.requestor_email,
            document_name=document.filename,
        )

    async def get_document_for_download(self, session_token: str) -> tuple[AccessGrant, Document]:
        """Return the grant and document whose storage path the caller reads."""
        return await self._touch_session(
            session_token,
            "Download session expired during download attempt.",
            DownloadAction.DOWNLOAD_FAILED,
            "Download blocked: Document is no longer publicly accessible.",
        )

    async def record_download(
        self,
        session_token: str,
        bytes_downloaded: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> DownloadAuditEntry | None:
        """Refresh the session and log a completed download.

        A failed audit write is logged, never raised.
        """
        grant = self.grants.find_by_session_token(session_token)
        if grant is None:
            raise NotFoundError("Invalid download session.")

        async with self.grants.transaction(grant.id):
            grant = self.grants.get(grant.id)
            if grant.download_session_token != session_token:
                raise NotFoundError("Invalid download session.")
            now = self.clock()
            if not self._session_active(grant, now):
                raise ForbiddenError("Download session has expired.")

            grant.last_activity_at = now
            grant.updated_at = now
            self.grants.save(grant)

        entry = self.audit.record(
            grant,
            DownloadAction.DOWNLOAD_COMPLETED,
            f"Document downloaded successfully. Size: {bytes_downloaded} bytes.",
            ip_address=ip_address,
            user_agent=user_agent,
            bytes_downloaded=bytes_downloaded,
        )
        logger.info(
            f"[AUDIT] Download completed for {grant.requestor_email} - "
            f"Document: {grant.document_id} - Size: {bytes_downloaded} bytes"
        )
        return entry

    async def download(
        self,
        session_token: str,
        storage: FileStorage,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[Document, bytes]:
        """Read the whole file for an active session and record the download."""
        grant, document = await self.get_document_for_download(session_token)

        self.audit.record(grant, DownloadAction.DOWNLOAD_INITIATED, "Download started.")
        try:
            content = storage.read_file(document.storage_path)
        except OSError as e:
            logger.error(f"Failed to read {document.storage_path}: {e}")
            self.audit.record(grant, DownloadAction.DOWNLOAD_FAILED, "File not found in storage.")
            raise NotFoundError("File not found in storage.")

        await self.record_download(session_token, len(content), ip_address, user_agent)
        return document, content

    def get_download_audit_trail(
        self,
        document_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Page[DownloadAuditEntry]:
        return self.audit.list_for_document(document_id, page, limit)
