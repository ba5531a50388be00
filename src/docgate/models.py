"""Core data models for docgate."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

OTP_MAX_ATTEMPTS = 3
SESSION_TIMEOUT_MINUTES = 60

T = TypeVar("T")


def utcnow() -> datetime:
    """Get current UTC time (naive, all stored timestamps are naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AccessStatus(str, Enum):
    """Access grant lifecycle status."""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    REVOKED = "revoked"


class VisibilityStatus(str, Enum):
    PUBLIC = "public"
    HIDDEN = "hidden"


class FileType(str, Enum):
    PDF = "pdf"
    XLSX = "xlsx"
    DOCX = "docx"


class DownloadAction(str, Enum):
    """Events written to the download audit log."""
    DOWNLOAD_INITIATED = "download_initiated"
    DOWNLOAD_COMPLETED = "download_completed"
    DOWNLOAD_FAILED = "download_failed"
    SESSION_CREATED = "session_created"
    SESSION_EXPIRED = "session_expired"
    OTP_REQUESTED = "otp_requested"
    OTP_VERIFIED = "otp_verified"
    OTP_FAILED = "otp_failed"
    VERIFICATION_FAILED = "verification_failed"


class AuditAction(str, Enum):
    """Owner-side decisions, derived from grant status."""
    REQUEST_APPROVED = "request_approved"
    REQUEST_DENIED = "request_denied"
    REQUEST_REVOKED = "request_revoked"


class AccessGrant(BaseModel):
    """One requestor's access lifecycle against one document.

    All time predicates take ``now`` explicitly and compare with strict ``<``,
    so an expiry equal to ``now`` is not yet expired.
    """
    id: str
    document_id: str
    requestor_email: str
    requestor_name: str | None = None
    requestor_organization: str | None = None
    request_purpose: str
    status: AccessStatus = AccessStatus.PENDING
    access_token: str = Field(description="Request UUID handed to the requestor")
    expiry_date: datetime | None = None
    denial_reason: str | None = None
    approval_message: str | None = None
    revocation_message: str | None = None
    requested_at: datetime
    updated_at: datetime | None = None
    action_completed_at: datetime | None = None

    # OTP sub-state
    otp: str | None = None
    otp_expiry_date: datetime | None = None
    otp_attempts: int = 0

    # Verified download session sub-state
    is_verified: bool = False
    verified_at: datetime | None = None
    download_session_token: str | None = None
    last_activity_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        if self.status != AccessStatus.APPROVED:
            return False
        if self.expiry_date is not None and self.expiry_date < now:
            return False
        return True

    def is_expired(self, now: datetime) -> bool:
        """Only APPROVED grants can expire; other statuses always return False."""
        if self.status != AccessStatus.APPROVED:
            return False
        return self.expiry_date is not None and self.expiry_date < now

    def is_otp_expired(self, now: datetime) -> bool:
        if self.otp_expiry_date is None:
            return True
        return self.otp_expiry_date < now

    def can_request_otp(self, now: datetime) -> bool:
        return self.status == AccessStatus.APPROVED and not self.is_expired(now)

    def can_verify_otp(self, now: datetime, max_attempts: int = OTP_MAX_ATTEMPTS) -> bool:
        if not self.otp:
            return False
        if self.is_otp_expired(now):
            return False
        return self.otp_attempts < max_attempts

    def is_session_active(
        self,
        now: datetime,
        timeout_minutes: int = SESSION_TIMEOUT_MINUTES,
    ) -> bool:
        """Verified, grant not expired, and active within the inactivity window."""
        if not self.is_verified:
            return False
        if self.is_expired(now):
            return False
        if self.last_activity_at is None:
            return False
        return now - self.last_activity_at < timedelta(minutes=timeout_minutes)

    def clear_session(self) -> None:
        self.is_verified = False
        self.verified_at = None
        self.download_session_token = None
        self.last_activity_at = None


class Document(BaseModel):
    """An uploaded file and its catalog metadata."""
    id: str
    owner_id: str
    owner_email: str
    owner_name: str | None = None
    filename: str
    file_type: FileType
    file_size: int
    storage_path: str
    visibility_status: VisibilityStatus = VisibilityStatus.HIDDEN
    description: str | None = None
    uploaded_at: datetime
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_public(self) -> bool:
        return self.visibility_status == VisibilityStatus.PUBLIC and not self.is_deleted


class DownloadAuditEntry(BaseModel):
    """Append-only audit log entry."""
    id: str
    access_grant_id: str
    document_id: str
    requestor_email: str
    action: DownloadAction
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    bytes_downloaded: int | None = None
    created_at: datetime


class Page(BaseModel, Generic[T]):
    """One page of a listing."""
    data: list[T]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, items: list, page: int, limit: int) -> "Page":
        start = (page - 1) * limit
        total = len(items)
        return cls(
            data=items[start:start + limit],
            total=total,
            page=page,
            limit=limit,
            total_pages=-(-total // limit) if limit else 0,
        )


class AccessRequestSubmission(BaseModel):
    id: str
    document_id: str
    filename: str
    requestor_email: str
    request_uuid: str
    status: AccessStatus
    message: str
    retrieval_page_url: str


class RequestStatus(BaseModel):
    id: str
    document_id: str
    filename: str
    requestor_email: str
    requestor_name: str | None = None
    owner_email: str
    status: AccessStatus
    requested_at: datetime
    expiry_date: datetime | None = None
    denial_reason: str | None = None
    approval_message: str | None = None
    action_completed_at: datetime | None = None
    access_url: str | None = None


class GrantSummary(BaseModel):
    id: str
    document_id: str
    filename: str
    requestor_email: str
    requestor_name: str | None = None
    requestor_organization: str | None = None
    request_purpose: str
    status: AccessStatus
    expiry_date: datetime | None = None
    denial_reason: str | None = None
    approval_message: str | None = None
    requested_at: datetime
    action_completed_at: datetime | None = None
    is_active: bool = False
    is_expired: bool = False


class GrantBuckets(BaseModel):
    active: list[GrantSummary] = []
    expired: list[GrantSummary] = []
    revoked: list[GrantSummary] = []


class AuditTrailEntry(BaseModel):
    id: str
    action: AuditAction
    document_id: str
    filename: str
    requestor_email: str
    reason: str | None = None
    message: str | None = None
    timestamp: datetime
    details: str


class DocumentSummary(BaseModel):
    id: str
    filename: str
    file_type: FileType
    file_size: int
    visibility_status: VisibilityStatus
    description: str | None = None
    uploaded_at: datetime
    owner_email: str
    owner_name: str | None = None
    access_grants_count: int = 0
    active_access_grants_count: int = 0


class VerificationInitiated(BaseModel):
    success: bool = True
    message: str
    request_uuid: str
    requestor_email: str
    requestor_name: str | None = None
    document_name: str


class OtpSent(BaseModel):
    success: bool = True
    message: str
    otp_sent_to: str
    expires_in: int


class OtpVerified(BaseModel):
    success: bool = True
    message: str
    download_session_token: str
    expires_in: int


class SessionStatus(BaseModel):
    is_valid: bool
    expires_in: int
    requestor_email: str
    document_name: str
