"""docgate: owner-approved document sharing with OTP-verified downloads."""

from docgate.access import AccessManagementService
from docgate.audit import DownloadAuditLog
from docgate.catalog import DocumentCatalog
from docgate.client import DocGateClient
from docgate.config import DocGateConfig, load_config, save_config
from docgate.documents import DocumentService
from docgate.errors import (
    BadRequestError,
    ConflictError,
    DocGateError,
    ForbiddenError,
    NotFoundError,
)
from docgate.gateway import AccessGateway
from docgate.models import (
    AccessGrant,
    AccessStatus,
    Document,
    DownloadAction,
    DownloadAuditEntry,
    FileType,
    VisibilityStatus,
)
from docgate.notifications import LoggingNotificationSink, NotificationSink
from docgate.storage import FileStorage
from docgate.store import GrantStore
from docgate.verification import VerificationService

__all__ = [
    # Client
    "DocGateClient",
    "DocGateError",
    "BadRequestError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    # Gateway
    "AccessGateway",
    "DocGateConfig",
    "load_config",
    "save_config",
    # Services
    "AccessManagementService",
    "DocumentService",
    "VerificationService",
    # Persistence
    "DocumentCatalog",
    "DownloadAuditLog",
    "FileStorage",
    "GrantStore",
    # Notifications
    "LoggingNotificationSink",
    "NotificationSink",
    # Models
    "AccessGrant",
    "AccessStatus",
    "Document",
    "DownloadAction",
    "DownloadAuditEntry",
    "FileType",
    "VisibilityStatus",
]

__version__ = "0.1.0"
