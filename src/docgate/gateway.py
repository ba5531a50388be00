"""Access Gateway Daemon: the request/response surface of docgate.

This daemon:
- Listens on a Unix socket, one JSON request per connection (ended by EOF)
- Validates payloads and routes them to the document, access and
  verification services
- Maps service errors to {"error": message, "status": code}
- Serves the file bytes for a verified download session (base64)
"""

import asyncio
import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field, ValidationError

from docgate.access import AccessManagementService
from docgate.audit import DownloadAuditLog
from docgate.catalog import DocumentCatalog
from docgate.config import DocGateConfig
from docgate.documents import DocumentService
from docgate.errors import BadRequestError, DocGateError
from docgate.models import AccessStatus, FileType, VisibilityStatus
from docgate.notifications import LoggingNotificationSink, NotificationSink
from docgate.storage import FileStorage
from docgate.store import GrantStore
from docgate.verification import VerificationService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"

# Never shown to requestors
PRIVATE_DOCUMENT_FIELDS = {"owner_id", "storage_path", "deleted_at"}


# Request payloads

class OwnedDocumentPayload(BaseModel):
    document_id: str
    owner_id: str | None = None


class UploadPayload(BaseModel):
    owner_id: str
    owner_email: str = Field(pattern=EMAIL_PATTERN)
    owner_name: str | None = None
    filename: str = Field(min_length=1)
    content: str = Field(description="base64-encoded file bytes")
    description: str | None = Field(default=None, max_length=500)
    public: bool = False


class VisibilityPayload(OwnedDocumentPayload):
    visibility: VisibilityStatus


class OwnerListPayload(BaseModel):
    owner_id: str
    search_email: str | None = None
    filter_filename: str | None = None
    filter_status: AccessStatus | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class PublicListPayload(BaseModel):
    query: str | None = None
    file_types: list[FileType] = []
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class SubmitPayload(BaseModel):
    document_id: str
    requestor_email: str = Field(pattern=EMAIL_PATTERN)
    request_purpose: str = Field(min_length=1)
    requestor_name: str | None = None
    requestor_organization: str | None = None


class RequestUUIDPayload(BaseModel):
    request_uuid: str = Field(pattern=UUID_PATTERN)


class ApprovePayload(BaseModel):
    grant_id: str
    expiry_date: str
    message: str | None = None
    owner_id: str | None = None


class DenyPayload(BaseModel):
    grant_id: str
    reason: str | None = Field(default=None, max_length=500)
    owner_id: str | None = None


class RevokePayload(BaseModel):
    grant_id: str
    message: str | None = None
    owner_id: str | None = None


class BulkRevokePayload(OwnedDocumentPayload):
    message: str | None = None


class VerificationPayload(BaseModel):
    request_uuid: str = Field(pattern=UUID_PATTERN)
    requestor_email: str = Field(pattern=EMAIL_PATTERN)


class VerifyOtpPayload(VerificationPayload):
    otp: str = Field(pattern=r"^\d{6}$")


class SessionPayload(BaseModel):
    download_session_token: str = Field(pattern=UUID_PATTERN)


class DownloadPayload(SessionPayload):
    ip_address: str | None = None
    user_agent: str | None = None


class AuditPayload(BaseModel):
    document_id: str
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class OwnerAuditPayload(BaseModel):
    owner_id: str
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


def _dump(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_dump(item) for item in result]
    if isinstance(result, dict):
        return {key: _dump(value) for key, value in result.items()}
    return result


class AccessGateway:
    """Access Gateway Daemon.

    Handles client requests and routes them to the docgate services.
    """

    def __init__(
        self,
        config: DocGateConfig,
        documents: DocumentService,
        access: AccessManagementService,
        verification: VerificationService,
        storage: FileStorage,
    ):
        self.config = config
        self.documents = documents
        self.access = access
        self.verification = verification
        self.storage = storage
        self._server: asyncio.Server | None = None
        self._handlers: dict[str, tuple[type[BaseModel] | None, Callable[..., Awaitable[Any]]]] = {
            "ping": (None, self._handle_ping),
            "upload_document": (UploadPayload, self._handle_upload),
            "set_visibility": (VisibilityPayload, self._handle_set_visibility),
            "delete_document": (OwnedDocumentPayload, self._handle_delete_document),
            "list_documents": (OwnerListPayload, self._handle_list_documents),
            "list_public_documents": (PublicListPayload, self._handle_list_public),
            "submit_request": (SubmitPayload, self._handle_submit),
            "request_status": (RequestUUIDPayload, self._handle_request_status),
            "approve": (ApprovePayload, self._handle_approve),
            "deny": (DenyPayload, self._handle_deny),
            "revoke": (RevokePayload, self._handle_revoke),
            "bulk_revoke": (BulkRevokePayload, self._handle_bulk_revoke),
            "list_requests": (OwnerListPayload, self._handle_list_requests),
            "request_history": (OwnerListPayload, self._handle_request_history),
            "document_grants": (OwnedDocumentPayload, self._handle_document_grants),
            "audit_trail": (OwnerAuditPayload, self._handle_audit_trail),
            "initiate_verification": (VerificationPayload, self._handle_initiate),
            "request_otp": (VerificationPayload, self._handle_request_otp),
            "verify_otp": (VerifyOtpPayload, self._handle_verify_otp),
            "validate_session": (SessionPayload, self._handle_validate_session),
            "download": (DownloadPayload, self._handle_download),
            "download_audit": (AuditPayload, self._handle_download_audit),
        }

    @classmethod
    def from_config(
        cls,
        config: DocGateConfig,
        notifier: NotificationSink | None = None,
    ) -> "AccessGateway":
        """Wire stores and services from config paths."""
        notifier = notifier or LoggingNotificationSink()
        grants = GrantStore(config.grants_path)
        catalog = DocumentCatalog(config.documents_path)
        storage = FileStorage(config.storage_dir, config.max_file_size_mb, config.allowed_file_types)
        audit = DownloadAuditLog(config.audit_log_path)
        return cls(
            config,
            documents=DocumentService(catalog, storage, grants),
            access=AccessManagementService(grants, catalog, notifier, frontend_url=config.frontend_url),
            verification=VerificationService(grants, catalog, audit, notifier, config),
            storage=storage,
        )

    async def _handle_ping(self) -> dict[str, Any]:
        return {"status": "ok"}

    async def _handle_upload(self, p: UploadPayload) -> Any:
        try:
            content = base64.b64decode(p.content, validate=True)
        except binascii.Error:
            raise BadRequestError("File content is not valid base64")
        return self.documents.upload_document(
            owner_id=p.owner_id,
            owner_email=p.owner_email,
            filename=p.filename,
            content=content,
            owner_name=p.owner_name,
            description=p.description,
            public=p.public,
        )

    async def _handle_set_visibility(self, p: VisibilityPayload) -> Any:
        return self.documents.update_visibility(p.document_id, p.visibility, p.owner_id)

    async def _handle_delete_document(self, p: OwnedDocumentPayload) -> Any:
        self.documents.delete_document(p.document_id, p.owner_id)
        return {"deleted": True}

    async def _handle_list_documents(self, p: OwnerListPayload) -> Any:
        return {"documents": self.documents.list_owner_documents(p.owner_id)}

    async def _handle_list_public(self, p: PublicListPayload) -> Any:
        page = self.access.catalog.list_public(p.query, p.file_types, p.page, p.limit)
        result = page.model_dump(mode="json", exclude={"data"})
        result["data"] = [
            doc.model_dump(mode="json", exclude=PRIVATE_DOCUMENT_FIELDS) for doc in page.data
        ]
        return result

    async def _handle_submit(self, p: SubmitPayload) -> Any:
        return await self.access.submit_access_request(
            p.document_id,
            p.requestor_email,
            p.request_purpose,
            requestor_name=p.requestor_name,
            requestor_organization=p.requestor_organization,
        )

    async def _handle_request_status(self, p: RequestUUIDPayload) -> Any:
        return self.access.get_request_status(p.request_uuid)

    async def _handle_approve(self, p: ApprovePayload) -> Any:
        return await self.access.approve_access_request(p.grant_id, p.expiry_date, p.message, p.owner_id)

    async def _handle_deny(self, p: DenyPayload) -> Any:
        return await self.access.deny_access_request(p.grant_id, p.reason, p.owner_id)

    async def _handle_revoke(self, p: RevokePayload) -> Any:
        return await self.access.revoke_access_grant(p.grant_id, p.message, p.owner_id)

    async def _handle_bulk_revoke(self, p: BulkRevokePayload) -> Any:
        revoked = await self.access.bulk_revoke_access(p.document_id, p.message, p.owner_id)
        return {"revoked": revoked}

    async def _handle_list_requests(self, p: OwnerListPayload) -> Any:
        return self.access.list_access_requests(
            p.owner_id, p.search_email, p.filter_filename, p.page, p.limit
        )

    async def _handle_request_history(self, p: OwnerListPayload) -> Any:
        return self.access.list_access_request_history(
            p.owner_id, p.search_email, p.filter_filename, p.filter_status, p.page, p.limit
        )

    async def _handle_document_grants(self, p: OwnedDocumentPayload) -> Any:
        return self.access.get_access_grants_for_document(p.document_id, p.owner_id)

    async def _handle_audit_trail(self, p: OwnerAuditPayload) -> Any:
        return self.access.get_audit_trail(p.owner_id, p.page, p.limit)

    async def _handle_initiate(self, p: VerificationPayload) -> Any:
        return await self.verification.initiate_verification(p.request_uuid, p.requestor_email)

    async def _handle_request_otp(self, p: VerificationPayload) -> Any:
        return await self.verification.request_otp(p.request_uuid, p.requestor_email)

    async def _handle_verify_otp(self, p: VerifyOtpPayload) -> Any:
        return await self.verification.verify_otp(p.request_uuid, p.requestor_email, p.otp)

    async def _handle_validate_session(self, p: SessionPayload) -> Any:
        return await self.verification.validate_download_session(p.download_session_token)

    async def _handle_download(self, p: DownloadPayload) -> Any:
        document, content = await self.verification.download(
            p.download_session_token,
            self.storage,
            ip_address=p.ip_address,
            user_agent=p.user_agent,
        )
        return {
            "filename": document.filename,
            "file_type": document.file_type.value,
            "size": len(content),
            "content": base64.b64encode(content).decode(),
        }

    async def _handle_download_audit(self, p: AuditPayload) -> Any:
        return self.verification.get_download_audit_trail(p.document_id, p.page, p.limit)

    async def dispatch(self, request: dict[str, Any]) -> dict[str, Any]:
        """Route one decoded request to its handler."""
        action = request.get("action")
        if action not in self._handlers:
            return {"error": f"Unknown action: {action}", "status": 400}

        payload_model, handler = self._handlers[action]
        try:
            if payload_model is None:
                result = await handler()
            else:
                params = {k: v for k, v in request.items() if k != "action"}
                result = await handler(payload_model.model_validate(params))
        except ValidationError as e:
            fields = ", ".join(".".join(str(loc) for loc in err["loc"]) for err in e.errors())
            return {"error": f"Invalid request: {fields}", "status": 400}
        except DocGateError as e:
            logger.debug(f"{action} failed: {e.status_code} {e.message}")
            return {"error": e.message, "status": e.status_code}

        return {"result": _dump(result)}

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a client connection."""
        try:
            data = await reader.read()
            if not data:
                return

            try:
                request = json.loads(data.decode())
            except (json.JSONDecodeError, UnicodeDecodeError):
                response = {"error": "Invalid JSON", "status": 400}
            else:
                response = await self.dispatch(request)

            writer.write(json.dumps(response).encode())
            await writer.drain()

        except Exception as e:
            logger.exception("Error handling client")
            try:
                writer.write(json.dumps({"error": str(e), "status": 500}).encode())
                await writer.drain()
            except Exception:
                pass

        finally:
            writer.close()
            await writer.wait_closed()

    async def start(self) -> None:
        """Start the gateway daemon."""
        socket_path = self.config.socket_path
        socket_path.parent.mkdir(parents=True, exist_ok=True)

        # Remove stale socket
        if socket_path.exists():
            socket_path.unlink()

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(socket_path),
        )
        os.chmod(socket_path, 0o660)

        logger.info(f"Gateway listening on {socket_path}")

        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop the daemon."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()


async def main():
    """Run the gateway daemon."""
    import argparse

    from docgate.config import load_config

    parser = argparse.ArgumentParser(description="docgate Access Gateway")
    parser.add_argument("--config", default=None, help="Config file path")
    parser.add_argument("--socket", default=None, help="Unix socket path")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = load_config(Path(args.config) if args.config else None)
    if args.socket:
        config.socket_path = Path(args.socket)

    gateway = AccessGateway.from_config(config)

    try:
        await gateway.start()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        await gateway.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
