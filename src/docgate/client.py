"""docgate Client: talks to the gateway daemon over its Unix socket."""

import asyncio
import base64
import json
from pathlib import Path
from typing import Any

from docgate.config import DEFAULT_RUN_DIR
from docgate.errors import DocGateError, error_for_status


class DocGateClient:
    """Async client for owners and requestors.

    Usage:
        async with DocGateClient() as gate:
            submission = await gate.submit_request(
                document_id, "alice@example.com", purpose="Due diligence"
            )
            ...
            await gate.request_otp(submission["request_uuid"], "alice@example.com")
            session = await gate.verify_otp(uuid, "alice@example.com", "123456")
            filename, content = await gate.download(session["download_session_token"])
    """

    GATEWAY_SOCKET = DEFAULT_RUN_DIR / "gateway.sock"

    def __init__(self, socket_path: str | Path | None = None):
        self.socket_path = Path(socket_path or self.GATEWAY_SOCKET)

    async def __aenter__(self) -> "DocGateClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass

    async def _send(self, action: str, **params: Any) -> Any:
        """Send one request; raise the matching DocGateError on failure."""
        reader, writer = await asyncio.open_unix_connection(str(self.socket_path))

        try:
            request = {"action": action}
            request.update({k: v for k, v in params.items() if v is not None})
            writer.write(json.dumps(request).encode())
            await writer.drain()
            writer.write_eof()

            data = await reader.read()
            response = json.loads(data.decode())

            if "error" in response:
                raise error_for_status(response.get("status"), response["error"])

            return response.get("result")
        finally:
            writer.close()
            await writer.wait_closed()

    async def ping(self) -> bool:
        try:
            result = await self._send("ping")
        except (OSError, DocGateError):
            return False
        return result.get("status") == "ok"

    # Owner

    async def upload_document(
        self,
        path: Path,
        owner_id: str,
        owner_email: str,
        owner_name: str | None = None,
        description: str | None = None,
        public: bool = False,
    ) -> dict[str, Any]:
        return await self._send(
            "upload_document",
            owner_id=owner_id,
            owner_email=owner_email,
            owner_name=owner_name,
            filename=path.name,
            content=base64.b64encode(path.read_bytes()).decode(),
            description=description,
            public=public,
        )

    async def set_visibility(self, document_id: str, visibility: str, owner_id: str | None = None) -> dict[str, Any]:
        return await self._send("set_visibility", document_id=document_id, visibility=visibility, owner_id=owner_id)

    async def delete_document(self, document_id: str, owner_id: str | None = None) -> bool:
        result = await self._send("delete_document", document_id=document_id, owner_id=owner_id)
        return result.get("deleted", False)

    async def list_documents(self, owner_id: str) -> list[dict[str, Any]]:
        result = await self._send("list_documents", owner_id=owner_id)
        return result["documents"]

    async def approve(
        self,
        grant_id: str,
        expiry_date: str,
        message: str | None = None,
        owner_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._send(
            "approve", grant_id=grant_id, expiry_date=expiry_date, message=message, owner_id=owner_id
        )

    async def deny(self, grant_id: str, reason: str | None = None, owner_id: str | None = None) -> dict[str, Any]:
        return await self._send("deny", grant_id=grant_id, reason=reason, owner_id=owner_id)

    async def revoke(self, grant_id: str, message: str | None = None, owner_id: str | None = None) -> dict[str, Any]:
        return await self._send("revoke", grant_id=grant_id, message=message, owner_id=owner_id)

    async def bulk_revoke(
        self,
        document_id: str,
        message: str | None = None,
        owner_id: str | None = None,
    ) -> list[dict[str, Any]]:
        result = await self._send("bulk_revoke", document_id=document_id, message=message, owner_id=owner_id)
        return result["revoked"]

    async def list_requests(self, owner_id: str, history: bool = False, **filters: Any) -> dict[str, Any]:
        action = "request_history" if history else "list_requests"
        return await self._send(action, owner_id=owner_id, **filters)

    async def document_grants(self, document_id: str, owner_id: str | None = None) -> dict[str, Any]:
        return await self._send("document_grants", document_id=document_id, owner_id=owner_id)

    async def audit_trail(self, owner_id: str, page: int = 1) -> dict[str, Any]:
        return await self._send("audit_trail", owner_id=owner_id, page=page)

    async def download_audit(self, document_id: str, page: int = 1) -> dict[str, Any]:
        return await self._send("download_audit", document_id=document_id, page=page)

    # Requestor

    async def list_public_documents(self, query: str | None = None, page: int = 1) -> dict[str, Any]:
        return await self._send("list_public_documents", query=query, page=page)

    async def submit_request(
        self,
        document_id: str,
        requestor_email: str,
        purpose: str,
        name: str | None = None,
        organization: str | None = None,
    ) -> dict[str, Any]:
        return await self._send(
            "submit_request",
            document_id=document_id,
            requestor_email=requestor_email,
            request_purpose=purpose,
            requestor_name=name,
            requestor_organization=organization,
        )

    async def request_status(self, request_uuid: str) -> dict[str, Any]:
        return await self._send("request_status", request_uuid=request_uuid)

    async def initiate_verification(self, request_uuid: str, email: str) -> dict[str, Any]:
        return await self._send("initiate_verification", request_uuid=request_uuid, requestor_email=email)

    async def request_otp(self, request_uuid: str, email: str) -> dict[str, Any]:
        return await self._send("request_otp", request_uuid=request_uuid, requestor_email=email)

    async def verify_otp(self, request_uuid: str, email: str, otp: str) -> dict[str, Any]:
        return await self._send("verify_otp", request_uuid=request_uuid, requestor_email=email, otp=otp)

    async def validate_session(self, session_token: str) -> dict[str, Any]:
        return await self._send("validate_session", download_session_token=session_token)

    async def download(
        self,
        session_token: str,
        user_agent: str | None = "docgate-cli",
    ) -> tuple[str, bytes]:
        """Fetch the document bytes for a verified session."""
        result = await self._send("download", download_session_token=session_token, user_agent=user_agent)
        return result["filename"], base64.b64decode(result["content"])
