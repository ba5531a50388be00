"""Owner-side document management: upload, visibility, deletion."""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable

from docgate.catalog import DocumentCatalog
from docgate.errors import BadRequestError, NotFoundError
from docgate.models import Document, DocumentSummary, VisibilityStatus, utcnow
from docgate.storage import FileStorage
from docgate.store import GrantStore

logger = logging.getLogger(__name__)


class DocumentService:
    """Documents owned by a single owner each."""

    def __init__(
        self,
        catalog: DocumentCatalog,
        storage: FileStorage,
        grants: GrantStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.storage = storage
        self.grants = grants
        self.clock = clock

    def _owned(self, document_id: str, owner_id: str | None) -> Document:
        document = self.catalog.find_document(document_id, include_deleted=True)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            raise NotFoundError("Document not found")
        return document

    def _summarize(self, document: Document) -> DocumentSummary:
        now = self.clock()
        grants = self.grants.list_for_document(document.id)
        return DocumentSummary(
            id=document.id,
            filename=document.filename,
            file_type=document.file_type,
            file_size=document.file_size,
            visibility_status=document.visibility_status,
            description=document.description,
            uploaded_at=document.uploaded_at,
            owner_email=document.owner_email,
            owner_name=document.owner_name,
            access_grants_count=len(grants),
            active_access_grants_count=sum(1 for g in grants if g.is_active(now)),
        )

    def upload_document(
        self,
        owner_id: str,
        owner_email: str,
        filename: str,
        content: bytes,
        owner_name: str | None = None,
        description: str | None = None,
        public: bool = False,
    ) -> DocumentSummary:
        """Store the file and catalog it. New documents are hidden by default."""
        if not filename or filename != Path(filename).name or "\\" in filename or filename in (".", ".."):
            raise BadRequestError("Filename must not contain path components")
        storage_path, file_type, size = self.storage.validate_and_store(filename, content, owner_id)
        now = self.clock()
        document = Document(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            owner_email=owner_email,
            owner_name=owner_name,
            filename=filename,
            file_type=file_type,
            file_size=size,
            storage_path=storage_path,
            visibility_status=VisibilityStatus.PUBLIC if public else VisibilityStatus.HIDDEN,
            description=description,
            uploaded_at=now,
            updated_at=now,
        )
        self.catalog.add(document)
        return self._summarize(document)

    def update_visibility(
        self,
        document_id: str,
        visibility: VisibilityStatus,
        owner_id: str | None = None,
    ) -> DocumentSummary:
        document = self._owned(document_id, owner_id)
        if document.is_deleted:
            raise BadRequestError("Cannot update deleted document")
        document.visibility_status = VisibilityStatus(visibility)
        document.updated_at = self.clock()
        self.catalog.save(document)
        logger.info(f"Document {document_id} is now {document.visibility_status.value}")
        return self._summarize(document)

    def list_owner_documents(self, owner_id: str) -> list[DocumentSummary]:
        return [self._summarize(d) for d in self.catalog.list_for_owner(owner_id)]

    def delete_document(self, document_id: str, owner_id: str | None = None) -> None:
        """Soft-delete a document and remove its file.

        Raises:
            BadRequestError: while any grant is APPROVED and active
        """
        document = self._owned(document_id, owner_id)
        if document.is_deleted:
            raise NotFoundError("Document not found")

        now = self.clock()
        if any(g.is_active(now) for g in self.grants.list_for_document(document_id)):
            raise BadRequestError(
                "Cannot delete file with active access grants. Revoke all access before deleting."
            )

        document.deleted_at = now
        document.updated_at = now
        self.catalog.save(document)
        self.storage.delete_file(document.storage_path)
        logger.info(f"Deleted document {document_id}")
