"""Document catalog: metadata for uploaded files."""

import logging
from pathlib import Path

from docgate.models import Document, FileType, Page
from docgate.store import read_snapshot, write_snapshot

logger = logging.getLogger(__name__)


class DocumentCatalog:
    """Documents keyed by id, persisted like the grant store."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._documents: dict[str, Document] = {}
        for record in read_snapshot(path):
            document = Document.model_validate(record)
            self._documents[document.id] = document

    def _flush(self) -> None:
        if self.path is None:
            return
        write_snapshot(
            self.path,
            [doc.model_dump(mode="json") for doc in self._documents.values()],
        )

    def add(self, document: Document) -> Document:
        self._documents[document.id] = document.model_copy(deep=True)
        self._flush()
        logger.info(f"Cataloged document {document.id} ({document.filename})")
        return document

    def save(self, document: Document) -> Document:
        self._documents[document.id] = document.model_copy(deep=True)
        self._flush()
        return document

    def find_document(self, document_id: str, include_deleted: bool = False) -> Document | None:
        """Owner-side lookup: hidden documents included."""
        document = self._documents.get(document_id)
        if document is None or (document.is_deleted and not include_deleted):
            return None
        return document.model_copy(deep=True)

    def find_public_document(self, document_id: str) -> Document | None:
        """Requestor-side lookup: public and not deleted only."""
        document = self._documents.get(document_id)
        if document is None or not document.is_public:
            return None
        return document.model_copy(deep=True)

    def list_for_owner(self, owner_id: str) -> list[Document]:
        documents = [
            d.model_copy(deep=True)
            for d in self._documents.values()
            if d.owner_id == owner_id and not d.is_deleted
        ]
        return sorted(documents, key=lambda d: d.uploaded_at, reverse=True)

    def list_public(
        self,
        query: str | None = None,
        file_types: list[FileType] | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[Document]:
        """Search public documents by filename substring and file type."""
        limit = min(limit, 100)
        documents = [d for d in self._documents.values() if d.is_public]
        if query:
            needle = query.lower()
            documents = [d for d in documents if needle in d.filename.lower()]
        if file_types:
            documents = [d for d in documents if d.file_type in file_types]
        documents.sort(key=lambda d: d.uploaded_at, reverse=True)
        return Page[Document].build([d.model_copy(deep=True) for d in documents], page, limit)
