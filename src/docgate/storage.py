"""File storage for uploaded documents.

Files are written under ``<root>/<owner_id>/<uuid>`` and read back whole.
Content is stored as-is (no encryption at rest).
"""

import logging
import uuid
from pathlib import Path

from docgate.errors import BadRequestError
from docgate.models import FileType

logger = logging.getLogger(__name__)


class FileStorage:
    """Blocking, whole-file storage on the local filesystem."""

    def __init__(
        self,
        root: Path,
        max_file_size_mb: int = 100,
        allowed_file_types: list[FileType | str] | None = None,
    ):
        self.root = root
        self.max_file_size = max_file_size_mb * 1024 * 1024
        # ValueError for a type outside FileType
        self.allowed_file_types = [FileType(t) for t in allowed_file_types or FileType]
        self.root.mkdir(parents=True, exist_ok=True)

    def _owner_dir(self, owner_id: str) -> Path:
        """Per-owner directory, which must sit directly under the root."""
        root = self.root.resolve()
        owner_dir = (root / owner_id).resolve()
        if not owner_id or owner_dir.parent != root:
            raise BadRequestError("Invalid owner id")
        return owner_dir

    def validate_and_store(
        self,
        filename: str,
        content: bytes,
        owner_id: str,
    ) -> tuple[str, FileType, int]:
        """Validate an upload and write it to disk.

        Returns:
            (storage_path, file_type, file_size)

        Raises:
            BadRequestError: unsupported extension, empty or oversize content,
                or an owner id that would leave the storage root
        """
        extension = Path(filename).suffix.lower().lstrip(".")
        allowed_values = [t.value for t in self.allowed_file_types]
        if extension not in allowed_values:
            allowed = ", ".join(allowed_values).upper()
            raise BadRequestError(f"File type not supported. Allowed types: {allowed}")

        size = len(content)
        if size == 0:
            raise BadRequestError("No file provided")
        if size > self.max_file_size:
            raise BadRequestError(
                f"File size exceeds maximum limit of {self.max_file_size // (1024 * 1024)} MB. "
                f"Your file is {size / 1024 / 1024:.2f} MB"
            )

        owner_dir = self._owner_dir(owner_id)
        owner_dir.mkdir(parents=True, exist_ok=True)
        storage_path = owner_dir / str(uuid.uuid4())
        storage_path.write_bytes(content)

        logger.debug(f"Stored {filename} ({size} bytes) at {storage_path}")
        return str(storage_path), FileType(extension), size

    def read_file(self, storage_path: str) -> bytes:
        return Path(storage_path).read_bytes()

    def delete_file(self, storage_path: str) -> None:
        try:
            Path(storage_path).unlink()
        except OSError as e:
            logger.error(f"Failed to delete file at {storage_path}: {e}")
