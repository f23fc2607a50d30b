"""
Upload store for processor files received over the API.
Files are saved under UPLOAD_ROOT before import so queued jobs can read
them from a shared volume.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from residuals.config import settings
from residuals.errors import FileReadError
from residuals.pipeline.file_reader import file_format_for
from residuals.storage.paths import ensure_parent_dirs, file_hash, upload_path

logger = structlog.get_logger(__name__)


@dataclass
class StoredUpload:
    relative_path: str
    full_path: Path
    content_hash: str
    size_bytes: int


class UploadStore:
    """
    Save and load uploaded processor files.
    All paths are relative to UPLOAD_ROOT.
    """

    def __init__(self, root: Optional[str] = None, max_size_mb: Optional[int] = None):
        self.root = Path(root or settings.UPLOAD_ROOT)
        self.root.mkdir(parents=True, exist_ok=True)
        self.max_size_bytes = (max_size_mb or settings.MAX_UPLOAD_SIZE_MB) * 1024 * 1024
        self.allowed_extensions = {
            ext.strip().lower() for ext in settings.ALLOWED_EXTENSIONS.split(",") if ext.strip()
        }

    def validate(self, file_name: str, data: bytes) -> None:
        suffix = Path(file_name or "").suffix.lower()
        if suffix not in self.allowed_extensions:
            raise FileReadError(f"Unsupported file type '{suffix or '<none>'}'")
        file_format_for(file_name)
        if not data:
            raise FileReadError(f"{file_name} is empty")
        if len(data) > self.max_size_bytes:
            raise FileReadError(
                f"{file_name} is {len(data) / (1024 * 1024):.1f}MB, "
                f"limit is {self.max_size_bytes // (1024 * 1024)}MB"
            )

    def save(self, month: str, file_name: str, data: bytes) -> StoredUpload:
        """Validate and save an upload. Identical content for a month lands on the same path."""
        self.validate(file_name, data)
        content_hash = file_hash(data)
        relative_path = upload_path(month, content_hash, file_name)
        full_path = ensure_parent_dirs(str(self.root), relative_path)
        full_path.write_bytes(data)
        logger.info("upload_saved", path=relative_path, size_bytes=len(data))
        return StoredUpload(relative_path, full_path, content_hash, len(data))

    def full_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    def exists(self, relative_path: str) -> bool:
        return (self.root / relative_path).exists()

    def delete(self, relative_path: str) -> bool:
        """Delete an upload. Returns True if it existed."""
        full_path = self.root / relative_path
        if full_path.exists():
            full_path.unlink()
            logger.info("upload_deleted", path=relative_path)
            return True
        return False
