"""
Content-addressable path generation for uploaded processor files.
All paths are relative to UPLOAD_ROOT.
"""

import hashlib
import re
from pathlib import Path


def file_hash(file_bytes: bytes) -> str:
    """SHA-256 hash of file content."""
    return hashlib.sha256(file_bytes).hexdigest()


def safe_file_name(file_name: str) -> str:
    """Strip directories and characters that do not belong in a stored name."""
    name = Path(file_name or "upload").name
    name = re.sub(r"[^A-Za-z0-9._\- ]", "_", name).strip()
    return name or "upload"


def upload_path(month: str, content_hash: str, file_name: str) -> str:
    """Path for an uploaded processor file. The file name is kept for filename hints."""
    return f"{month}/{content_hash[:16]}/{safe_file_name(file_name)}"


def ensure_parent_dirs(upload_root: str, relative_path: str) -> Path:
    """Create parent directories and return the full absolute path."""
    full_path = Path(upload_root) / relative_path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    return full_path
