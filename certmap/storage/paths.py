"""
Path generation for stored uploads.
All paths are relative to ARTIFACT_ROOT.
"""

import hashlib
import re
from pathlib import Path

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


def doc_hash(file_bytes: bytes) -> str:
    """SHA-256 hash of file content."""
    return hashlib.sha256(file_bytes).hexdigest()


def safe_file_name(file_name: str) -> str:
    """Basename with anything outside [A-Za-z0-9._-] replaced."""
    name = _UNSAFE_CHARS_RE.sub("_", Path(file_name or "").name).strip("._")
    return name or "document.pdf"


def raw_pdf_path(doc_id: str, file_name: str) -> str:
    """Path for the original uploaded PDF."""
    return f"{doc_id}/raw/{safe_file_name(file_name)}"


def ensure_parent_dirs(artifact_root: str, relative_path: str) -> Path:
    """Create parent directories and return the full absolute path."""
    full_path = Path(artifact_root) / relative_path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    return full_path
