"""Content fingerprints used for change detection and document identity."""

import hashlib
from pathlib import Path
from uuid import UUID, uuid5

READ_BLOCK_SIZE = 8192


def compute_content_hash(data: bytes) -> str:
    """Return the hex-encoded SHA-256 digest of raw file bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(file_path: str | Path) -> str:
    """Compute SHA-256 hash of a file without loading it into memory at once.

    Args:
        file_path: Path to the file.

    Returns:
        Hex-encoded SHA-256 hash string.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(READ_BLOCK_SIZE), b""):
            sha256.update(block)

    return sha256.hexdigest()


def document_id_from_hash(file_hash: str) -> UUID:
    """Derive the stable document id from the first 128 bits of a content hash."""
    return UUID(hex=file_hash[:32])


def chunk_id(document_id: UUID, chunk_index: int) -> UUID:
    return uuid5(document_id, str(chunk_index))
