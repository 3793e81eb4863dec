"""Filesystem walk over the shared document folder."""

import os
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..logger import logger
from .models import DocumentType

SUPPORTED_EXTENSIONS = frozenset(f".{t.value}" for t in DocumentType)


@dataclass(frozen=True)
class SourceFile:
    """A document file read from disk at scan time."""

    path: Path
    data: bytes
    size: int
    modified_time: datetime

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def file_type(self) -> DocumentType:
        return DocumentType(self.path.suffix.lower().lstrip("."))


def iter_document_paths(root: str | Path) -> Iterator[Path]:
    """Yield supported document files under ``root``, recursing into subdirectories.

    Directories and files are visited in sorted name order so that repeated
    scans of an unchanged tree see the same sequence.

    Raises:
        FileNotFoundError: If ``root`` is not an existing directory.
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Document root not found: {root}")

    def on_error(error: OSError) -> None:
        logger.error("cannot read directory", path=error.filename, error=str(error))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames.sort()
        for name in sorted(filenames):
            if Path(name).suffix.lower() in SUPPORTED_EXTENSIONS:
                yield Path(dirpath) / name


def read_source_file(path: str | Path) -> SourceFile:
    """Read a document's bytes together with its filesystem metadata."""
    path = Path(path)
    stat = path.stat()
    return SourceFile(
        path=path,
        data=path.read_bytes(),
        size=stat.st_size,
        modified_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )
