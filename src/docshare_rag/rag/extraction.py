"""Plain-text extraction for PDF, DOCX and legacy DOC files."""

import io
import subprocess
import tempfile
from pathlib import Path
from typing import Callable

import docx
import fitz  # PyMuPDF

from ..logger import logger
from .errors import ExtractionError, UnsupportedFormatError
from .models import DocumentType

# Threshold for detecting garbage text (corrupted font encodings)
GARBAGE_CONTROL_CHAR_RATIO = 0.1  # >10% control chars = garbage

CONVERTER_TIMEOUT_SECONDS = 120


def _is_garbage_text(text: str) -> bool:
    """Detect if extracted text is binary garbage from corrupted font encodings.

    Args:
        text: The extracted text to check.

    Returns:
        True if the text appears to be garbage (high ratio of control characters).
    """
    if not text or len(text) < 20:
        return False
    control_chars = sum(1 for c in text if ord(c) < 32 and c not in "\n\t\r ")
    ratio = control_chars / len(text)
    return ratio > GARBAGE_CONTROL_CHAR_RATIO


def extract_pdf_text(data: bytes) -> str:
    """Extract text from a PDF, concatenating pages in order.

    Args:
        data: Raw PDF bytes.

    Returns:
        Page texts joined with newlines.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ExtractionError(f"Cannot open PDF: {e}") from e

    if doc.page_count == 0:
        doc.close()
        raise ExtractionError("PDF has no pages")

    try:
        page_texts = []
        garbage_pages = 0
        for page in doc:
            # PostgreSQL cannot store NUL (0x00) in text fields
            text = page.get_text().replace("\x00", "")
            if _is_garbage_text(text):
                garbage_pages += 1
            page_texts.append(text)

        if garbage_pages:
            logger.warn(
                "garbage text detected in pdf",
                garbage_pages=garbage_pages,
                total_pages=len(page_texts),
            )

        return "\n".join(page_texts)
    except Exception as e:
        raise ExtractionError(f"Cannot read PDF pages: {e}") from e
    finally:
        doc.close()


def extract_docx_text(data: bytes) -> str:
    """Extract text from a DOCX file, dropping all formatting.

    Paragraphs come first, followed by table rows with cells joined by " | ".
    """
    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as e:
        raise ExtractionError(f"Cannot open DOCX: {e}") from e

    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                lines.append(" | ".join(cells))

    return "\n".join(lines).replace("\x00", "")


def _run_antiword(path: Path) -> str:
    result = subprocess.run(
        ["antiword", str(path)],
        capture_output=True,
        check=True,
        timeout=CONVERTER_TIMEOUT_SECONDS,
    )
    return result.stdout.decode("utf-8", errors="replace")


def _run_libreoffice(path: Path, out_dir: Path) -> str:
    subprocess.run(
        [
            "soffice",
            "--headless",
            "--convert-to",
            "txt:Text",
            "--outdir",
            str(out_dir),
            str(path),
        ],
        capture_output=True,
        check=True,
        timeout=CONVERTER_TIMEOUT_SECONDS,
    )
    converted = out_dir / f"{path.stem}.txt"
    return converted.read_text(encoding="utf-8", errors="replace")


def extract_doc_text(data: bytes) -> str:
    """Extract text from a legacy binary DOC file.

    Tries antiword first, then LibreOffice. Both run on a temporary copy of
    the bytes so the source file is never touched.

    Raises:
        UnsupportedFormatError: If neither converter can read the file.
    """
    with tempfile.TemporaryDirectory(prefix="docshare_") as tmp:
        tmp_dir = Path(tmp)
        src = tmp_dir / "document.doc"
        src.write_bytes(data)

        try:
            return _run_antiword(src).replace("\x00", "")
        except (OSError, subprocess.SubprocessError) as e:
            logger.warn("antiword conversion failed, trying libreoffice", error=str(e))

        out_dir = tmp_dir / "out"
        out_dir.mkdir()
        try:
            return _run_libreoffice(src, out_dir).replace("\x00", "")
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("libreoffice conversion failed", error=str(e))
            raise UnsupportedFormatError(
                "Cannot read .doc file: install antiword or LibreOffice"
            ) from e


EXTRACTORS: dict[DocumentType, Callable[[bytes], str]] = {
    DocumentType.PDF: extract_pdf_text,
    DocumentType.DOCX: extract_docx_text,
    DocumentType.DOC: extract_doc_text,
}


def extract_text(data: bytes, doc_type: DocumentType | str) -> str:
    """Convert raw document bytes to plain text.

    Args:
        data: Raw file bytes.
        doc_type: One of the supported document types.

    Returns:
        The extracted plain text (may be empty for image-only documents).

    Raises:
        ExtractionError: If the document is corrupt or cannot be converted.
        UnsupportedFormatError: If the type has no available converter.
    """
    try:
        doc_type = DocumentType(doc_type)
    except ValueError as e:
        raise UnsupportedFormatError(f"Unsupported document type: {doc_type}") from e

    return EXTRACTORS[doc_type](data)
