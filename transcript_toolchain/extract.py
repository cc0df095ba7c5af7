from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from transcript_toolchain.errors import EmptyDocumentError, ExtractionError

MAX_FILE_SIZE = 50 * 1024 * 1024
RICH_FORMATS = ("pdf", "docx", "odt", "rtf")
PLAIN_FORMATS = ("txt", "md")
SUPPORTED_FORMATS = RICH_FORMATS + PLAIN_FORMATS

_OLE2_MAGIC = bytes.fromhex("d0cf11e0")
_ZIP_MAGIC = b"PK"

ProgressCallback = Callable[[int], None]


def _report(on_progress: Optional[ProgressCallback], percent: int) -> None:
    if on_progress is not None:
        on_progress(percent)


def _check_signature(path: Path, extension: str) -> None:
    with path.open("rb") as handle:
        head = handle.read(4)
    if not head:
        raise EmptyDocumentError()
    if extension in ("docx", "odt"):
        if len(head) < 4:
            raise ExtractionError(f"{path.name} is too small to be a .{extension} file.")
        if head.startswith(_OLE2_MAGIC):
            raise ExtractionError(
                f"{path.name} is a legacy Word document renamed to .{extension}. "
                "Save it as .docx or .odt and try again."
            )
        if not head.startswith(_ZIP_MAGIC):
            raise ExtractionError(f"{path.name} is damaged or not a .{extension} file.")


def _read_plain(path: Path) -> str:
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("extract.encoding_fallback path={path} encoding=cp1252", path=path)
        return raw.decode("cp1252", errors="replace")


def _read_rich(path: Path, extension: str) -> str:
    from unstructured.partition.auto import partition  # lazy import to keep CLI snappy

    try:
        elements = partition(filename=str(path.resolve()))
    except Exception as exc:  # noqa: BLE001
        message = str(exc).lower()
        if "password" in message or "encrypt" in message:
            raise ExtractionError(
                f"{path.name} is password protected. Remove the protection and try again."
            ) from exc
        raise ExtractionError(f"Could not read {path.name} as .{extension}: {exc}") from exc
    logger.info(
        "Partitioned {count} elements from {source}",
        count=len(elements),
        source=path,
    )
    return "\n\n".join(e.text for e in elements if e.text and e.text.strip())


def extract_text(path: Path | str, on_progress: Optional[ProgressCallback] = None) -> str:
    """
    Raw text of a PDF, DOCX, ODT, RTF, TXT or Markdown file.

    Plain text is read verbatim so line structure survives; rich formats go
    through ``unstructured`` partitioning with one blank line between
    elements. Every refusal is an ``ExtractionError`` with a message meant for
    the person who supplied the file.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File {path} does not exist.")
    extension = path.suffix.lower().lstrip(".")
    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ExtractionError(
            f"{path.name} is too large ({size / 1024 / 1024:.1f} MB); "
            f"the limit is {MAX_FILE_SIZE // 1024 // 1024} MB."
        )
    if extension == "doc":
        raise ExtractionError(
            "Legacy .doc files are not supported. Save the file as .docx or .odt and try again."
        )
    if extension not in SUPPORTED_FORMATS:
        raise ExtractionError(
            f"Unsupported file type .{extension or '?'}; use one of "
            + ", ".join(f".{fmt}" for fmt in SUPPORTED_FORMATS)
            + "."
        )

    _report(on_progress, 0)
    _check_signature(path, extension)
    _report(on_progress, 10)
    if extension in PLAIN_FORMATS:
        text = _read_plain(path)
    else:
        text = _read_rich(path, extension)
    _report(on_progress, 100)

    if not text.strip():
        if extension == "pdf":
            raise ExtractionError(
                f"{path.name} contains no selectable text; it is probably a scanned image. "
                "Run it through OCR first."
            )
        raise EmptyDocumentError()
    logger.debug("extract.done path={path} chars={chars}", path=path, chars=len(text))
    return text
