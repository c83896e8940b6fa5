"""
PDF Splitter Node - Physical Splitting of a Sales Pack

Given the original sales pack PDF and the reviewed partition, produces one
standalone PDF per split:

- Pages of each split are copied in ascending order into a new document
- Blank filler pages are dropped (see nodes.blank_detector)
- A split whose pages are all blank produces no output document
- Output order matches split order in the partition

A source PDF that cannot be opened fails the whole run before any output
is produced. Corrupted, password-protected and empty files are reported
with a PdfProcessingResult explaining what went wrong.
"""

import io
import os
import time
import base64
import logging
from typing import List, Dict, Any, Optional, Sequence
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime

import pypdfium2 as pdfium
from pypdf import PasswordType, PdfReader, PdfWriter

from state import OutputDocument, Partition, SalesPackState
from nodes.blank_detector import BlankPageConfig, BlankPageDetector

# Configure logger for splitter metrics
logger = logging.getLogger(__name__)


# ============================================================================
# Processing Status
# ============================================================================

class PdfStatus(Enum):
    """Status of opening a source PDF."""
    SUCCESS = "success"                        # PDF opened successfully
    PASSWORD_PROTECTED = "password_protected"  # PDF requires password
    CORRUPTED = "corrupted"                    # PDF file is corrupted/invalid
    EMPTY = "empty"                            # PDF has no pages or content
    UNSUPPORTED_FORMAT = "unsupported_format"  # Not a valid PDF


class PdfErrorSeverity(Enum):
    """Severity level for PDF processing errors."""
    INFO = "info"          # Informational, processing continued
    WARNING = "warning"    # Issue detected but processing completed
    ERROR = "error"        # Processing failed, needs attention
    CRITICAL = "critical"  # Cannot process, requires manual intervention


@dataclass
class PdfProcessingResult:
    """
    Result of attempting to open a source PDF.

    Provides detailed status and error information for PDFs
    that couldn't be processed normally.
    """
    status: PdfStatus
    success: bool
    message: str
    severity: PdfErrorSeverity = PdfErrorSeverity.INFO

    # Source info
    source_name: Optional[str] = None
    file_size_bytes: Optional[int] = None
    page_count: Optional[int] = None

    # Error details
    error_type: Optional[str] = None
    error_details: Optional[str] = None

    # Suggestion for resolution
    suggested_action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "success": self.success,
            "message": self.message,
            "severity": self.severity.value,
            "source_name": self.source_name,
            "file_size_bytes": self.file_size_bytes,
            "page_count": self.page_count,
            "error_type": self.error_type,
            "error_details": self.error_details,
            "suggested_action": self.suggested_action,
        }

    @staticmethod
    def success_result(source_name: Optional[str], message: str = "PDF opened successfully") -> "PdfProcessingResult":
        """Create a successful processing result."""
        return PdfProcessingResult(
            status=PdfStatus.SUCCESS,
            success=True,
            message=message,
            severity=PdfErrorSeverity.INFO,
            source_name=source_name,
        )

    @staticmethod
    def password_protected(source_name: Optional[str]) -> "PdfProcessingResult":
        """Create result for password-protected PDF."""
        return PdfProcessingResult(
            status=PdfStatus.PASSWORD_PROTECTED,
            success=False,
            message="PDF is password-protected and cannot be split",
            severity=PdfErrorSeverity.ERROR,
            source_name=source_name,
            error_type="PasswordProtected",
            suggested_action="Please upload an unprotected copy of the sales pack",
        )

    @staticmethod
    def corrupted(source_name: Optional[str], error_details: Optional[str] = None) -> "PdfProcessingResult":
        """Create result for corrupted PDF."""
        return PdfProcessingResult(
            status=PdfStatus.CORRUPTED,
            success=False,
            message="PDF file appears to be corrupted or invalid",
            severity=PdfErrorSeverity.CRITICAL,
            source_name=source_name,
            error_type="CorruptedFile",
            error_details=error_details,
            suggested_action="Please re-scan the sales pack or provide another copy",
        )

    @staticmethod
    def empty_pdf(source_name: Optional[str]) -> "PdfProcessingResult":
        """Create result for empty PDF."""
        return PdfProcessingResult(
            status=PdfStatus.EMPTY,
            success=False,
            message="PDF file contains no pages",
            severity=PdfErrorSeverity.ERROR,
            source_name=source_name,
            error_type="EmptyDocument",
            suggested_action="Please upload a PDF with content",
        )

    @staticmethod
    def not_a_pdf(source_name: Optional[str]) -> "PdfProcessingResult":
        """Create result for non-PDF input."""
        return PdfProcessingResult(
            status=PdfStatus.UNSUPPORTED_FORMAT,
            success=False,
            message="File is not a valid PDF document",
            severity=PdfErrorSeverity.ERROR,
            source_name=source_name,
            error_type="InvalidFormat",
            suggested_action="Please select a PDF file",
        )


class SourceParseFailure(Exception):
    """The source PDF could not be opened; nothing was split."""

    def __init__(self, result: PdfProcessingResult):
        self.result = result
        super().__init__(result.message)


class PartitionMismatchError(ValueError):
    """The partition references pages the source PDF does not have."""


def get_pdf_error_message(result: PdfProcessingResult) -> str:
    """
    Get a user-friendly error message for a PDF processing result.

    Args:
        result: The processing result

    Returns:
        Formatted error message string
    """
    if result.success:
        return result.message

    lines = [
        f"⚠️  PDF Processing Error: {result.message}",
    ]

    if result.error_type:
        lines.append(f"   Error Type: {result.error_type}")

    if result.error_details:
        lines.append(f"   Details: {result.error_details}")

    if result.suggested_action:
        lines.append(f"   Action: {result.suggested_action}")

    return "\n".join(lines)


# ============================================================================
# Configuration & Metrics
# ============================================================================

@dataclass
class SplitterConfig:
    """Configuration for PDF splitting behavior."""

    # Drop pages judged blank from every output document
    remove_blank_pages: bool = True

    # Blank page detection thresholds
    blank: BlankPageConfig = field(default_factory=BlankPageConfig)

    # Log a warning when splitting takes longer than this
    slow_threshold_ms: float = 5000.0


@dataclass
class SplitterMetrics:
    """Performance metrics for one split run."""

    # Source information
    source_name: str = ""
    file_size_bytes: Optional[int] = None

    # Timing metrics (all in milliseconds)
    total_processing_time_ms: float = 0.0
    validation_time_ms: float = 0.0
    splitting_time_ms: float = 0.0

    # Document metrics
    total_pages: int = 0
    splits_in_partition: int = 0
    documents_created: int = 0
    pages_per_document: List[int] = field(default_factory=list)

    # Blank page metrics
    blank_pages_removed: int = 0
    splits_skipped: int = 0  # every page was blank
    pages_rendered: int = 0  # pixel fallback renders

    # Performance indicators
    pages_per_second: float = 0.0
    is_slow: bool = False
    slow_threshold_ms: float = 5000.0

    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def calculate_derived_metrics(self) -> None:
        """Calculate derived metrics after timing data is collected."""
        if self.total_processing_time_ms > 0 and self.total_pages > 0:
            self.pages_per_second = (self.total_pages / self.total_processing_time_ms) * 1000

        self.is_slow = self.total_processing_time_ms > self.slow_threshold_ms

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for logging/serialization."""
        return {
            "source_name": self.source_name,
            "file_size_bytes": self.file_size_bytes,
            "total_processing_time_ms": round(self.total_processing_time_ms, 2),
            "validation_time_ms": round(self.validation_time_ms, 2),
            "splitting_time_ms": round(self.splitting_time_ms, 2),
            "total_pages": self.total_pages,
            "splits_in_partition": self.splits_in_partition,
            "documents_created": self.documents_created,
            "pages_per_document": self.pages_per_document,
            "blank_pages_removed": self.blank_pages_removed,
            "splits_skipped": self.splits_skipped,
            "pages_rendered": self.pages_rendered,
            "pages_per_second": round(self.pages_per_second, 2),
            "is_slow": self.is_slow,
            "timestamp": self.timestamp,
        }

    def log_summary(self) -> str:
        """Generate a human-readable summary for logging."""
        lines = [
            f"📊 Splitter Metrics Summary",
            f"   Source: {self.source_name or 'N/A'}",
            f"   Total Time: {self.total_processing_time_ms:.1f}ms",
            f"   Pages: {self.total_pages} → {self.documents_created} document(s) "
            f"from {self.splits_in_partition} split(s)",
        ]

        if self.pages_per_document:
            pages_str = ", ".join(str(p) for p in self.pages_per_document)
            lines.append(f"   Pages per doc: [{pages_str}]")

        if self.blank_pages_removed or self.splits_skipped:
            lines.append(
                f"   Blank: {self.blank_pages_removed} page(s) removed, "
                f"{self.splits_skipped} all-blank split(s) skipped"
            )

        lines.append(f"   Speed: {self.pages_per_second:.1f} pages/sec")

        if self.is_slow:
            lines.append(f"   ⚠️  SLOW: Processing exceeded {self.slow_threshold_ms}ms threshold")

        return "\n".join(lines)


def log_splitter_metrics(metrics: SplitterMetrics) -> None:
    """Log splitter metrics using the standard logger."""
    metrics.calculate_derived_metrics()

    logger.info(metrics.log_summary())
    logger.debug(f"Splitter metrics: {metrics.to_dict()}")

    if metrics.is_slow:
        logger.warning(
            f"Slow PDF splitting detected: {metrics.source_name} "
            f"took {metrics.total_processing_time_ms:.1f}ms "
            f"({metrics.total_pages} pages, {metrics.documents_created} docs)"
        )


# ============================================================================
# Source Validation
# ============================================================================

def validate_pdf_bytes(data: bytes, source_name: Optional[str] = None) -> PdfProcessingResult:
    """
    Cheap pre-flight checks before parsing a PDF.

    Checks for:
    - Empty input
    - Valid PDF format (magic bytes)
    """
    if not data:
        result = PdfProcessingResult.empty_pdf(source_name)
        result.file_size_bytes = 0
        return result

    # PDF files should start with %PDF- (allow leading whitespace/junk some scanners add)
    if b"%PDF-" not in data[:1024]:
        return PdfProcessingResult.not_a_pdf(source_name)

    result = PdfProcessingResult.success_result(source_name, "PDF validation passed")
    result.file_size_bytes = len(data)
    return result


def open_pdf(data: bytes, source_name: Optional[str] = None) -> PdfReader:
    """
    Open a source PDF, failing with SourceParseFailure if it is unusable.

    Encrypted PDFs are tried with an empty password, which is how most
    scanner-produced "protected" files open.
    """
    validation = validate_pdf_bytes(data, source_name)
    if not validation.success:
        raise SourceParseFailure(validation)

    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted and reader.decrypt("") == PasswordType.NOT_DECRYPTED:
            raise SourceParseFailure(PdfProcessingResult.password_protected(source_name))
        page_count = len(reader.pages)
    except SourceParseFailure:
        raise
    except Exception as e:
        error_str = str(e).lower()
        if "password" in error_str or "encrypt" in error_str or "decrypt" in error_str:
            raise SourceParseFailure(PdfProcessingResult.password_protected(source_name)) from e
        raise SourceParseFailure(PdfProcessingResult.corrupted(source_name, str(e))) from e

    if page_count == 0:
        raise SourceParseFailure(PdfProcessingResult.empty_pdf(source_name))

    return reader


def count_pages(data: bytes) -> int:
    """Number of pages in a PDF."""
    return len(open_pdf(data).pages)


def extract_page_texts(data: bytes) -> List[str]:
    """
    Extract the text layer of every page.

    Used when the classification oracle returns no page texts. Scanned
    pages without a text layer come back as empty strings.
    """
    reader = open_pdf(data)
    texts = []
    for page_number, page in enumerate(reader.pages, start=1):
        try:
            texts.append(page.extract_text() or "")
        except Exception as e:
            logger.warning(f"Text extraction failed on page {page_number}: {e}")
            texts.append("")
    return texts


def render_thumbnails(data: bytes, max_width: int = 200) -> List[Optional[str]]:
    """
    Render a JPEG preview of every page as a data URL.

    Best effort: a page that fails to render gets None, and a PDF that
    cannot be opened for rendering gets no thumbnails at all.
    """
    try:
        pdf = pdfium.PdfDocument(io.BytesIO(data))
    except Exception as e:
        logger.warning(f"Could not open PDF for thumbnails: {e}")
        return []

    thumbnails: List[Optional[str]] = []
    try:
        for index in range(len(pdf)):
            try:
                page = pdf[index]
                try:
                    width = page.get_width()
                    scale = max_width / width if width else 0.3
                    image = page.render(scale=scale).to_pil()
                finally:
                    page.close()

                buffer = io.BytesIO()
                image.convert("RGB").save(buffer, format="JPEG", quality=70)
                encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
                thumbnails.append(f"data:image/jpeg;base64,{encoded}")
            except Exception as e:
                logger.warning(f"Could not render thumbnail for page {index + 1}: {e}")
                thumbnails.append(None)
    finally:
        pdf.close()

    return thumbnails


# ============================================================================
# Splitting
# ============================================================================

def split_pdf(
    source_bytes: bytes,
    partition: Partition,
    page_texts: Optional[Sequence[Optional[str]]] = None,
    config: Optional[SplitterConfig] = None,
    source_name: Optional[str] = None,
    metrics: Optional[SplitterMetrics] = None,
) -> List[OutputDocument]:
    """
    Split the source PDF into one PDF per split.

    Args:
        source_bytes: Original sales pack PDF
        partition: Reviewed partition (removed splits are simply absent)
        page_texts: OCR text per page, index 0 = page 1. Missing entries or
            None mean the text is unavailable.
        config: Splitter configuration
        source_name: Name of the source for logs and error reports
        metrics: Optional metrics object to fill in

    Returns:
        Output documents in partition order. Splits whose pages are all
        blank are left out.

    Raises:
        SourceParseFailure: If the source PDF cannot be opened
        PartitionMismatchError: If the partition references missing pages
    """
    config = config or SplitterConfig()
    metrics = metrics if metrics is not None else SplitterMetrics()
    page_texts = list(page_texts or [])

    start_time = time.time()
    metrics.source_name = source_name or ""
    metrics.file_size_bytes = len(source_bytes) if source_bytes else 0
    metrics.splits_in_partition = len(partition)
    metrics.slow_threshold_ms = config.slow_threshold_ms

    reader = open_pdf(source_bytes, source_name)
    total_pages = len(reader.pages)
    metrics.total_pages = total_pages
    metrics.validation_time_ms = (time.time() - start_time) * 1000

    out_of_range = sorted(p for p in partition.page_numbers() if p < 1 or p > total_pages)
    if out_of_range:
        raise PartitionMismatchError(
            f"Partition references pages {out_of_range} but the source has {total_pages} pages"
        )

    def text_for(page_number: int) -> Optional[str]:
        if page_number - 1 < len(page_texts):
            return page_texts[page_number - 1]
        return None

    split_start = time.time()
    documents: List[OutputDocument] = []

    with BlankPageDetector(config.blank, source_bytes) as detector:
        for split in partition:
            if config.remove_blank_pages:
                kept = []
                for page_number in split.pages:
                    if detector.is_blank(text_for(page_number), page_number):
                        logger.info(f"Removing blank page {page_number} from {split.document_type_name}")
                        metrics.blank_pages_removed += 1
                    else:
                        kept.append(page_number)
            else:
                kept = list(split.pages)

            if not kept:
                logger.info(f"Skipping entirely blank document: {split.document_type_name}")
                metrics.splits_skipped += 1
                continue

            writer = PdfWriter()
            for page_number in kept:
                writer.add_page(reader.pages[page_number - 1])

            buffer = io.BytesIO()
            writer.write(buffer)

            documents.append(OutputDocument(
                source_split_id=split.id,
                document_type=split.document_type,
                document_type_name=split.document_type_name,
                file_bytes=buffer.getvalue(),
                page_count=len(kept),
                pages=kept,
            ))

        metrics.pages_rendered = detector.pages_rendered

    metrics.splitting_time_ms = (time.time() - split_start) * 1000
    metrics.total_processing_time_ms = (time.time() - start_time) * 1000
    metrics.documents_created = len(documents)
    metrics.pages_per_document = [doc.page_count for doc in documents]

    return documents


# ============================================================================
# Pipeline Node
# ============================================================================

def build_splitter_config() -> SplitterConfig:
    """Build splitter configuration from the environment."""
    return SplitterConfig(
        remove_blank_pages=os.getenv("REMOVE_BLANK_PAGES", "true").lower() == "true",
        blank=BlankPageConfig(
            min_text_chars=int(os.getenv("BLANK_PAGE_MIN_CHARS", "20")),
            use_pixel_fallback=os.getenv("BLANK_PAGE_PIXEL_FALLBACK", "false").lower() == "true",
        ),
    )


def pdf_splitter_node(state: SalesPackState) -> dict:
    """
    Node: PDF Splitter

    Splits the reviewed partition out of the source PDF.

    Process:
    1. Read the source PDF
    2. Drop blank pages from every split
    3. Write one PDF per remaining split
    4. Log splitter metrics
    """
    print("--- NODE: PDF Splitter ---")

    pdf_path = state.get("source_pdf_path", "")
    partition = state.get("partition") or Partition()
    metrics = SplitterMetrics()

    try:
        with open(pdf_path, "rb") as f:
            source_bytes = f.read()
    except OSError as e:
        logger.error(f"Cannot read source PDF {pdf_path}: {e}")
        return {"stage": "failed", "error": f"Cannot read source PDF: {e}", "output_documents": []}

    try:
        documents = split_pdf(
            source_bytes,
            partition,
            state.get("page_texts", []),
            config=build_splitter_config(),
            source_name=os.path.basename(pdf_path),
            metrics=metrics,
        )
    except SourceParseFailure as e:
        print(f"   {get_pdf_error_message(e.result)}")
        return {"stage": "failed", "error": str(e), "output_documents": []}
    except PartitionMismatchError as e:
        logger.error(f"Partition does not match source PDF: {e}")
        return {"stage": "failed", "error": str(e), "output_documents": []}

    log_splitter_metrics(metrics)
    print(f"   Split sales pack into {len(documents)} document(s).")

    return {
        "stage": "uploading",
        "output_documents": documents,
        "splitter_metrics": metrics.to_dict(),
    }
