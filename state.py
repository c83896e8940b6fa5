from typing import TypedDict, List, Dict, Optional, Any, Tuple, Iterator, Iterable
from dataclasses import dataclass, field, replace

from nodes.taxonomy import DocumentTaxonomy, get_default_taxonomy

# ============================================================================
# Classification Data Models
# ============================================================================

@dataclass(frozen=True)
class PageClassification:
    """
    Classification of a single source page.

    Created once per classification run and never modified.
    """
    page_number: int  # 1-indexed
    document_type: str
    confidence: int  # 0-100
    raw_text: str = ""
    thumbnail: Optional[str] = None  # data URL of a page preview

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "document_type": self.document_type,
            "confidence": self.confidence,
            "raw_text": self.raw_text,
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageClassification":
        return cls(
            page_number=int(data["page_number"]),
            document_type=data.get("document_type", "other"),
            confidence=int(data.get("confidence", 0)),
            raw_text=data.get("raw_text", "") or "",
            thumbnail=data.get("thumbnail"),
        )


class DocumentGroupDict(TypedDict, total=False):
    """A grouping of pages suggested by the classification oracle."""
    document_type: str
    pages: List[int]  # 1-indexed
    confidence: int


# ============================================================================
# Partition Data Models
# ============================================================================

@dataclass(frozen=True)
class Split:
    """
    A run of source pages that make up one logical document.

    Pages are unique and ascending, and a split always has at least one
    page. The id is synthetic and independent of the split's position.
    """
    id: str
    document_type: str
    document_type_name: str
    pages: Tuple[int, ...]
    confidence: int
    thumbnail: Optional[str] = None

    def __post_init__(self):
        if not self.pages:
            raise ValueError(f"Split {self.id} must contain at least one page")
        if any(b <= a for a, b in zip(self.pages, self.pages[1:])):
            raise ValueError(
                f"Split {self.id} pages must be unique and ascending: {list(self.pages)}"
            )

    @classmethod
    def create(
        cls,
        split_id: str,
        document_type: str,
        pages: Iterable[int],
        confidence: int,
        taxonomy: Optional[DocumentTaxonomy] = None,
        thumbnail: Optional[str] = None,
    ) -> "Split":
        """Build a split, deriving the display name from the taxonomy."""
        taxonomy = taxonomy or get_default_taxonomy()
        return cls(
            id=split_id,
            document_type=document_type,
            document_type_name=taxonomy.display_name(document_type),
            pages=tuple(sorted(set(pages))),
            confidence=confidence,
            thumbnail=thumbnail,
        )

    @property
    def first_page(self) -> int:
        return self.pages[0]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def with_type(self, document_type: str, taxonomy: Optional[DocumentTaxonomy] = None) -> "Split":
        taxonomy = taxonomy or get_default_taxonomy()
        return replace(
            self,
            document_type=document_type,
            document_type_name=taxonomy.display_name(document_type),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "document_type_name": self.document_type_name,
            "pages": list(self.pages),
            "confidence": self.confidence,
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Split":
        return cls(
            id=data["id"],
            document_type=data["document_type"],
            document_type_name=data.get("document_type_name", ""),
            pages=tuple(int(p) for p in data["pages"]),
            confidence=int(data.get("confidence", 0)),
            thumbnail=data.get("thumbnail"),
        )


@dataclass(frozen=True)
class Partition:
    """
    Ordered sequence of splits over a source PDF of `total_pages` pages.

    Immutable: edits produce a new Partition. Split order need not follow
    ascending page order once splits have been merged.
    """
    splits: Tuple[Split, ...] = ()
    total_pages: int = 0

    def __iter__(self) -> Iterator[Split]:
        return iter(self.splits)

    def __len__(self) -> int:
        return len(self.splits)

    def __getitem__(self, index: int) -> Split:
        return self.splits[index]

    def index_of(self, split_id: str) -> Optional[int]:
        for i, split in enumerate(self.splits):
            if split.id == split_id:
                return i
        return None

    def get(self, split_id: str) -> Optional[Split]:
        index = self.index_of(split_id)
        return self.splits[index] if index is not None else None

    def with_splits(self, splits: Iterable[Split]) -> "Partition":
        return replace(self, splits=tuple(splits))

    def page_numbers(self) -> List[int]:
        """All pages, concatenated in split order."""
        return [page for split in self.splits for page in split.pages]

    def uncovered_pages(self) -> List[int]:
        """Source pages not assigned to any split (e.g. after a removal)."""
        covered = set(self.page_numbers())
        return [p for p in range(1, self.total_pages + 1) if p not in covered]

    def is_complete(self) -> bool:
        """True when every source page appears in exactly one split."""
        pages = self.page_numbers()
        return len(pages) == self.total_pages and set(pages) == set(range(1, self.total_pages + 1))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_pages": self.total_pages,
            "splits": [split.to_dict() for split in self.splits],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Partition":
        return cls(
            splits=tuple(Split.from_dict(s) for s in data.get("splits", [])),
            total_pages=int(data.get("total_pages", 0)),
        )


# ============================================================================
# Output & Upload Data Models
# ============================================================================

@dataclass
class OutputDocument:
    """A standalone PDF produced from one split."""
    source_split_id: str
    document_type: str
    document_type_name: str
    file_bytes: bytes
    page_count: int  # after blank-page removal
    pages: List[int] = field(default_factory=list)  # original page numbers kept


class StoredDocument(TypedDict, total=False):
    """Record returned by the blob store for an uploaded file."""
    id: str
    name: str
    path: str
    url: str
    size: int
    mime_type: str
    uploaded_at: str


@dataclass
class UploadOutcome:
    """Result of attempting to upload one output document."""
    filename: str
    succeeded: bool
    error_message: Optional[str] = None  # set iff the upload failed
    source_split_id: Optional[str] = None
    document_type: Optional[str] = None
    stored: Optional[StoredDocument] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "succeeded": self.succeeded,
            "error_message": self.error_message,
            "source_split_id": self.source_split_id,
            "document_type": self.document_type,
            "stored": self.stored,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadOutcome":
        return cls(
            filename=data["filename"],
            succeeded=bool(data["succeeded"]),
            error_message=data.get("error_message"),
            source_split_id=data.get("source_split_id"),
            document_type=data.get("document_type"),
            stored=data.get("stored"),
        )


@dataclass
class UploadSummary:
    """Aggregate of all upload outcomes for one batch."""
    outcomes: List[UploadOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.succeeded)

    @property
    def failures(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def message(self) -> str:
        """User-facing summary line."""
        if self.failed_count == 0:
            return f"Successfully uploaded {self.success_count} documents from sales pack"
        return f"Uploaded {self.success_count} documents, {self.failed_count} failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "cancelled": self.cancelled,
            "message": self.message,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadSummary":
        return cls(
            outcomes=[UploadOutcome.from_dict(o) for o in data.get("outcomes", [])],
            cancelled=bool(data.get("cancelled", False)),
        )


# ============================================================================
# Main Pipeline State
# ============================================================================

class SalesPackState(TypedDict, total=False):
    """
    The central state of the sales pack pipeline.
    This dict is passed and updated by every node in the graph.
    """
    # Meta Information
    session_id: str
    stage: str  # 'analyzing', 'review', 'splitting', 'uploading', 'complete', 'failed'
    error: Optional[str]
    created_at: str

    # Source Context
    customer_name: str  # target identity for uploads
    source_pdf_path: str
    source_filename: str

    # Classification Output
    total_pages: int
    page_texts: List[str]
    page_classifications: List[PageClassification]
    detected_customer_name: str
    classifier_metrics: Dict[str, Any]

    # Review
    partition: Partition
    pending_edits: List[Dict[str, Any]]  # serialised editor actions

    # Output
    output_documents: List[OutputDocument]
    upload_summary: Optional[UploadSummary]
    splitter_metrics: Dict[str, Any]
