"""
Page Classifier Node - Per-Page Document Type Classification

Classifies every page of a scanned sales pack into a document type from
the taxonomy, suggests how consecutive pages group into documents and
picks out the customer name printed on the paperwork.

Two oracle modes:
- classify_pages: page texts in, one classification per page out
- analyze_pdf: the whole PDF is sent to the model, which returns page
  texts along with the grouping

Providers:
- anthropic / openai: LangChain chat models prompted with the taxonomy
- keyword: regex patterns per document type, no network access

An oracle error or a malformed response raises ClassificationFailure.
There is no silent fallback: a failed run produces no partition.
"""

import os
import re
import json
import time
import base64
import logging
from typing import List, Dict, Any, Optional, Sequence, Tuple
from dataclasses import dataclass, field, replace
from datetime import datetime

from langchain_anthropic import ChatAnthropic
from langchain_openai import ChatOpenAI
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from state import DocumentGroupDict, PageClassification, SalesPackState
from nodes.blank_detector import is_blank
from nodes.partition import (
    DEFAULT_PAGE_CONFIDENCE,
    classifications_from_groups,
    partition_from_groups,
)
from nodes.splitter import (
    SourceParseFailure,
    count_pages,
    extract_page_texts,
    get_pdf_error_message,
    render_thumbnails,
)
from nodes.taxonomy import OTHER_TYPE, DocumentTaxonomy, get_default_taxonomy

# Configure logger
logger = logging.getLogger(__name__)


class ClassificationFailure(Exception):
    """The classification oracle failed or returned something unusable."""


# ============================================================================
# Classifier Configuration
# ============================================================================

@dataclass
class ClassifierConfig:
    """Configuration for page classification."""

    # LLM settings
    llm_provider: str = "anthropic"  # "anthropic", "openai", "keyword"
    llm_model: str = "claude-haiku-4-5-20251001"
    llm_temperature: float = 0.0  # Deterministic for classification
    llm_max_tokens: int = 4096

    # "pdf" sends the whole PDF to the model, "text" extracts page text locally first
    analysis_mode: str = "pdf"

    # Text sampling
    max_chars_per_page: int = 3000

    # Largest PDF the model accepts as a document block
    max_pdf_mb: float = 20.0

    # Page previews for the review screen
    generate_thumbnails: bool = True

    # Mock mode for testing
    use_mock: bool = False


@dataclass
class BatchClassification:
    """Everything the oracle said about one sales pack."""
    total_pages: int
    page_texts: List[str]
    pages: List[PageClassification]
    document_groups: List[DocumentGroupDict] = field(default_factory=list)
    customer_name: str = ""
    method: str = "llm"  # "llm", "keyword", "mock"
    processing_time_ms: float = 0.0


# ============================================================================
# Prompts
# ============================================================================

BATCH_CLASSIFY_PROMPT = """You are analyzing pages from a scanned "Sales Pack" PDF for a Singapore car dealership CRM.
This PDF contains multiple document types that need to be identified and grouped.

YOUR TASKS:
1. Classify each page into one of the document types
2. Group CONSECUTIVE pages that belong to the same document
3. Extract the customer name (appears on multiple documents)

DOCUMENT TYPES (choose the BEST match for each page):
{document_types}

GROUPING RULES:
- VSA (Vehicle Sales Agreement) is typically 2-4 pages with terms and conditions
- PDPA consent is typically 1-2 pages
- NRIC front and back should be SEPARATE documents (nric_front, nric_back)
- Driving license front and back should be SEPARATE documents
- Insurance documents may be 1-3 pages
- COE bidding forms are typically 2 pages
- Pages with "CONDITIONS OF SALE" or similar legal text belong to VSA
- Group consecutive pages of the SAME document type together

Respond in JSON format:
{{
    "customerName": "CUSTOMER NAME IN CAPS",
    "pages": [
        {{"documentType": "vsa", "confidence": 95}},
        {{"documentType": "nric_front", "confidence": 88}}
    ],
    "documentGroups": [
        {{"documentType": "vsa", "pages": [1], "confidence": 95}},
        {{"documentType": "nric_front", "pages": [2], "confidence": 88}}
    ]
}}

IMPORTANT:
- pages must have exactly one entry per page, in order
- documentGroups must cover ALL pages with no gaps
- pages in documentGroups are 1-indexed (first page is 1)
- confidence is 0-100
- Blank or mostly empty pages should have confidence < 50 and type "other\""""


ANALYZE_PDF_PROMPT = """You are analyzing a multi-page "Sales Pack" PDF for a Singapore car dealership CRM.

YOUR TASKS:
1. For each page, extract key text content
2. Classify each page into one of the document types
3. Group consecutive pages that belong to the same document
4. Extract the customer name (appears on multiple documents)

DOCUMENT TYPES (choose the BEST match for each page):
{document_types}

BLANK PAGES: pages with no content or only page numbers/headers must be
"[BLANK]" in pageTexts and must NOT be included in any documentGroup.

Respond in JSON format:
{{
    "totalPages": 3,
    "customerName": "CUSTOMER NAME IN CAPS",
    "pageTexts": ["text from page 1...", "[BLANK]", "text from page 3..."],
    "documentGroups": [
        {{"documentType": "vsa", "pages": [1], "confidence": 95}},
        {{"documentType": "nric_front", "pages": [3], "confidence": 90}}
    ]
}}

IMPORTANT:
- pageTexts must have one entry per page (first 500 characters of the page)
- pages in documentGroups are 1-indexed (first page is 1)
- confidence is 0-100"""


def format_page_contents(page_texts: Sequence[str], max_chars_per_page: int = 3000) -> str:
    """Render page texts as numbered blocks for the batch prompt."""
    blocks = []
    for i, text in enumerate(page_texts):
        text = text or ""
        if len(text) > max_chars_per_page:
            text = text[:max_chars_per_page] + "... [truncated]"
        blocks.append(f"=== PAGE {i + 1} ===\n{text or '[BLANK PAGE]'}")
    return "\n\n".join(blocks)


# ============================================================================
# Response Parsing
# ============================================================================

def _extract_json(response_text: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model response.

    Handles markdown code fences and leading/trailing chatter.
    """
    text = response_text.strip()

    # Handle potential markdown code blocks
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    text = text.strip()

    if not text.startswith("{"):
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            text = match.group(0)

    try:
        result = json.loads(text)
    except json.JSONDecodeError as e:
        raise ClassificationFailure(f"Failed to parse classifier response as JSON: {e}") from e

    if not isinstance(result, dict):
        raise ClassificationFailure("Classifier response is not a JSON object")
    return result


def _coerce_confidence(value: Any) -> int:
    """Clamp a model confidence to 0-100; missing or non-numeric becomes the default."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_PAGE_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_CONFIDENCE
    return max(0, min(100, int(round(confidence))))


def _coerce_groups(raw_groups: Any, taxonomy: DocumentTaxonomy) -> List[DocumentGroupDict]:
    if raw_groups is None:
        return []
    if not isinstance(raw_groups, list):
        raise ClassificationFailure("documentGroups must be a list")

    groups: List[DocumentGroupDict] = []
    for raw in raw_groups:
        if not isinstance(raw, dict):
            raise ClassificationFailure(f"Malformed document group: {raw!r}")
        pages = raw.get("pages") or []
        if not isinstance(pages, list):
            raise ClassificationFailure(f"Malformed page list in document group: {raw!r}")
        groups.append({
            "document_type": taxonomy.normalize(raw.get("documentType")),
            "pages": [int(p) for p in pages if isinstance(p, (int, float)) and not isinstance(p, bool)],
            "confidence": _coerce_confidence(raw.get("confidence")),
        })
    return groups


def parse_batch_response(
    response_text: str,
    page_texts: Sequence[str],
    taxonomy: Optional[DocumentTaxonomy] = None,
) -> BatchClassification:
    """
    Parse a classify_pages response.

    Args:
        response_text: Raw model output
        page_texts: The page texts that were sent
        taxonomy: Used to normalise document types

    Returns:
        BatchClassification with exactly one PageClassification per page

    Raises:
        ClassificationFailure: If the response is not usable
    """
    taxonomy = taxonomy or get_default_taxonomy()
    result = _extract_json(response_text)
    total_pages = len(page_texts)

    raw_pages = result.get("pages")
    if raw_pages is not None and not isinstance(raw_pages, list):
        raise ClassificationFailure("pages must be a list")
    raw_pages = raw_pages or []

    groups = _coerce_groups(result.get("documentGroups"), taxonomy)

    if not raw_pages and not groups:
        raise ClassificationFailure("Classifier response contains neither pages nor documentGroups")

    if raw_pages and len(raw_pages) != total_pages:
        logger.warning(
            f"Classifier returned {len(raw_pages)} page classifications for {total_pages} pages, "
            "filling gaps from document groups"
        )

    from_groups = classifications_from_groups(groups, page_texts, total_pages)

    pages: List[PageClassification] = []
    for i in range(total_pages):
        raw = raw_pages[i] if i < len(raw_pages) else None
        if isinstance(raw, dict):
            pages.append(PageClassification(
                page_number=i + 1,
                document_type=taxonomy.normalize(raw.get("documentType")),
                confidence=_coerce_confidence(raw.get("confidence")),
                raw_text=page_texts[i] or "",
            ))
        else:
            pages.append(from_groups[i])

    return BatchClassification(
        total_pages=total_pages,
        page_texts=list(page_texts),
        pages=pages,
        document_groups=groups,
        customer_name=str(result.get("customerName") or "").strip(),
        method="llm",
    )


def parse_pdf_analysis_response(
    response_text: str,
    total_pages: Optional[int] = None,
    taxonomy: Optional[DocumentTaxonomy] = None,
) -> BatchClassification:
    """
    Parse an analyze_pdf response.

    Per-page types come from the document groups; pages outside every
    group (blank pages) become "other".

    Args:
        response_text: Raw model output
        total_pages: Page count of the PDF, if known locally. Overrides
            the model's own count.
        taxonomy: Used to normalise document types
    """
    taxonomy = taxonomy or get_default_taxonomy()
    result = _extract_json(response_text)

    page_texts = result.get("pageTexts") or []
    if not isinstance(page_texts, list):
        raise ClassificationFailure("pageTexts must be a list")
    page_texts = [str(t) if t is not None else "" for t in page_texts]

    model_pages = result.get("totalPages")
    if total_pages is None:
        try:
            total_pages = int(model_pages) if model_pages else (len(page_texts) or 1)
        except (TypeError, ValueError):
            raise ClassificationFailure(f"Invalid totalPages: {model_pages!r}")
    elif model_pages and model_pages != total_pages:
        logger.warning(f"Model counted {model_pages} pages, PDF has {total_pages}")

    groups = _coerce_groups(result.get("documentGroups"), taxonomy)
    page_texts = page_texts[:total_pages]

    return BatchClassification(
        total_pages=total_pages,
        page_texts=page_texts,
        pages=classifications_from_groups(groups, page_texts, total_pages),
        document_groups=groups,
        customer_name=str(result.get("customerName") or "").strip(),
        method="llm",
    )


# ============================================================================
# Keyword-Based Classification
# ============================================================================

# Keyword patterns for each document type with weights
KEYWORD_PATTERNS: Dict[str, List[Tuple[str, float]]] = {
    "vsa": [
        (r"vehicle\s+sales?\s+agreement", 1.0),
        (r"conditions\s+of\s+sale", 0.90),
        (r"proforma\s+invoice", 0.85),
        (r"sales\s+contract", 0.80),
    ],
    "pdpa": [
        (r"\bpdpa\b", 1.0),
        (r"personal\s+data\s+protection", 0.95),
        (r"consent\s+to\s+(?:the\s+)?collection", 0.80),
    ],
    "nric_front": [
        (r"republic\s+of\s+singapore\s+identity\s+card", 0.95),
        (r"\b[stfg]\d{7}[a-z]\b.*\bdate\s+of\s+birth", 0.85),
    ],
    "nric_back": [
        (r"date\s+of\s+issue.*\baddress\b", 0.80),
        (r"\bblk\b.*#\d{2}-\d{2,4}", 0.70),
    ],
    "driving_license": [
        (r"driving\s+licen[cs]e", 0.95),
        (r"licen[cs]e\s+class(?:es)?", 0.80),
    ],
    "test_drive_form": [
        (r"test\s+drive", 1.0),
    ],
    "loan_approval": [
        (r"loan\s+approval", 1.0),
        (r"(?:hire\s+purchase|loan)\s+(?:has\s+been\s+)?approved", 0.90),
    ],
    "loan_application": [
        (r"loan\s+application", 1.0),
        (r"hire\s+purchase\s+application", 0.90),
    ],
    "insurance_quote": [
        (r"insurance\s+(?:quote|quotation|proposal)", 1.0),
    ],
    "insurance_policy": [
        (r"cover\s+note", 1.0),
        (r"certificate\s+of\s+(?:motor\s+)?insurance", 0.95),
        (r"policy\s+(?:schedule|number)", 0.75),
    ],
    "insurance_acceptance": [
        (r"insurance\s+acceptance", 1.0),
        (r"declaration\s+of\s+loss", 0.90),
    ],
    "payment_proof": [
        (r"payment\s+(?:receipt|advice)", 0.95),
        (r"official\s+receipt", 0.85),
        (r"(?:fund|bank)\s+transfer", 0.75),
    ],
    "delivery_checklist": [
        (r"delivery\s+check\s*list", 1.0),
        (r"vehicle\s+delivery", 0.80),
    ],
    "registration_card": [
        (r"vehicle\s+registration\s+card", 1.0),
        (r"\bvehicle\s+log\s+card\b", 0.85),
    ],
    "trade_in_docs": [
        (r"trade[\s-]*in", 0.90),
    ],
    "coe_bidding": [
        (r"\bcoe\b.*\bbid", 1.0),
        (r"certificate\s+of\s+entitlement", 0.90),
    ],
    "purchase_agreement": [
        (r"purchase\s+agreement", 0.90),
        (r"agreement\s+to\s+purchase", 0.85),
    ],
    "parf_rebate": [
        (r"\bparf\b", 1.0),
        (r"preferential\s+additional\s+registration\s+fee", 1.0),
    ],
    "authorized_letter": [
        (r"letter\s+of\s+authori[sz]ation", 1.0),
        (r"hereby\s+authori[sz]e", 0.85),
    ],
    "proposal_form": [
        (r"proposal\s+form", 0.95),
    ],
    "price_list": [
        (r"price\s+list", 1.0),
    ],
}

# Confidence for blank pages and pages no pattern matched
KEYWORD_BLANK_CONFIDENCE = 10
KEYWORD_NO_MATCH_CONFIDENCE = 30

CUSTOMER_NAME_PATTERNS = [
    r"(?i)(?:customer|buyer|purchaser|hirer)(?:'s)?\s+name\s*[:\-]\s*([A-Za-z][A-Za-z .,'/@\-]{2,60})",
    r"\b(?:NAME|Name|name)\s*[:\-]\s*([A-Z][A-Z .,'/@\-]{2,60})",
]


def classify_page_by_keywords(
    text: str,
    page_number: int,
    config: Optional[ClassifierConfig] = None,
    taxonomy: Optional[DocumentTaxonomy] = None,
) -> PageClassification:
    """
    Classify one page using keyword pattern matching.

    Args:
        text: Page text
        page_number: 1-indexed page number
        config: Classifier configuration
        taxonomy: Types absent from the taxonomy are never returned

    Returns:
        PageClassification; confidence is the best pattern weight as a percentage
    """
    config = config or ClassifierConfig()
    taxonomy = taxonomy or get_default_taxonomy()
    text = text or ""

    if is_blank(text):
        return PageClassification(page_number, OTHER_TYPE, KEYWORD_BLANK_CONFIDENCE, text)

    text_lower = text[:config.max_chars_per_page].lower()

    # Score each document type
    scores: Dict[str, float] = {}
    for doc_type, patterns in KEYWORD_PATTERNS.items():
        if doc_type not in taxonomy:
            continue
        max_score = 0.0
        for pattern, weight in patterns:
            if re.search(pattern, text_lower, re.IGNORECASE | re.DOTALL):
                max_score = max(max_score, weight)
        if max_score > 0:
            scores[doc_type] = max_score

    if not scores:
        return PageClassification(page_number, OTHER_TYPE, KEYWORD_NO_MATCH_CONFIDENCE, text)

    best_type, best_score = max(scores.items(), key=lambda x: x[1])
    return PageClassification(page_number, best_type, int(round(best_score * 100)), text)


def extract_customer_name(page_texts: Sequence[str]) -> str:
    """Find a customer name printed on the paperwork, uppercased."""
    for text in page_texts:
        for pattern in CUSTOMER_NAME_PATTERNS:
            match = re.search(pattern, text or "")
            if match:
                name = match.group(1).split("\n")[0].strip(" .,-")
                if name:
                    return name.upper()
    return ""


def _get_mock_page_classification(text: str, page_number: int) -> PageClassification:
    """
    Return mock classification for testing.

    Uses simple substring matching.
    """
    text = text or ""
    text_lower = text.lower()

    if is_blank(text):
        return PageClassification(page_number, OTHER_TYPE, 10, text)
    if "vehicle sales agreement" in text_lower or "conditions of sale" in text_lower:
        return PageClassification(page_number, "vsa", 95, text)
    if "pdpa" in text_lower or "personal data" in text_lower:
        return PageClassification(page_number, "pdpa", 93, text)
    if "identity card" in text_lower or "nric" in text_lower:
        if "address" in text_lower:
            return PageClassification(page_number, "nric_back", 88, text)
        return PageClassification(page_number, "nric_front", 90, text)
    if "driving licence" in text_lower or "driving license" in text_lower:
        return PageClassification(page_number, "driving_license", 90, text)
    if "insurance" in text_lower or "cover note" in text_lower:
        return PageClassification(page_number, "insurance_policy", 85, text)
    if "loan" in text_lower:
        return PageClassification(page_number, "loan_approval", 85, text)
    return PageClassification(page_number, OTHER_TYPE, 40, text)


# ============================================================================
# Classifier Metrics
# ============================================================================

@dataclass
class ClassifierMetrics:
    """Summary of one classification run."""

    total_pages: int = 0
    blank_pages: int = 0
    document_groups: int = 0
    method: str = ""

    pages_by_type: Dict[str, int] = field(default_factory=dict)

    avg_confidence: float = 0.0
    min_confidence: int = 100
    low_confidence_count: int = 0  # < 70

    total_processing_time_ms: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def from_result(cls, result: BatchClassification) -> "ClassifierMetrics":
        metrics = cls(
            total_pages=result.total_pages,
            document_groups=len(result.document_groups),
            method=result.method,
            total_processing_time_ms=result.processing_time_ms,
        )
        for page in result.pages:
            metrics.pages_by_type[page.document_type] = metrics.pages_by_type.get(page.document_type, 0) + 1
            metrics.min_confidence = min(metrics.min_confidence, page.confidence)
            if page.confidence < 70:
                metrics.low_confidence_count += 1
            if is_blank(page.raw_text):
                metrics.blank_pages += 1
        if result.pages:
            metrics.avg_confidence = sum(p.confidence for p in result.pages) / len(result.pages)
        return metrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_pages": self.total_pages,
            "blank_pages": self.blank_pages,
            "document_groups": self.document_groups,
            "method": self.method,
            "pages_by_type": self.pages_by_type,
            "avg_confidence": round(self.avg_confidence, 2),
            "min_confidence": self.min_confidence,
            "low_confidence_count": self.low_confidence_count,
            "total_processing_time_ms": round(self.total_processing_time_ms, 2),
            "timestamp": self.timestamp,
        }


# ============================================================================
# Classification Client
# ============================================================================

def create_llm(config: ClassifierConfig) -> BaseChatModel:
    """
    Initialize the chat model for the configured provider.

    Raises:
        ClassificationFailure: If the provider is unknown or its API key is missing
    """
    if config.llm_provider == "anthropic":
        if not os.getenv("ANTHROPIC_API_KEY"):
            raise ClassificationFailure("ANTHROPIC_API_KEY not set")
        return ChatAnthropic(  # type: ignore[call-arg]
            model_name=config.llm_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
        )

    if config.llm_provider == "openai":
        if not os.getenv("OPENAI_API_KEY"):
            raise ClassificationFailure("OPENAI_API_KEY not set")
        return ChatOpenAI(
            model=config.llm_model,
            temperature=config.llm_temperature,
            max_completion_tokens=config.llm_max_tokens,
        )

    raise ClassificationFailure(f"Unknown LLM provider: {config.llm_provider}")


class PageClassificationClient:
    """
    Classification oracle for sales pack pages.

    Usage:
        client = PageClassificationClient(ClassifierConfig(llm_provider="keyword"))
        result = client.classify_pages(["VEHICLE SALES AGREEMENT ...", ""])
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        taxonomy: Optional[DocumentTaxonomy] = None,
        llm: Optional[BaseChatModel] = None,
    ):
        """
        Args:
            config: Classifier configuration
            taxonomy: Document types offered to the model
            llm: Chat model to use instead of the configured provider
        """
        self.config = config or ClassifierConfig()
        self.taxonomy = taxonomy or get_default_taxonomy()
        self._llm = llm

    @property
    def uses_llm(self) -> bool:
        return self._llm is not None or (
            not self.config.use_mock and self.config.llm_provider != "keyword"
        )

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = create_llm(self.config)
        return self._llm

    def _invoke(self, messages: List[Any]) -> str:
        llm = self.llm
        try:
            response = llm.invoke(messages)
        except Exception as e:
            logger.error(f"LLM classification failed: {e}")
            raise ClassificationFailure(f"Classification request failed: {e}") from e

        content = response.content
        if isinstance(content, list):
            # Content blocks; keep the text parts
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        if not content:
            raise ClassificationFailure("Empty response from classifier")
        return str(content)

    def classify_pages(self, page_texts: Sequence[str]) -> BatchClassification:
        """
        Classify pages from their text.

        Args:
            page_texts: OCR text per page, index 0 = page 1

        Returns:
            BatchClassification with one classification per page

        Raises:
            ClassificationFailure: If the oracle fails or answers nonsense
        """
        start_time = time.time()
        page_texts = [t or "" for t in page_texts]

        if not page_texts:
            return BatchClassification(total_pages=0, page_texts=[], pages=[], method="none")

        if not self.uses_llm and self.config.use_mock:
            result = BatchClassification(
                total_pages=len(page_texts),
                page_texts=page_texts,
                pages=[_get_mock_page_classification(t, i + 1) for i, t in enumerate(page_texts)],
                customer_name=extract_customer_name(page_texts),
                method="mock",
            )
        elif not self.uses_llm:
            result = BatchClassification(
                total_pages=len(page_texts),
                page_texts=page_texts,
                pages=[
                    classify_page_by_keywords(t, i + 1, self.config, self.taxonomy)
                    for i, t in enumerate(page_texts)
                ],
                customer_name=extract_customer_name(page_texts),
                method="keyword",
            )
        else:
            logger.info(f"Batch classifying {len(page_texts)} pages with {self.config.llm_provider}")
            messages = [
                SystemMessage(content=BATCH_CLASSIFY_PROMPT.format(
                    document_types=self.taxonomy.prompt_listing(),
                )),
                HumanMessage(content=(
                    f"Analyze this {len(page_texts)}-page sales pack PDF and classify each page:\n\n"
                    + format_page_contents(page_texts, self.config.max_chars_per_page)
                )),
            ]
            result = parse_batch_response(self._invoke(messages), page_texts, self.taxonomy)

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Classified {result.total_pages} pages ({result.method}), "
            f"{len(result.document_groups)} document group(s) suggested"
        )
        return result

    def analyze_pdf(self, pdf_bytes: bytes) -> BatchClassification:
        """
        Classify a PDF by sending the document itself to the model.

        Without an LLM (keyword or mock mode) the text layer is extracted
        locally and classified with classify_pages().

        Raises:
            SourceParseFailure: If the PDF cannot be opened
            ClassificationFailure: If the oracle fails or the PDF is too large
        """
        total_pages = count_pages(pdf_bytes)

        if not self.uses_llm:
            return self.classify_pages(extract_page_texts(pdf_bytes))

        size_mb = len(pdf_bytes) / (1024 * 1024)
        if size_mb > self.config.max_pdf_mb:
            raise ClassificationFailure(
                f"PDF is {size_mb:.1f}MB, larger than the {self.config.max_pdf_mb:.0f}MB the classifier accepts"
            )

        start_time = time.time()
        logger.info(f"Analyzing {total_pages}-page PDF with {self.config.llm_provider}")

        pdf_b64 = base64.b64encode(pdf_bytes).decode("ascii")
        if self.config.llm_provider == "openai":
            document_block: Dict[str, Any] = {
                "type": "file",
                "file": {
                    "filename": "sales_pack.pdf",
                    "file_data": f"data:application/pdf;base64,{pdf_b64}",
                },
            }
        else:
            document_block = {
                "type": "document",
                "source": {"type": "base64", "media_type": "application/pdf", "data": pdf_b64},
            }

        messages = [
            HumanMessage(content=[
                document_block,
                {"type": "text", "text": ANALYZE_PDF_PROMPT.format(
                    document_types=self.taxonomy.prompt_listing(),
                )},
            ]),
        ]

        result = parse_pdf_analysis_response(self._invoke(messages), total_pages, self.taxonomy)
        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"PDF analysis complete: {result.total_pages} pages, "
            f"{len(result.document_groups)} document group(s)"
        )
        return result


# ============================================================================
# Main Node Function
# ============================================================================

def build_classifier_config() -> ClassifierConfig:
    """Build classifier configuration from the environment."""
    provider = os.getenv("CLASSIFIER_LLM_PROVIDER", "anthropic")
    default_model = "gpt-4o-mini" if provider == "openai" else "claude-haiku-4-5-20251001"
    return ClassifierConfig(
        llm_provider=provider,
        llm_model=os.getenv("CLASSIFIER_LLM_MODEL", default_model),
        analysis_mode=os.getenv("CLASSIFIER_MODE", "pdf"),
        generate_thumbnails=os.getenv("GENERATE_THUMBNAILS", "true").lower() == "true",
        use_mock=os.getenv("USE_MOCK_CLASSIFIER", "false").lower() == "true",
    )


def analyze_sales_pack(
    pdf_bytes: bytes,
    client: PageClassificationClient,
) -> BatchClassification:
    """
    Classify a sales pack and attach page texts and thumbnails.

    Page texts missing from the oracle's answer are filled from the PDF's
    own text layer.
    """
    if client.config.analysis_mode == "text":
        result = client.classify_pages(extract_page_texts(pdf_bytes))
    else:
        result = client.analyze_pdf(pdf_bytes)

    if not result.page_texts:
        logger.info("Classifier returned no page texts, using the PDF text layer")
        result.page_texts = extract_page_texts(pdf_bytes)
        result.pages = [
            replace(page, raw_text=result.page_texts[page.page_number - 1])
            if page.page_number - 1 < len(result.page_texts) else page
            for page in result.pages
        ]

    if client.config.generate_thumbnails:
        thumbnails = render_thumbnails(pdf_bytes)
        result.pages = [
            replace(page, thumbnail=thumbnails[page.page_number - 1])
            if page.page_number - 1 < len(thumbnails) else page
            for page in result.pages
        ]

    return result


def sales_pack_analyzer_node(state: SalesPackState) -> dict:
    """
    Node: Sales Pack Analyzer

    Classifies every page and builds the suggested partition.

    Process:
    1. Read the source PDF
    2. Ask the classification oracle for page types and grouping
    3. Build the partition (oracle grouping, or contiguous same-type runs)
    4. Hand over to human review

    Returns:
        dict with page classifications, partition and classifier metrics
    """
    print("--- NODE: Sales Pack Analyzer ---")

    pdf_path = state.get("source_pdf_path", "")
    try:
        with open(pdf_path, "rb") as f:
            pdf_bytes = f.read()
    except OSError as e:
        logger.error(f"Cannot read source PDF {pdf_path}: {e}")
        return {"stage": "failed", "error": f"Cannot read source PDF: {e}"}

    config = build_classifier_config()
    client = PageClassificationClient(config)

    try:
        result = analyze_sales_pack(pdf_bytes, client)
    except SourceParseFailure as e:
        print(f"   {get_pdf_error_message(e.result)}")
        return {"stage": "failed", "error": str(e)}
    except ClassificationFailure as e:
        logger.error(f"Classification failed: {e}")
        print(f"   ⚠️  Classification failed: {e}")
        return {"stage": "failed", "error": f"Classification failed: {e}"}

    partition = partition_from_groups(result.document_groups, result.pages, client.taxonomy)
    metrics = ClassifierMetrics.from_result(result)

    for split in partition:
        print(f"   {split.document_type_name}: pages {list(split.pages)} ({split.confidence}%)")
    print(f"   Classified {result.total_pages} pages into {len(partition)} document(s)")
    if result.customer_name:
        print(f"   Customer: {result.customer_name}")

    return {
        "stage": "review",
        "error": None,
        "total_pages": result.total_pages,
        "page_texts": result.page_texts,
        "page_classifications": result.pages,
        "detected_customer_name": result.customer_name,
        "partition": partition,
        "classifier_metrics": metrics.to_dict(),
    }
