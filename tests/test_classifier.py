"""
Unit Tests for the Page Classifier Node

Tests the per-page classification logic including:
- Configuration defaults
- Keyword-based classification (offline provider)
- Response parsing for both oracle modes
- LLM-based classification (mocked)
- Failure handling (no silent fallback)
- Metrics collection
- Pipeline node

Run with: pytest tests/test_classifier.py -v
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from nodes.classifier import (
    BatchClassification,
    ClassificationFailure,
    ClassifierConfig,
    ClassifierMetrics,
    PageClassificationClient,
    analyze_sales_pack,
    classify_page_by_keywords,
    create_llm,
    extract_customer_name,
    format_page_contents,
    parse_batch_response,
    parse_pdf_analysis_response,
    sales_pack_analyzer_node,
)
from nodes.splitter import SourceParseFailure
from state import PageClassification

VSA_TEXT = "VEHICLE SALES AGREEMENT\nCustomer Name: Tan Ah Kow\nModel: Corolla Altis 1.6"
PDPA_TEXT = "PDPA CONSENT FORM\nI consent to the collection of my personal data by the dealer"
NRIC_TEXT = "REPUBLIC OF SINGAPORE IDENTITY CARD\nS1234567D\nName TAN AH KOW\nDate of Birth 01-01-1980"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def keyword_config():
    return ClassifierConfig(llm_provider="keyword", generate_thumbnails=False)


def mock_llm(response_text):
    llm = MagicMock()
    llm.invoke.return_value = MagicMock(content=response_text)
    return llm


@pytest.fixture
def batch_response():
    return json.dumps({
        "customerName": "TAN AH KOW",
        "pages": [
            {"documentType": "vsa", "confidence": 95},
            {"documentType": "vsa", "confidence": 91},
            {"documentType": "pdpa", "confidence": 88},
        ],
        "documentGroups": [
            {"documentType": "vsa", "pages": [1, 2], "confidence": 93},
            {"documentType": "pdpa", "pages": [3], "confidence": 88},
        ],
    })


@pytest.fixture
def pdf_analysis_response():
    return json.dumps({
        "totalPages": 3,
        "customerName": "TAN AH KOW",
        "pageTexts": [VSA_TEXT, "[BLANK]", PDPA_TEXT],
        "documentGroups": [
            {"documentType": "vsa", "pages": [1], "confidence": 95},
            {"documentType": "pdpa", "pages": [3], "confidence": 90},
        ],
    })


# ============================================================================
# Configuration
# ============================================================================

class TestClassifierConfig:
    """Tests for ClassifierConfig dataclass."""

    def test_default_config(self):
        config = ClassifierConfig()

        assert config.llm_provider == "anthropic"
        assert config.llm_temperature == 0.0
        assert config.analysis_mode == "pdf"
        assert config.generate_thumbnails is True
        assert config.use_mock is False

    def test_custom_config(self):
        config = ClassifierConfig(llm_provider="openai", llm_model="gpt-4o-mini", analysis_mode="text")

        assert config.llm_provider == "openai"
        assert config.llm_model == "gpt-4o-mini"
        assert config.analysis_mode == "text"


# ============================================================================
# Keyword Classification
# ============================================================================

class TestKeywordClassification:
    """Tests for keyword-based classification."""

    def test_classify_vsa(self, keyword_config):
        result = classify_page_by_keywords(VSA_TEXT, 1, keyword_config)
        assert result.document_type == "vsa"
        assert result.confidence == 100

    def test_classify_pdpa(self, keyword_config):
        assert classify_page_by_keywords(PDPA_TEXT, 2, keyword_config).document_type == "pdpa"

    def test_classify_nric_front(self, keyword_config):
        assert classify_page_by_keywords(NRIC_TEXT, 3, keyword_config).document_type == "nric_front"

    def test_blank_page(self, keyword_config):
        result = classify_page_by_keywords("", 4, keyword_config)
        assert result.document_type == "other"
        assert result.confidence == 10

    def test_no_match(self, keyword_config):
        result = classify_page_by_keywords("Lorem ipsum dolor sit amet, consectetur adipiscing", 5, keyword_config)
        assert result.document_type == "other"
        assert result.confidence == 30

    def test_keeps_page_number_and_text(self, keyword_config):
        result = classify_page_by_keywords(VSA_TEXT, 7, keyword_config)
        assert result.page_number == 7
        assert result.raw_text == VSA_TEXT


class TestExtractCustomerName:
    """Tests for picking the customer name out of page texts."""

    def test_labelled_name(self):
        assert extract_customer_name(["", VSA_TEXT]) == "TAN AH KOW"

    def test_no_name(self):
        assert extract_customer_name(["nothing to see here"]) == ""


class TestFormatPageContents:
    """Tests for the batch prompt page blocks."""

    def test_blocks(self):
        text = format_page_contents(["first", ""])
        assert "=== PAGE 1 ===\nfirst" in text
        assert "=== PAGE 2 ===\n[BLANK PAGE]" in text

    def test_truncation(self):
        text = format_page_contents(["x" * 50], max_chars_per_page=10)
        assert "x" * 10 + "... [truncated]" in text


# ============================================================================
# Response Parsing
# ============================================================================

class TestParseBatchResponse:
    """Tests for parsing classify_pages responses."""

    def test_parse_valid_response(self, batch_response):
        result = parse_batch_response(batch_response, [VSA_TEXT, "conditions", PDPA_TEXT])

        assert result.total_pages == 3
        assert [p.document_type for p in result.pages] == ["vsa", "vsa", "pdpa"]
        assert [p.confidence for p in result.pages] == [95, 91, 88]
        assert result.customer_name == "TAN AH KOW"
        assert len(result.document_groups) == 2

    def test_parse_fenced_response(self, batch_response):
        result = parse_batch_response(f"Here you go:\n```json\n{batch_response}\n```", ["a", "b", "c"])
        assert result.total_pages == 3

    def test_missing_pages_filled_from_groups(self):
        response = json.dumps({
            "pages": [{"documentType": "vsa", "confidence": 95}],
            "documentGroups": [{"documentType": "vsa", "pages": [1, 2], "confidence": 80}],
        })
        result = parse_batch_response(response, ["a", "b", "c"])

        assert [p.document_type for p in result.pages] == ["vsa", "vsa", "other"]
        assert [p.confidence for p in result.pages] == [95, 80, 50]

    def test_unknown_types_become_other(self):
        response = json.dumps({"pages": [{"documentType": "Hovercraft Permit", "confidence": 70}]})
        result = parse_batch_response(response, ["a"])
        assert result.pages[0].document_type == "other"

    def test_confidence_is_clamped(self):
        response = json.dumps({"pages": [
            {"documentType": "vsa", "confidence": 140},
            {"documentType": "vsa", "confidence": -5},
            {"documentType": "vsa", "confidence": "high"},
            {"documentType": "vsa"},
        ]})
        result = parse_batch_response(response, ["a", "b", "c", "d"])
        assert [p.confidence for p in result.pages] == [100, 0, 50, 50]

    def test_invalid_json(self):
        with pytest.raises(ClassificationFailure):
            parse_batch_response("I could not read this document, sorry.", ["a"])

    def test_empty_answer(self):
        with pytest.raises(ClassificationFailure):
            parse_batch_response("{}", ["a"])

    def test_malformed_groups(self):
        with pytest.raises(ClassificationFailure):
            parse_batch_response(json.dumps({"documentGroups": "vsa"}), ["a"])


class TestParsePdfAnalysisResponse:
    """Tests for parsing analyze_pdf responses."""

    def test_parse_valid_response(self, pdf_analysis_response):
        result = parse_pdf_analysis_response(pdf_analysis_response, total_pages=3)

        assert result.page_texts == [VSA_TEXT, "[BLANK]", PDPA_TEXT]
        assert [p.document_type for p in result.pages] == ["vsa", "other", "pdpa"]
        assert result.customer_name == "TAN AH KOW"

    def test_local_page_count_wins(self, pdf_analysis_response):
        result = parse_pdf_analysis_response(pdf_analysis_response, total_pages=4)
        assert result.total_pages == 4
        assert len(result.pages) == 4

    def test_model_page_count_used_when_unknown(self, pdf_analysis_response):
        assert parse_pdf_analysis_response(pdf_analysis_response).total_pages == 3


# ============================================================================
# Classification Client
# ============================================================================

class TestPageClassificationClient:
    """Tests for the classification oracle client."""

    def test_keyword_provider(self, keyword_config):
        client = PageClassificationClient(keyword_config)
        result = client.classify_pages([VSA_TEXT, PDPA_TEXT, ""])

        assert client.uses_llm is False
        assert result.method == "keyword"
        assert [p.document_type for p in result.pages] == ["vsa", "pdpa", "other"]
        assert result.customer_name == "TAN AH KOW"

    def test_mock_provider(self):
        client = PageClassificationClient(ClassifierConfig(use_mock=True))
        result = client.classify_pages([VSA_TEXT, PDPA_TEXT])

        assert result.method == "mock"
        assert [p.document_type for p in result.pages] == ["vsa", "pdpa"]

    def test_no_pages(self, keyword_config):
        result = PageClassificationClient(keyword_config).classify_pages([])
        assert result.total_pages == 0
        assert result.pages == []

    def test_llm_classification(self, batch_response):
        llm = mock_llm(batch_response)
        client = PageClassificationClient(ClassifierConfig(), llm=llm)

        result = client.classify_pages([VSA_TEXT, "conditions", PDPA_TEXT])

        assert result.method == "llm"
        assert [p.document_type for p in result.pages] == ["vsa", "vsa", "pdpa"]
        messages = llm.invoke.call_args[0][0]
        assert "vsa: Vehicle Sales Agreement" in messages[0].content
        assert "=== PAGE 3 ===" in messages[1].content

    def test_llm_content_blocks(self, batch_response):
        llm = MagicMock()
        llm.invoke.return_value = MagicMock(content=[{"type": "text", "text": batch_response}])
        result = PageClassificationClient(ClassifierConfig(), llm=llm).classify_pages(["a", "b", "c"])
        assert len(result.pages) == 3

    def test_llm_error_raises_failure(self):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("rate limited")
        client = PageClassificationClient(ClassifierConfig(), llm=llm)

        with pytest.raises(ClassificationFailure, match="rate limited"):
            client.classify_pages(["a"])

    def test_empty_llm_response_raises_failure(self):
        client = PageClassificationClient(ClassifierConfig(), llm=mock_llm(""))
        with pytest.raises(ClassificationFailure):
            client.classify_pages(["a"])

    def test_analyze_pdf_sends_document_block(self, make_pdf, pdf_analysis_response):
        llm = mock_llm(pdf_analysis_response)
        client = PageClassificationClient(ClassifierConfig(), llm=llm)

        result = client.analyze_pdf(make_pdf(3))

        assert result.total_pages == 3
        content = llm.invoke.call_args[0][0][0].content
        assert content[0]["type"] == "document"
        assert content[0]["source"]["media_type"] == "application/pdf"

    def test_analyze_pdf_openai_file_block(self, make_pdf, pdf_analysis_response):
        llm = mock_llm(pdf_analysis_response)
        client = PageClassificationClient(ClassifierConfig(llm_provider="openai"), llm=llm)

        client.analyze_pdf(make_pdf(3))

        content = llm.invoke.call_args[0][0][0].content
        assert content[0]["type"] == "file"
        assert content[0]["file"]["file_data"].startswith("data:application/pdf;base64,")

    def test_analyze_pdf_too_large(self, make_pdf):
        client = PageClassificationClient(ClassifierConfig(max_pdf_mb=0.0001), llm=mock_llm("{}"))
        with pytest.raises(ClassificationFailure, match="larger than"):
            client.analyze_pdf(make_pdf(3))

    def test_analyze_pdf_rejects_bad_source(self):
        client = PageClassificationClient(ClassifierConfig(), llm=mock_llm("{}"))
        with pytest.raises(SourceParseFailure):
            client.analyze_pdf(b"not a pdf")

    def test_analyze_pdf_without_llm_uses_text_layer(self, make_pdf, keyword_config):
        result = PageClassificationClient(keyword_config).analyze_pdf(make_pdf(2))
        assert result.method == "keyword"
        assert [p.document_type for p in result.pages] == ["other", "other"]


class TestCreateLlm:
    """Tests for chat model construction."""

    def test_missing_anthropic_key(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ClassificationFailure, match="ANTHROPIC_API_KEY"):
                create_llm(ClassifierConfig())

    def test_unknown_provider(self):
        with pytest.raises(ClassificationFailure, match="Unknown LLM provider"):
            create_llm(ClassifierConfig(llm_provider="carrier-pigeon"))


# ============================================================================
# Analysis & Metrics
# ============================================================================

class TestAnalyzeSalesPack:
    """Tests for the full analysis step."""

    def test_attaches_thumbnails(self, make_pdf, pdf_analysis_response):
        client = PageClassificationClient(ClassifierConfig(), llm=mock_llm(pdf_analysis_response))
        result = analyze_sales_pack(make_pdf(3), client)

        assert all(p.thumbnail and p.thumbnail.startswith("data:image/jpeg") for p in result.pages)

    def test_fills_missing_page_texts(self, make_pdf):
        response = json.dumps({"documentGroups": [{"documentType": "vsa", "pages": [1, 2]}]})
        config = ClassifierConfig(generate_thumbnails=False)
        client = PageClassificationClient(config, llm=mock_llm(response))

        result = analyze_sales_pack(make_pdf(2), client)

        assert result.page_texts == ["", ""]
        assert [p.document_type for p in result.pages] == ["vsa", "vsa"]

    def test_text_mode(self, make_pdf, keyword_config):
        keyword_config.analysis_mode = "text"
        result = analyze_sales_pack(make_pdf(2), PageClassificationClient(keyword_config))
        assert result.total_pages == 2


class TestClassifierMetrics:
    """Tests for ClassifierMetrics."""

    def test_from_result(self):
        result = BatchClassification(
            total_pages=3,
            page_texts=[VSA_TEXT, "", PDPA_TEXT],
            pages=[
                PageClassification(1, "vsa", 95, VSA_TEXT),
                PageClassification(2, "other", 10, ""),
                PageClassification(3, "pdpa", 60, PDPA_TEXT),
            ],
            method="keyword",
        )
        metrics = ClassifierMetrics.from_result(result)

        assert metrics.pages_by_type == {"vsa": 1, "other": 1, "pdpa": 1}
        assert metrics.blank_pages == 1
        assert metrics.min_confidence == 10
        assert metrics.low_confidence_count == 2
        assert metrics.avg_confidence == pytest.approx(55.0)

    def test_to_dict(self):
        data = ClassifierMetrics(total_pages=2, method="llm").to_dict()
        assert data["total_pages"] == 2
        assert data["method"] == "llm"
        assert "timestamp" in data


# ============================================================================
# Pipeline Node
# ============================================================================

class TestSalesPackAnalyzerNode:
    """Tests for the graph node."""

    def test_node_builds_partition(self, tmp_path, make_pdf, pdf_analysis_response):
        pdf_path = tmp_path / "pack.pdf"
        pdf_path.write_bytes(make_pdf(3))

        env = {"CLASSIFIER_LLM_PROVIDER": "anthropic", "GENERATE_THUMBNAILS": "false"}
        with patch.dict("os.environ", env), \
                patch("nodes.classifier.create_llm", return_value=mock_llm(pdf_analysis_response)):
            result = sales_pack_analyzer_node({"source_pdf_path": str(pdf_path)})

        assert result["stage"] == "review"
        assert result["total_pages"] == 3
        assert result["detected_customer_name"] == "TAN AH KOW"
        partition = result["partition"]
        assert partition.is_complete()
        assert [s.document_type for s in partition] == ["vsa", "other", "pdpa"]

    def test_node_classification_failure(self, tmp_path, make_pdf):
        pdf_path = tmp_path / "pack.pdf"
        pdf_path.write_bytes(make_pdf(2))

        with patch.dict("os.environ", {"CLASSIFIER_LLM_PROVIDER": "anthropic"}), \
                patch("nodes.classifier.create_llm", return_value=mock_llm("not json at all")):
            result = sales_pack_analyzer_node({"source_pdf_path": str(pdf_path)})

        assert result["stage"] == "failed"
        assert "Classification failed" in result["error"]
        assert "partition" not in result

    def test_node_missing_file(self, tmp_path):
        result = sales_pack_analyzer_node({"source_pdf_path": str(tmp_path / "missing.pdf")})
        assert result["stage"] == "failed"
