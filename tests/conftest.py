"""
Shared fixtures: small real PDFs built with pypdf.

Every page gets a distinct width (PAGE_BASE_WIDTH + page number), so a
page in an output document can be traced back to its source page.
"""

import io
from typing import List, Optional

import pytest
from pypdf import PdfReader, PdfWriter

PAGE_BASE_WIDTH = 300
PAGE_HEIGHT = 400


def build_pdf(page_count: int, password: Optional[str] = None) -> bytes:
    writer = PdfWriter()
    for page_number in range(1, page_count + 1):
        writer.add_blank_page(width=PAGE_BASE_WIDTH + page_number, height=PAGE_HEIGHT)
    if password:
        writer.encrypt(password)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def source_pages_of(pdf_bytes: bytes) -> List[int]:
    """Source page numbers of the pages in a PDF built by build_pdf()."""
    reader = PdfReader(io.BytesIO(pdf_bytes))
    return [int(round(float(page.mediabox.width))) - PAGE_BASE_WIDTH for page in reader.pages]


@pytest.fixture
def make_pdf():
    """Factory: make_pdf(page_count, password=None) -> PDF bytes."""
    return build_pdf


@pytest.fixture
def source_pages():
    """Helper: source_pages(pdf_bytes) -> original page numbers, in order."""
    return source_pages_of


@pytest.fixture
def six_page_pdf():
    return build_pdf(6)
