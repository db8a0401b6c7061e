"""Shared test fixtures for the extraction service tests."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings
from llm_client import LLMClient


async def token_stream(tokens):
    """Async iterator standing in for an upstream completion stream."""
    for token in tokens:
        yield token


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="test-key",
        BACKEND_URL="",
        MAX_UPLOAD_BYTES=1024 * 1024,
        IMAGE_MAX_SIDE=512,
    )


@pytest.fixture
def mock_llm() -> MagicMock:
    """LLMClient double; generate/generate_stream/health are awaitable."""
    llm = MagicMock(spec=LLMClient)
    llm.generate = AsyncMock(return_value="{}")
    llm.generate_stream = AsyncMock(side_effect=lambda *args, **kwargs: token_stream(["Hel", "lo"]))
    llm.health = AsyncMock(return_value={"status": "reachable"})
    return llm


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Generate a minimal valid PNG image for testing."""
    import cv2

    img = np.zeros((300, 200, 3), dtype=np.uint8)
    img[:] = (240, 240, 240)

    # Dark rectangles simulate text regions
    cv2.rectangle(img, (20, 30), (180, 50), (30, 30, 30), -1)
    cv2.rectangle(img, (20, 70), (160, 90), (30, 30, 30), -1)

    _, buf = cv2.imencode(".png", img)
    return buf.tobytes()


@pytest.fixture
def large_image_bytes() -> bytes:
    """Generate an image larger than the configured max side."""
    import cv2

    img = np.zeros((1000, 1500, 3), dtype=np.uint8)
    img[:] = (200, 200, 200)
    _, buf = cv2.imencode(".jpg", img)
    return buf.tobytes()


@pytest.fixture
def invalid_bytes() -> bytes:
    """Non-image bytes for testing graceful degradation."""
    return b"this is not an image file at all"


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Single-page PDF with a text layer."""
    import pymupdf

    doc = pymupdf.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Invoice Number: INV001")
    page.insert_text((72, 100), "Date: 2024-01-01")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def blank_pdf_bytes() -> bytes:
    """PDF page without any text layer, like a scan."""
    import pymupdf

    doc = pymupdf.open()
    page = doc.new_page()
    page.draw_rect(pymupdf.Rect(50, 50, 200, 120), color=(0, 0, 0), fill=(0, 0, 0))
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def structured_response() -> str:
    """Vision model reply in the requested JSON shape."""
    return json.dumps({
        "documentType": "invoice",
        "extractedFields": [
            {
                "label": "Invoice Number",
                "value": "INV001",
                "type": "text",
                "position": "top-right",
                "confidence": 0.97,
                "boundingBox": {"x": 0.6, "y": 0.05, "width": 0.3, "height": 0.04},
            },
            {
                "label": "Total",
                "value": 120.5,
                "confidence": 0.873,
            },
        ],
        "tables": [
            {"position": "center", "headers": ["Item", "Qty"], "rows": [["Widget", 2]]},
        ],
        "logos": [{"description": "ACME logo", "position": "top-left", "text": "ACME"}],
        "signatures": [{"description": "handwritten", "position": "bottom-right"}],
        "fullText": "ACME\nInvoice Number: INV001\nTotal: 120.50",
    })


@pytest.fixture
def line_response() -> str:
    """Reply that ignored the JSON instruction."""
    return "Invoice Number: INV001\nDate: 2024-01-01\nNotAField\n: novalue\n"
