"""Extraction orchestrator: decode the upload, call the model API, parse the reply.

PDFs go through their text layer (or, for scanned PDFs, a render of the first
page); images are downscaled and sent to the vision model. The reply is
parsed as JSON when possible and otherwise read line by line as
"Label: Value" pairs, so a malformed reply never turns into an error.
"""

import asyncio
import base64
import json
import logging
import math
import re
import time

from pydantic import ValidationError

from config import Settings
from errors import ExtractionFailed, InvalidRequest, UnsupportedMediaType, UpstreamUnavailable
from llm_client import LLMClient, LLMServiceError
from models import BoundingBox, ExtractedField, ExtractionResult, Logo, Signature, Table
from pdf_text import pdf_first_page_png, pdf_to_text
from preprocessing import preprocess
from prompts import IMAGE_EXTRACTION_PROMPT, TEXT_EXTRACTION_PROMPT

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"

DEFAULT_CONFIDENCE = 0.95
FALLBACK_CONFIDENCE = 0.9

FIELD_TYPES = {"text", "logo", "signature", "stamp"}

# Top-level keys of the structured reply; an object with none of them is
# read as a flat {label: value} mapping.
RESULT_KEYS = {
    "documentType", "extractedFields", "keyValuePairs", "tables",
    "logos", "signatures", "fullText", "content",
}


def normalize_media_type(media_type: str | None) -> str:
    return (media_type or "").split(";", 1)[0].strip().lower()


def validate_upload(data: bytes, media_type: str | None, max_bytes: int) -> str:
    """Check an upload before any model call; returns the normalized media type."""
    media_type = normalize_media_type(media_type)
    if media_type != PDF_MEDIA_TYPE and not media_type.startswith("image/"):
        raise UnsupportedMediaType(f"Unsupported file type: {media_type or 'unknown'}")
    if not data:
        raise InvalidRequest("Empty file uploaded")
    check_upload_size(len(data), max_bytes)
    return media_type


def check_upload_size(size: int | None, max_bytes: int):
    if size is not None and size > max_bytes:
        raise InvalidRequest(f"File too large (limit {max_bytes} bytes)")


async def extract_document(
    data: bytes,
    media_type: str | None,
    llm: LLMClient | None,
    config: Settings,
) -> ExtractionResult:
    """Run the extraction pipeline for one uploaded document.

    ``llm`` is None when no API key is configured; the upload is still
    validated first so bad input is reported as such.
    """
    start = time.monotonic()
    media_type = validate_upload(data, media_type, config.MAX_UPLOAD_BYTES)
    if llm is None:
        raise UpstreamUnavailable("OpenAI API key not configured")

    if media_type == PDF_MEDIA_TYPE:
        result = await _extract_pdf(data, llm, config)
    else:
        result = await _extract_image(data, media_type, llm, config)

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Extraction complete: type=%s fields=%d tables=%d in %dms",
        media_type,
        len(result.extracted_fields),
        len(result.tables),
        elapsed_ms,
    )
    return result


async def _extract_pdf(data: bytes, llm: LLMClient, config: Settings) -> ExtractionResult:
    text = await asyncio.to_thread(pdf_to_text, data)
    if not text:
        logger.info("PDF has no text layer, extracting from first page image")
        page_png = await asyncio.to_thread(pdf_first_page_png, data)
        return await _extract_image(page_png, "image/png", llm, config)

    if len(text) > config.PDF_TEXT_MAX_CHARS:
        logger.info("PDF text truncated: %d -> %d chars", len(text), config.PDF_TEXT_MAX_CHARS)

    messages = [
        {"role": "system", "content": TEXT_EXTRACTION_PROMPT},
        {"role": "user", "content": text[: config.PDF_TEXT_MAX_CHARS]},
    ]
    raw = await _generate(llm, messages, config.TEXT_MODEL, config)
    return build_result(raw, content=text)


async def _extract_image(
    data: bytes,
    media_type: str,
    llm: LLMClient,
    config: Settings,
) -> ExtractionResult:
    prepared, prepared_type = await asyncio.to_thread(
        preprocess, data, media_type, config.IMAGE_MAX_SIDE
    )
    logger.info("Preprocessed image: %d bytes -> %d bytes", len(data), len(prepared))

    image_b64 = base64.b64encode(prepared).decode()
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": IMAGE_EXTRACTION_PROMPT},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{prepared_type};base64,{image_b64}"},
                },
            ],
        }
    ]
    raw = await _generate(llm, messages, config.VISION_MODEL, config)
    return build_result(raw)


async def _generate(llm: LLMClient, messages: list[dict], model: str, config: Settings) -> str:
    try:
        return await llm.generate(
            messages,
            model=model,
            json_response=True,
            max_tokens=config.EXTRACTION_MAX_TOKENS,
            temperature=config.EXTRACTION_TEMPERATURE,
        )
    except LLMServiceError as e:
        raise ExtractionFailed(f"Extraction failed: {e}") from e


def build_result(raw: str, content: str | None = None) -> ExtractionResult:
    """Turn a model reply into an ExtractionResult.

    ``content`` overrides the recognized text (the PDF path already has it).
    When the JSON carries no usable fields, the recognized text is read line
    by line instead; the JSON syntax itself never is.
    """
    parsed = try_parse_json(raw)
    if parsed is not None:
        result = _result_from_json(parsed, content)
        if result.extracted_fields or not result.content:
            return result
        fields = parse_label_value_lines(result.content)
        logger.info("Reply JSON had no fields, recovered %d fields from recognized text", len(fields))
        return result.model_copy(update={"extracted_fields": fields})

    fields = parse_label_value_lines(raw)
    logger.info("Reply was not JSON, recovered %d fields from lines", len(fields))
    return ExtractionResult(
        document_type="document",
        extracted_fields=fields,
        content=content if content is not None else raw.strip(),
    )


def try_parse_json(raw: str) -> dict | None:
    """Try to extract a JSON object from the model output.

    Handles: direct JSON, markdown fences, preamble/trailing text and
    <think>...</think> blocks. A top-level array is taken as the list of
    extracted fields.
    """
    if not raw:
        return None

    cleaned = re.sub(r"<think>.*?</think>", "", raw, flags=re.DOTALL).strip()

    # Try direct parse first
    result = _load_object(cleaned)
    if result is not None:
        return result

    match = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", cleaned, re.DOTALL)
    if match:
        result = _load_object(match.group(1).strip())
        if result is not None:
            return result

    # Outermost [ ... ] or { ... } span, whichever opens first; may be nested
    spans = sorted((cleaned.find(opener), cleaned.rfind(closer)) for opener, closer in ("{}", "[]"))
    for first, last in spans:
        if first != -1 and last > first:
            result = _load_object(cleaned[first : last + 1])
            if result is not None:
                return result

    logger.warning("Could not parse JSON from model response: %s", cleaned[:200])
    return None


def _load_object(text: str) -> dict | None:
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    # Only a list of objects is a field list; "[2]" in prose is not
    if isinstance(result, list) and any(isinstance(item, dict) for item in result):
        return {"extractedFields": result}
    if isinstance(result, dict):
        return result
    return None


def parse_label_value_lines(text: str) -> list[ExtractedField]:
    """Read "Label: Value" lines; the first colon splits label from value.

    Lines without a colon, or with an empty label or value, are dropped.
    """
    fields = []
    for line in text.splitlines():
        label, sep, value = line.partition(":")
        if not sep:
            continue
        label, value = label.strip(), value.strip()
        if label and value:
            fields.append(ExtractedField(label=label, value=value, confidence=FALLBACK_CONFIDENCE))
    return fields


def _result_from_json(obj: dict, content: str | None) -> ExtractionResult:
    items = obj.get("extractedFields")
    if not isinstance(items, list):
        items = obj.get("keyValuePairs")
    if not isinstance(items, list):
        if RESULT_KEYS & obj.keys():
            items = []
        elif {"label", "value"} <= obj.keys():
            # A single field object rather than a {label: value} mapping
            items = [obj]
        else:
            items = [{"label": key, "value": value} for key, value in obj.items()]

    fields = [f for f in (_coerce_field(item) for item in items) if f is not None]

    document_type = _text(obj.get("documentType")) or "document"
    if content is None:
        content = _text(obj.get("fullText")) or _text(obj.get("content"))

    return ExtractionResult(
        document_type=document_type,
        extracted_fields=fields,
        tables=[t for t in map(_coerce_table, _as_list(obj.get("tables"))) if t is not None],
        logos=[
            Logo(
                description=_text(item.get("description")) or None,
                position=_text(item.get("position")) or None,
                text=_text(item.get("text")) or None,
            )
            for item in _as_list(obj.get("logos"))
            if isinstance(item, dict)
        ],
        signatures=[
            Signature(
                description=_text(item.get("description")) or None,
                position=_text(item.get("position")) or None,
                signatory=_text(item.get("signatory")) or None,
            )
            for item in _as_list(obj.get("signatures"))
            if isinstance(item, dict)
        ],
        content=content,
    )


def _coerce_field(item) -> ExtractedField | None:
    if not isinstance(item, dict):
        return None

    label = _text(item.get("label", item.get("key")))
    value = _text(item.get("value"))
    if not label or not value:
        return None

    field_type = item.get("type")
    if field_type is not None and (not isinstance(field_type, str) or field_type not in FIELD_TYPES):
        field_type = "text"

    return ExtractedField(
        label=label,
        value=value,
        type=field_type,
        position=_text(item.get("position")) or None,
        confidence=_confidence(item.get("confidence")),
        bounding_box=_bounding_box(item.get("boundingBox")),
    )


def _coerce_table(item) -> Table | None:
    if not isinstance(item, dict):
        return None
    return Table(
        position=_text(item.get("position")) or None,
        headers=[_text(h) for h in _as_list(item.get("headers"))],
        rows=[[_text(cell) for cell in row] for row in _as_list(item.get("rows")) if isinstance(row, list)],
    )


def _text(value) -> str:
    """Render a JSON scalar (or list of scalars) as trimmed text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(t for t in (_text(v) for v in value) if t)
    return json.dumps(value, ensure_ascii=False)


def _confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(confidence):
        return DEFAULT_CONFIDENCE
    # Some replies give a percentage
    if 1.0 < confidence <= 100.0:
        confidence /= 100.0
    return min(1.0, max(0.0, confidence))


def _bounding_box(value) -> BoundingBox | None:
    if not isinstance(value, dict):
        return None
    try:
        return BoundingBox.model_validate(value)
    except ValidationError:
        return None


def _as_list(value) -> list:
    return value if isinstance(value, list) else []
