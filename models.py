"""Pydantic models for extraction results and API payloads.

Attributes are snake_case in Python and camelCase on the wire
(``documentType``, ``extractedFields``, ``boundingBox``) to stay compatible
with the browser client.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FieldType = Literal["text", "logo", "signature", "stamp"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class BoundingBox(WireModel):
    """Document-relative box, all coordinates are fractions in [0, 1]."""

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)


class ExtractedField(WireModel):
    label: str
    value: str
    type: FieldType | None = None
    position: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    bounding_box: BoundingBox | None = None


class Table(WireModel):
    position: str | None = None
    headers: list[str] = []
    rows: list[list[str]] = []


class Logo(WireModel):
    description: str | None = None
    position: str | None = None
    text: str | None = None


class Signature(WireModel):
    description: str | None = None
    position: str | None = None
    signatory: str | None = None


class ExtractionResult(WireModel):
    document_type: str = "document"
    extracted_fields: list[ExtractedField] = []
    tables: list[Table] = []
    logos: list[Logo] = []
    signatures: list[Signature] = []
    content: str = ""


class ExtractResponse(WireModel):
    id: str
    data: ExtractionResult


class ChatRequest(WireModel):
    id: str
    message: str


class ChatMessage(WireModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ErrorResponse(BaseModel):
    error: str
