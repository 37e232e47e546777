from enum import Enum
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

Language = Literal["it", "en", "es", "fr", "de"]

LANGUAGE_NAMES: dict[str, str] = {
    "it": "Italiano",
    "en": "English",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
}


class DocumentKind(str, Enum):
    TABULAR = "tabular"
    OPAQUE = "opaque"


class RawDocument(BaseModel):
    """An uploaded file as received from the caller, before normalization."""

    filename: str
    content: bytes
    media_type: str | None = None


class NormalizedDocument(BaseModel):
    """Uniform representation of an uploaded file.

    ``payload`` is the flattened sheet text for tabular documents and the
    base64 encoding of the raw bytes for opaque ones.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: DocumentKind
    media_type: str
    payload: str


class GenerationRequest(BaseModel):
    """Assembled payload for one call to the generation service."""

    model_config = ConfigDict(frozen=True)

    instructions: str
    language: Language
    attachments: tuple[NormalizedDocument, ...] = Field(default_factory=tuple)
