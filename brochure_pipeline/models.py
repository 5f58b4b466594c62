# pydantic models for brochure conversion, slide decks and user overlays
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


# current time as an iso string, used for every timestamp in the pipeline
def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ids end up as directory names, so they must be a single harmless path segment
def validate_segment(value: str, field_name: str = "id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string")
    if value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise ValueError(f"{field_name} is not a valid path segment: {value!r}")
    return value


# enum for the kinds of source document we can convert
class MimeKind(str, Enum):
    PDF = "pdf"
    ZIP_IMAGES = "zip-images"
    SINGLE_FILE = "single-file"


# enum for raster output formats
class ImageFormat(str, Enum):
    PNG = "png"
    JPG = "jpg"


# enum for the per-document conversion state machine
class ConversionState(str, Enum):
    UNCONVERTED = "unconverted"
    CONVERTING = "converting"
    CONVERTED = "converted"
    FAILED_FALLBACK = "failed_fallback"


# immutable reference to an uploaded brochure
class DocumentReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    source_uri: str
    mime_kind: MimeKind = MimeKind.PDF
    title: Optional[str] = None

    @field_validator("document_id")
    @classmethod
    def _check_document_id(cls, value: str) -> str:
        return validate_segment(value, "document_id")


# options handed to the page extractor
class ExtractionOptions(BaseModel):
    format: ImageFormat = ImageFormat.JPG
    dpi: int = Field(default=150, ge=36, le=600)
    quality: int = Field(default=90, ge=1, le=100)


# one rasterised page produced by extraction
class PageImage(BaseModel):
    page_number: int
    raster_handle: str
    label: Optional[str] = None  # source file name stem, when there is one


# model for a single slide in a deck
class Slide(BaseModel):
    id: str
    title: str
    image_ref: str  # local path, remote url or bundled asset id
    group: str = "General"
    order: int
    page_number: Optional[int] = None  # position in the source document, never reassigned
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


# derived partition of a deck by group label
class SlideGroup(BaseModel):
    name: str
    order: int
    slides: List[Slide]


# canonical result of one successful conversion run
class PresentationRecord(BaseModel):
    id: str
    title: str
    slides: List[Slide]
    total_pages: int
    converted_at: str = Field(default_factory=utc_now)
    source_uri: Optional[str] = None
    mime_kind: Optional[MimeKind] = None


# composite key for a user's overlay of one document
@dataclass(frozen=True)
class OverlayKey:
    user_id: str
    document_id: str

    def __post_init__(self):
        validate_segment(self.user_id, "user_id")
        validate_segment(self.document_id, "document_id")

    def __str__(self):
        return f"{self.user_id}/{self.document_id}"


# per-user customisable copy of a deck
class UserOverlay(BaseModel):
    user_id: str
    document_id: str
    slides: List[Slide] = []
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    # sync metadata read by the sync layer
    is_modified: bool = False
    needs_sync: bool = False
    last_synced_at: Optional[str] = None

    @property
    def key(self) -> OverlayKey:
        return OverlayKey(self.user_id, self.document_id)


# outcome of asking the orchestrator for a document
class ConversionResult(BaseModel):
    document_id: str
    state: ConversionState
    record: PresentationRecord
    used_fallback: bool = False
    from_cache: bool = False
    error: Optional[str] = None


# slide as the viewer ui renders it
class ViewerSlide(BaseModel):
    id: str
    title: str
    image_ref: str
    group: str
    order: int


# payload handed to the viewer ui
class ViewerPayload(BaseModel):
    title: str
    slides: List[ViewerSlide]
    using_fallback: bool = False


# request model for adding a slide
class SlideCreate(BaseModel):
    title: str
    image_ref: str
    group: str = "General"
    order: Optional[int] = None


# request model for a partial slide update
class SlideUpdate(BaseModel):
    title: Optional[str] = None
    image_ref: Optional[str] = None
    group: Optional[str] = None
    order: Optional[int] = None


# one entry of a reorder request
class ReorderItem(BaseModel):
    slide_id: str
    new_order: int


# request model for converting a document
class ConvertRequest(BaseModel):
    source_uri: str
    mime_kind: MimeKind = MimeKind.PDF
    title: Optional[str] = None


# request model for renaming a group
class GroupRename(BaseModel):
    old_name: str
    new_name: str
