"""
brochure-pipeline

Converts uploaded brochures (PDF, ZIP of slide images, single image) into
cached, ordered slide decks and keeps per-user customisations in overlays
that never touch the canonical deck.
"""

from .config import PipelineConfig, FallbackSlide
from .exceptions import (
    PipelineError, UnsupportedFormat, ExtractionFailed, NotFound, StorageUnavailable,
    EditNotPersisted
)
from .models import (
    DocumentReference, MimeKind, ExtractionOptions, Slide, SlideGroup,
    PresentationRecord, UserOverlay, OverlayKey, ConversionState, ConversionResult
)
from .pipeline import BrochurePipeline, UserDeck

__version__ = "1.0.0"
