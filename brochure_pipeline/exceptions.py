"""
Exception hierarchy for the brochure pipeline.

Conversion problems (`ExtractionFailed`) are absorbed by the orchestrator into
the fallback deck; the others are surfaced to the caller.
"""

from typing import Optional, Dict, Any


class PipelineError(Exception):
    """Base exception for all pipeline errors"""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.cause = cause
        self.context = context or {}

    def __str__(self):
        parts = [super().__str__()]
        if self.cause:
            parts.append(f" (caused by: {type(self.cause).__name__}: {str(self.cause)})")
        if self.context:
            parts.append(f" Context: {self.context}")
        return "".join(parts)


class UnsupportedFormat(PipelineError):
    """Source is neither a parseable PDF nor a recognised image archive"""
    pass


class ExtractionFailed(PipelineError):
    """Rasterisation errored or produced no pages"""
    pass


class NotFound(PipelineError):
    """Deck, slide, document or overlay does not exist"""
    pass


class StorageUnavailable(PipelineError):
    """Durable storage I/O failed; in-memory state was not persisted"""
    pass


class EditNotPersisted(PipelineError):
    """Deck has nothing durable to save into; the edit lives in memory only"""
    pass
