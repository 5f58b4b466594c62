"""
Conversion state machine.

Per document: UNCONVERTED -> CONVERTING -> CONVERTED, or
UNCONVERTED -> CONVERTING -> FAILED_FALLBACK. A cache hit goes straight to
CONVERTED and never re-extracts. Concurrent requests for the same document
share one in-flight task. The fallback deck is never cached, so the next
request retries extraction.

Only fallen-back documents are tracked explicitly. CONVERTING is an entry in
the in-flight map and CONVERTED is a canonical deck in the repository.
"""

import asyncio
import tempfile
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .config import FallbackSlide
from .exceptions import ExtractionFailed
from .models import (
    ConversionResult, ConversionState, DocumentReference, ExtractionOptions,
    PresentationRecord, Slide
)
from .page_extractor import PageExtractor
from .presentation_cache import PresentationCache
from .slide_repository import DEFAULT_GROUP, SlideRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


class ConversionOrchestrator:
    def __init__(
        self,
        extractor: PageExtractor,
        cache: PresentationCache,
        repository: SlideRepository,
        fallback_slides: List[FallbackSlide],
        options: Optional[ExtractionOptions] = None,
        work_dir: Optional[str] = None
    ):
        if not fallback_slides:
            raise ValueError("The fallback deck needs at least one slide")

        self.extractor = extractor
        self.cache = cache
        self.repository = repository
        self.fallback_slides = list(fallback_slides)
        self.options = options or ExtractionOptions()
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.gettempdir()) / "brochure-pipeline"

        self._in_flight: Dict[str, asyncio.Task] = {}
        # documents whose last attempt fell back; the other states are derived
        self._failed: Set[str] = set()

    def state(self, document_id: str) -> ConversionState:
        if document_id in self._in_flight:
            return ConversionState.CONVERTING
        if document_id in self._failed:
            return ConversionState.FAILED_FALLBACK
        if self.repository.has_deck(document_id):
            return ConversionState.CONVERTED
        return ConversionState.UNCONVERTED

    async def convert(
        self,
        ref: DocumentReference,
        on_progress: Optional[ProgressCallback] = None
    ) -> ConversionResult:
        """Return the document's deck, converting it at most once"""
        document_id = ref.document_id

        # registering the task before any await is what keeps a second caller from starting another run
        task = self._in_flight.get(document_id)
        if task is None:
            task = asyncio.ensure_future(self._resolve(ref, on_progress))
            self._in_flight[document_id] = task
            task.add_done_callback(lambda done, key=document_id: self._forget(key, done))
        else:
            logger.info(f"Joining in-flight conversion of {document_id}")

        return await asyncio.shield(task)

    async def invalidate(self, document_id: str) -> bool:
        """Drop the cached conversion so the next request extracts again"""
        removed = await self.cache.delete(document_id)
        self.repository.drop_deck(document_id)
        self._failed.discard(document_id)
        return removed

    def fallback_record(self, ref: DocumentReference) -> PresentationRecord:
        """Placeholder deck shown when a document cannot be converted"""
        slides = [
            Slide(
                id=f"fallback_{position}",
                title=item.title,
                image_ref=item.image_ref,
                group=item.group or DEFAULT_GROUP,
                order=position
            )
            for position, item in enumerate(self.fallback_slides, start=1)
        ]
        return PresentationRecord(
            id=ref.document_id,
            title=ref.title or ref.document_id,
            slides=slides,
            total_pages=len(slides),
            source_uri=ref.source_uri,
            mime_kind=ref.mime_kind
        )

    def _forget(self, document_id: str, task: asyncio.Task):
        if self._in_flight.get(document_id) is task:
            del self._in_flight[document_id]

    async def _resolve(
        self,
        ref: DocumentReference,
        on_progress: Optional[ProgressCallback]
    ) -> ConversionResult:
        document_id = ref.document_id

        if await self.cache.has(document_id):
            record = await self.cache.get(document_id)
            if record is not None:
                logger.info(f"Cache hit for {document_id} ({len(record.slides)} slides)")
                if not self.repository.has_deck(document_id):
                    self.repository.seed(document_id, record.slides)
                self._failed.discard(document_id)
                _report(on_progress, 100, "Loaded from cache")
                return ConversionResult(
                    document_id=document_id,
                    state=ConversionState.CONVERTED,
                    record=record,
                    from_cache=True
                )
            logger.warning(f"Unreadable cache entry for {document_id}, converting again")

        _report(on_progress, 0, "Extracting pages")

        try:
            record = await self._run_conversion(ref, on_progress)
        except ExtractionFailed as e:
            logger.warning(f"Conversion of {document_id} failed, using fallback deck: {str(e)}")
            self._failed.add(document_id)
            _report(on_progress, 100, "Using fallback content")
            return ConversionResult(
                document_id=document_id,
                state=ConversionState.FAILED_FALLBACK,
                record=self.fallback_record(ref),
                used_fallback=True,
                error=str(e)
            )
        except Exception as e:
            logger.error(f"Conversion of {document_id} aborted: {str(e)}")
            self._failed.discard(document_id)
            raise

        self._failed.discard(document_id)
        _report(on_progress, 100, "Conversion complete")
        return ConversionResult(
            document_id=document_id,
            state=ConversionState.CONVERTED,
            record=record
        )

    async def _run_conversion(
        self,
        ref: DocumentReference,
        on_progress: Optional[ProgressCallback]
    ) -> PresentationRecord:
        document_id = ref.document_id
        logger.info(f"Converting {document_id} from {ref.source_uri}")

        # clear artifacts an interrupted run may have left behind
        await self.cache.delete(document_id)
        self.repository.drop_deck(document_id)

        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=f"{document_id}-", dir=str(self.work_dir)) as scratch:
            pages = await self.extractor.extract_pages(
                ref.source_uri,
                self.options,
                ref.mime_kind,
                output_dir=scratch
            )
            _report(on_progress, 10, f"Extracted {len(pages)} pages")

            slides = []
            for position, page in enumerate(pages, start=1):
                image_ref = await self.cache.store_page(document_id, page.page_number, page.raster_handle)
                slides.append(Slide(
                    id=f"{document_id}_slide_{page.page_number}",
                    title=page.label or f"Slide {page.page_number}",
                    image_ref=image_ref,
                    group=DEFAULT_GROUP,
                    order=position,
                    page_number=page.page_number
                ))
                _report(on_progress, 10 + (80 * position) // len(pages), f"Stored page {position}/{len(pages)}")

        record = PresentationRecord(
            id=document_id,
            title=ref.title or document_id,
            slides=slides,
            total_pages=len(pages),
            source_uri=ref.source_uri,
            mime_kind=ref.mime_kind
        )
        await self.cache.put(document_id, record)
        self.repository.seed(document_id, record.slides)

        logger.info(f"Converted {document_id}: {len(slides)} slides")
        return record


def _report(on_progress: Optional[ProgressCallback], percent: int, message: str):
    if on_progress:
        on_progress(percent, message)
