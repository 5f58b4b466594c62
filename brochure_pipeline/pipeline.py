# wires the pipeline components together and exposes the per-user deck flow
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .config import PipelineConfig
from .conversion_orchestrator import ConversionOrchestrator, ProgressCallback
from .exceptions import EditNotPersisted, StorageUnavailable
from .models import (
    ConversionResult, DocumentReference, OverlayKey, PresentationRecord, Slide,
    SlideGroup, SlideUpdate, UserOverlay, ViewerPayload, ViewerSlide
)
from .overlay_store import UserOverlayStore
from .page_extractor import PageExtractor, RasterizationCapability
from .presentation_cache import PresentationCache
from .slide_repository import DEFAULT_GROUP, Move, SlideRepository
from .storage import LocalFileStorage

logger = logging.getLogger(__name__)


# one user's view of one document; edits go to the overlay, never the canonical deck
class UserDeck:
    def __init__(
        self,
        key: OverlayKey,
        title: str,
        repository: SlideRepository,
        store: UserOverlayStore,
        overlay: Optional[UserOverlay] = None,
        using_fallback: bool = False
    ):
        self.key = key
        self.title = title
        self.repository = repository
        self.store = store
        self.overlay = overlay
        self.using_fallback = using_fallback

    # reads

    def slides(self) -> List[Slide]:
        return self.repository.get_slides(self.key)

    def grouped(self) -> List[SlideGroup]:
        return self.repository.list_grouped(self.key)

    def group_names(self) -> List[str]:
        return self.repository.list_group_names(self.key)

    def letters(self) -> List[str]:
        return self.repository.alphabet_letters(self.key)

    def by_letter(self, letter: str) -> List[Slide]:
        return self.repository.filter_by_letter(self.key, letter)

    def viewer_payload(self) -> ViewerPayload:
        return ViewerPayload(
            title=self.title,
            slides=[
                ViewerSlide(id=s.id, title=s.title, image_ref=s.image_ref, group=s.group, order=s.order)
                for s in self.slides()
            ],
            using_fallback=self.using_fallback
        )

    # edits: mutate in memory first, then persist

    async def create_slide(
        self,
        title: str,
        image_ref: str,
        group: str = DEFAULT_GROUP,
        order: Optional[int] = None
    ) -> Slide:
        slide = self.repository.create_slide(self.key, title, image_ref, group, order)
        await self.persist()
        return slide

    async def update_slide(self, slide_id: str, changes: Union[SlideUpdate, Dict[str, Any]]) -> Slide:
        slide = self.repository.update_slide(self.key, slide_id, changes)
        await self.persist()
        return slide

    async def rename_slide(self, slide_id: str, title: str) -> Slide:
        return await self.update_slide(slide_id, {"title": title})

    async def delete_slide(self, slide_id: str) -> Slide:
        slide = self.repository.delete_slide(self.key, slide_id)
        await self.persist()
        return slide

    async def reorder(self, moves: Sequence[Move]) -> List[Slide]:
        slides = self.repository.reorder(self.key, moves)
        await self.persist()
        return slides

    async def move_to_group(self, slide_id: str, group: str) -> Slide:
        slide = self.repository.move_to_group(self.key, slide_id, group)
        await self.persist()
        return slide

    async def duplicate_slide(self, slide_id: str) -> Slide:
        slide = self.repository.duplicate_slide(self.key, slide_id)
        await self.persist()
        return slide

    async def rename_group(self, old_name: str, new_name: str) -> int:
        changed = self.repository.rename_group(self.key, old_name, new_name)
        await self.persist()
        return changed

    async def delete_group(self, name: str) -> int:
        changed = self.repository.delete_group(self.key, name)
        await self.persist()
        return changed

    async def sort_alphabetically(self) -> List[Slide]:
        slides = self.repository.sort_alphabetically(self.key)
        await self.persist()
        return slides

    async def persist(self) -> UserOverlay:
        """Write the current slides to the user's overlay"""
        if self.using_fallback:
            logger.warning(f"Deck {self.key} shows fallback content, edit kept in memory only")
            raise EditNotPersisted(f"Deck {self.key} shows fallback content", context={"using_fallback": True})
        if self.overlay is None:
            logger.warning(f"Deck {self.key} has no converted slides yet, edit kept in memory only")
            raise EditNotPersisted(f"Deck {self.key} has not been converted yet")

        candidate = self.overlay.model_copy(update={"slides": self.slides()})
        try:
            self.overlay = await self.store.save(self.key.user_id, self.key.document_id, candidate)
        except StorageUnavailable:
            # the in-memory edit stands; the caller decides whether to retry
            logger.error(f"Could not persist overlay {self.key}, edit kept in memory only")
            raise
        return self.overlay


class BrochurePipeline:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        rasterizer: Optional[RasterizationCapability] = None,
        cache: Optional[PresentationCache] = None,
        overlays: Optional[UserOverlayStore] = None,
        repository: Optional[SlideRepository] = None
    ):
        self.config = config or PipelineConfig()
        self.repository = repository or SlideRepository()
        self.cache = cache or PresentationCache(LocalFileStorage(str(self.config.presentations_path)))
        self.overlays = overlays or UserOverlayStore(LocalFileStorage(str(self.config.overlays_path)))
        self.extractor = PageExtractor(rasterizer, self.config.image_extensions)
        self.orchestrator = ConversionOrchestrator(
            self.extractor,
            self.cache,
            self.repository,
            self.config.fallback_slides,
            options=self.config.extraction,
            work_dir=str(self.config.work_path)
        )

    async def convert(
        self,
        ref: DocumentReference,
        on_progress: Optional[ProgressCallback] = None
    ) -> ConversionResult:
        return await self.orchestrator.convert(ref, on_progress)

    async def open_deck(
        self,
        user_id: str,
        document_id: str,
        ref: Optional[DocumentReference] = None
    ) -> UserDeck:
        """Open a user's deck, converting the document first when a reference is given"""
        key = OverlayKey(user_id, document_id)

        if ref is not None:
            if ref.document_id != document_id:
                raise ValueError(f"Reference is for {ref.document_id}, not {document_id}")
            result = await self.convert(ref)
            if result.used_fallback:
                self.repository.seed(key, result.record.slides)
                return UserDeck(key, result.record.title, self.repository, self.overlays, using_fallback=True)
            canonical: Optional[PresentationRecord] = result.record
        else:
            canonical = await self.cache.get(document_id)

        overlay = await self.overlays.get_or_init(user_id, document_id, canonical)
        return await self._user_deck(key, canonical, overlay)

    async def reset_deck(self, user_id: str, document_id: str) -> UserDeck:
        """Throw away a user's customisations"""
        key = OverlayKey(user_id, document_id)
        canonical = await self.cache.get(document_id)
        overlay = await self.overlays.reset(user_id, document_id, canonical)
        return await self._user_deck(key, canonical, overlay)

    async def _user_deck(
        self,
        key: OverlayKey,
        canonical: Optional[PresentationRecord],
        overlay: UserOverlay
    ) -> UserDeck:
        self.repository.seed(key, overlay.slides)
        title = canonical.title if canonical else key.document_id

        # an unconverted document gets an unsaved empty overlay, edits to it are not persisted
        stored = canonical is not None or await self.overlays.exists(key.user_id, key.document_id)
        return UserDeck(key, title, self.repository, self.overlays, overlay=overlay if stored else None)

    async def delete_document(self, document_id: str) -> bool:
        """Remove a document's cached conversion and canonical deck"""
        return await self.orchestrator.invalidate(document_id)

    async def list_documents(self) -> List[PresentationRecord]:
        return await self.cache.list_all()
