# per-user overlays: private copies of a canonical deck that diverge through edits
import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from .exceptions import NotFound
from .models import OverlayKey, PresentationRecord, UserOverlay, utc_now, validate_segment
from .storage import DurableStorage

logger = logging.getLogger(__name__)

OVERLAY_FILE = "user_brochure_data.json"


# persists user overlays under <root>/<user_id>/<document_id>/
class UserOverlayStore:
    def __init__(self, storage: DurableStorage):
        self.storage = storage

    def _path(self, key: OverlayKey) -> str:
        return f"{key.user_id}/{key.document_id}/{OVERLAY_FILE}"

    async def get_or_init(
        self,
        user_id: str,
        document_id: str,
        canonical: Optional[PresentationRecord]
    ) -> UserOverlay:
        """
        Return the user's overlay, creating it from the canonical record on first open.

        Without a canonical record the result is an empty overlay that is not
        stored, so the first open after conversion still starts from the
        converted slides.
        """
        key = OverlayKey(user_id, document_id)
        existing = await self._load(key)
        if existing:
            return existing

        if canonical is None:
            logger.debug(f"No canonical deck for {key}, returning an unsaved empty overlay")
            return UserOverlay(user_id=user_id, document_id=document_id, slides=[])

        slides = [slide.model_copy(deep=True) for slide in canonical.slides]
        overlay = UserOverlay(user_id=user_id, document_id=document_id, slides=slides)
        await self._write(key, overlay)

        logger.info(f"Initialised overlay {key} with {len(slides)} slides")
        return overlay

    async def save(self, user_id: str, document_id: str, overlay: UserOverlay) -> UserOverlay:
        """Replace the stored overlay, stamping it as modified"""
        key = OverlayKey(user_id, document_id)
        if (overlay.user_id, overlay.document_id) != (user_id, document_id):
            raise ValueError(f"Overlay belongs to {overlay.key}, not {key}")

        stored = overlay.model_copy(deep=True)
        stored.slides.sort(key=lambda slide: slide.order)
        for position, slide in enumerate(stored.slides, start=1):
            slide.order = position
        stored.updated_at = utc_now()
        stored.is_modified = True
        stored.needs_sync = True

        await self._write(key, stored)
        return stored

    async def reset(
        self,
        user_id: str,
        document_id: str,
        canonical: Optional[PresentationRecord]
    ) -> UserOverlay:
        """Discard local customisations and start again from the canonical record"""
        await self.delete(user_id, document_id)
        logger.info(f"Reset overlay {user_id}/{document_id}")
        return await self.get_or_init(user_id, document_id, canonical)

    async def delete(self, user_id: str, document_id: str) -> bool:
        key = OverlayKey(user_id, document_id)
        return await self.storage.delete_recursive(f"{key.user_id}/{key.document_id}")

    async def exists(self, user_id: str, document_id: str) -> bool:
        return await self.storage.exists(self._path(OverlayKey(user_id, document_id)))

    async def snapshot(self, user_id: str, document_id: str) -> Optional[UserOverlay]:
        """Full overlay as the sync layer reads it, or None"""
        return await self._load(OverlayKey(user_id, document_id))

    async def list_for_user(self, user_id: str) -> List[UserOverlay]:
        validate_segment(user_id, "user_id")
        overlays = []
        for document_id in await self.storage.list_entries(user_id):
            try:
                key = OverlayKey(user_id, document_id)
            except ValueError:
                continue
            overlay = await self._load(key)
            if overlay:
                overlays.append(overlay)
        return overlays

    async def pending_sync(self, user_id: str) -> List[UserOverlay]:
        return [overlay for overlay in await self.list_for_user(user_id) if overlay.needs_sync]

    async def mark_synced(self, user_id: str, document_id: str) -> UserOverlay:
        key = OverlayKey(user_id, document_id)
        overlay = await self._load(key)
        if overlay is None:
            raise NotFound(f"Overlay not found: {key}")

        overlay.needs_sync = False
        overlay.is_modified = False
        overlay.last_synced_at = utc_now()
        await self._write(key, overlay)
        return overlay

    async def _load(self, key: OverlayKey) -> Optional[UserOverlay]:
        path = self._path(key)
        if not await self.storage.exists(path):
            return None

        text = await self.storage.read_text(path)
        try:
            return UserOverlay(**json.loads(text))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.error(f"Corrupt overlay {key}: {str(e)}")
            return None

    async def _write(self, key: OverlayKey, overlay: UserOverlay):
        payload = json.dumps(overlay.model_dump(mode="json"), indent=2, ensure_ascii=False)
        await self.storage.write_text(self._path(key), payload)
