"""
Tests for per-user overlays
"""

from pathlib import Path

import pytest

from brochure_pipeline.exceptions import NotFound
from brochure_pipeline.overlay_store import OVERLAY_FILE, UserOverlayStore
from brochure_pipeline.storage import LocalFileStorage

from conftest import make_record


@pytest.fixture
def overlay_root(tmp_path: Path) -> Path:
    return tmp_path / "overlays"


@pytest.fixture
def store(overlay_root: Path) -> UserOverlayStore:
    return UserOverlayStore(LocalFileStorage(str(overlay_root)))


@pytest.fixture
def canonical():
    return make_record("cardio")


class TestGetOrInit:
    """Tests for opening overlays"""

    @pytest.mark.asyncio
    async def test_first_open_copies_canonical(self, store, canonical, overlay_root):
        overlay = await store.get_or_init("alice", "cardio", canonical)
        assert [slide.id for slide in overlay.slides] == [slide.id for slide in canonical.slides]
        assert overlay.is_modified is False
        assert (overlay_root / "alice" / "cardio" / OVERLAY_FILE).is_file()

    @pytest.mark.asyncio
    async def test_existing_overlay_is_returned(self, store, canonical):
        overlay = await store.get_or_init("alice", "cardio", canonical)
        overlay.slides[0].title = "My intro"
        await store.save("alice", "cardio", overlay)

        reopened = await store.get_or_init("alice", "cardio", make_record("cardio", titles=["Other"]))
        assert reopened.slides[0].title == "My intro"
        assert len(reopened.slides) == 3

    @pytest.mark.asyncio
    async def test_no_canonical_gives_empty_overlay(self, store, overlay_root):
        overlay = await store.get_or_init("alice", "unknown", None)
        assert overlay.slides == []
        assert await store.exists("alice", "unknown") is False
        assert not (overlay_root / "alice").exists()

    @pytest.mark.asyncio
    async def test_open_before_conversion_does_not_pin_empty_deck(self, store, canonical):
        """The first open after conversion starts from the converted slides"""
        early = await store.get_or_init("alice", "cardio", None)
        assert early.slides == []

        overlay = await store.get_or_init("alice", "cardio", canonical)
        assert [slide.id for slide in overlay.slides] == [slide.id for slide in canonical.slides]
        assert await store.exists("alice", "cardio") is True

    @pytest.mark.asyncio
    async def test_invalid_ids(self, store):
        with pytest.raises(ValueError):
            await store.get_or_init("../alice", "cardio", None)


class TestIsolation:
    """Edits stay inside one user's overlay"""

    @pytest.mark.asyncio
    async def test_edit_does_not_leak(self, store, canonical):
        alice = await store.get_or_init("alice", "cardio", canonical)
        alice.slides[0].title = "X"
        await store.save("alice", "cardio", alice)

        assert canonical.slides[0].title == "Introduction"
        bob = await store.get_or_init("bob", "cardio", canonical)
        assert bob.slides[0].title == "Introduction"
        assert (await store.snapshot("alice", "cardio")).slides[0].title == "X"

    @pytest.mark.asyncio
    async def test_keys_do_not_collide(self, store, canonical):
        """('a_b', 'c') and ('a', 'b_c') are different overlays"""
        first = await store.get_or_init("a_b", "c", canonical)
        first.slides = first.slides[:1]
        await store.save("a_b", "c", first)

        second = await store.get_or_init("a", "b_c", canonical)
        assert len(second.slides) == 3
        assert len((await store.snapshot("a_b", "c")).slides) == 1


class TestSave:
    """Tests for persisting overlay edits"""

    @pytest.mark.asyncio
    async def test_save_densifies_and_flags(self, store, canonical):
        overlay = await store.get_or_init("alice", "cardio", canonical)
        overlay.slides[0].order = 10
        overlay.slides[1].order = 4
        overlay.slides[2].order = 7

        saved = await store.save("alice", "cardio", overlay)
        assert [slide.order for slide in saved.slides] == [1, 2, 3]
        assert [slide.id for slide in saved.slides] == ["cardio_slide_2", "cardio_slide_3", "cardio_slide_1"]
        assert saved.is_modified is True
        assert saved.needs_sync is True

    @pytest.mark.asyncio
    async def test_save_rejects_foreign_overlay(self, store, canonical):
        overlay = await store.get_or_init("alice", "cardio", canonical)
        with pytest.raises(ValueError):
            await store.save("bob", "cardio", overlay)

    @pytest.mark.asyncio
    async def test_save_does_not_mutate_argument(self, store, canonical):
        overlay = await store.get_or_init("alice", "cardio", canonical)
        overlay.slides[0].order = 9
        await store.save("alice", "cardio", overlay)
        assert overlay.slides[0].order == 9


class TestReset:
    """Tests for discarding customisations"""

    @pytest.mark.asyncio
    async def test_reset_restores_canonical(self, store, canonical):
        overlay = await store.get_or_init("alice", "cardio", canonical)
        overlay.slides = overlay.slides[:1]
        overlay.slides[0].title = "Changed"
        await store.save("alice", "cardio", overlay)

        fresh = await store.reset("alice", "cardio", canonical)
        assert [slide.title for slide in fresh.slides] == [slide.title for slide in canonical.slides]
        assert fresh.is_modified is False

    @pytest.mark.asyncio
    async def test_reset_without_canonical_stores_nothing(self, store, canonical):
        await store.get_or_init("alice", "cardio", canonical)

        fresh = await store.reset("alice", "cardio", None)
        assert fresh.slides == []
        assert await store.snapshot("alice", "cardio") is None

    @pytest.mark.asyncio
    async def test_delete(self, store, canonical):
        await store.get_or_init("alice", "cardio", canonical)
        assert await store.delete("alice", "cardio") is True
        assert await store.snapshot("alice", "cardio") is None
        assert await store.delete("alice", "cardio") is False


class TestSyncMetadata:
    """Tests for the reads and writes of the sync layer"""

    @pytest.mark.asyncio
    async def test_pending_and_mark_synced(self, store, canonical):
        modified = await store.get_or_init("alice", "cardio", canonical)
        await store.save("alice", "cardio", modified)
        await store.get_or_init("alice", "neuro", make_record("neuro"))

        pending = await store.pending_sync("alice")
        assert [overlay.document_id for overlay in pending] == ["cardio"]

        synced = await store.mark_synced("alice", "cardio")
        assert synced.needs_sync is False
        assert synced.is_modified is False
        assert synced.last_synced_at is not None
        assert await store.pending_sync("alice") == []

    @pytest.mark.asyncio
    async def test_list_for_user(self, store, canonical, overlay_root):
        await store.get_or_init("alice", "cardio", canonical)
        await store.get_or_init("alice", "neuro", make_record("neuro"))
        await store.get_or_init("bob", "cardio", canonical)
        # a corrupt overlay is skipped
        (overlay_root / "alice" / "broken").mkdir()
        (overlay_root / "alice" / "broken" / OVERLAY_FILE).write_text("oops")

        overlays = await store.list_for_user("alice")
        assert sorted(overlay.document_id for overlay in overlays) == ["cardio", "neuro"]
        assert await store.list_for_user("carol") == []

    @pytest.mark.asyncio
    async def test_mark_synced_missing(self, store):
        with pytest.raises(NotFound):
            await store.mark_synced("alice", "cardio")
