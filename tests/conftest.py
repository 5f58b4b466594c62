"""
Pytest configuration and shared fixtures
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import fitz  # PyMuPDF
import pytest

from brochure_pipeline.config import PipelineConfig
from brochure_pipeline.exceptions import StorageUnavailable
from brochure_pipeline.models import DocumentReference, MimeKind, PresentationRecord, Slide
from brochure_pipeline.pipeline import BrochurePipeline
from brochure_pipeline.storage import LocalFileStorage


class FixtureRasterizer:
    """Deterministic rasteriser that writes one small file per page."""

    def __init__(self, page_count: int = 3, delay: float = 0.0):
        self.page_count = page_count
        self.delay = delay
        self.calls: List[str] = []

    async def generate_all_pages(
        self,
        source_uri: str,
        quality: int,
        *,
        image_format: str = "jpg",
        dpi: int = 150,
        output_dir: Optional[str] = None
    ) -> List[str]:
        self.calls.append(source_uri)
        if self.delay:
            await asyncio.sleep(self.delay)

        out_dir = Path(output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for n in range(1, self.page_count + 1):
            path = out_dir / f"page_{n:03d}.{image_format}"
            path.write_bytes(f"{source_uri}#{n}".encode("utf-8"))
            paths.append(str(path))
        return paths


class EmptyRasterizer:
    """Rasteriser of an environment where rendering is unavailable."""

    def __init__(self):
        self.calls: List[str] = []

    async def generate_all_pages(self, source_uri, quality, **kwargs):
        self.calls.append(source_uri)
        return []


class FailingRasterizer:
    """Rasteriser whose renderer crashes."""

    def __init__(self):
        self.calls: List[str] = []

    async def generate_all_pages(self, source_uri, quality, **kwargs):
        self.calls.append(source_uri)
        raise RuntimeError("renderer crashed")


class FlakyStorage(LocalFileStorage):
    """Local storage whose writes can be switched off."""

    def __init__(self, root: str):
        super().__init__(root)
        self.fail_writes = False

    async def write_text(self, path: str, text: str) -> None:
        if self.fail_writes:
            raise StorageUnavailable(f"Cannot write {path!r}", cause=OSError("disk full"))
        await super().write_text(path, text)

    async def write_bytes(self, path: str, data: bytes) -> None:
        if self.fail_writes:
            raise StorageUnavailable(f"Cannot write {path!r}", cause=OSError("disk full"))
        await super().write_bytes(path, data)


def make_slide(slide_id: str, title: str, group: str = "General", order: int = 1, page_number: Optional[int] = None) -> Slide:
    return Slide(
        id=slide_id,
        title=title,
        image_ref=f"/images/{slide_id}.jpg",
        group=group,
        order=order,
        page_number=page_number if page_number is not None else order
    )


def make_record(document_id: str = "cardio", titles: Optional[List[str]] = None) -> PresentationRecord:
    titles = titles or ["Introduction", "Treatment Options", "Clinical Studies"]
    slides = [make_slide(f"{document_id}_slide_{n}", title, order=n) for n, title in enumerate(titles, start=1)]
    return PresentationRecord(id=document_id, title=document_id.title(), slides=slides, total_pages=len(slides))


def write_pdf(path: Path, pages: int = 2) -> Path:
    """Create a small real PDF with PyMuPDF."""
    doc = fitz.open()
    for n in range(1, pages + 1):
        page = doc.new_page(width=200, height=150)
        page.insert_text((20, 40), f"Page {n}")
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "storage"


@pytest.fixture
def config(storage_root: Path) -> PipelineConfig:
    return PipelineConfig(storage_root=str(storage_root))


@pytest.fixture
def config_file(tmp_path: Path, storage_root: Path) -> Path:
    path = tmp_path / "pipeline.json"
    path.write_text(json.dumps({"storage_root": str(storage_root), "extraction": {"format": "png", "dpi": 72}}))
    return path


@pytest.fixture
def rasterizer() -> FixtureRasterizer:
    return FixtureRasterizer(page_count=3)


@pytest.fixture
def pipeline(config: PipelineConfig, rasterizer: FixtureRasterizer) -> BrochurePipeline:
    return BrochurePipeline(config, rasterizer=rasterizer)


@pytest.fixture
def cardio_ref() -> DocumentReference:
    return DocumentReference(
        document_id="cardio",
        source_uri="uploads/cardio.pdf",
        mime_kind=MimeKind.PDF,
        title="CardioMax Pro Series"
    )


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    return write_pdf(tmp_path / "brochure.pdf", pages=2)
