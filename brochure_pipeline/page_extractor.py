# page extraction: turns a pdf, a zip of slide images or a single image into ordered page rasters
import fitz  # PyMuPDF
import asyncio
import re
import zipfile
import tempfile
import logging
from pathlib import Path, PurePosixPath
from typing import List, Optional, Protocol, Sequence

from .config import DEFAULT_IMAGE_EXTENSIONS
from .exceptions import ExtractionFailed, UnsupportedFormat
from .models import ExtractionOptions, ImageFormat, MimeKind, PageImage

logger = logging.getLogger(__name__)


# the external rasterisation capability, a single method returning page file paths
class RasterizationCapability(Protocol):
    async def generate_all_pages(
        self,
        source_uri: str,
        quality: int,
        *,
        image_format: str = "jpg",
        dpi: int = 150,
        output_dir: Optional[str] = None
    ) -> List[str]: ...


# rasteriser that renders pdf pages with pymupdf
class PyMuPDFRasterizer:
    async def generate_all_pages(
        self,
        source_uri: str,
        quality: int,
        *,
        image_format: str = "jpg",
        dpi: int = 150,
        output_dir: Optional[str] = None
    ) -> List[str]:
        """Render every page of a PDF to an image file, in page order"""
        out_dir = Path(output_dir or tempfile.mkdtemp(prefix="pages-"))
        out_dir.mkdir(parents=True, exist_ok=True)
        suffix = "png" if image_format == ImageFormat.PNG.value else "jpg"

        # rendering is blocking, so it runs off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._render, source_uri, quality, suffix, dpi, out_dir)

    def _render(self, source_uri: str, quality: int, suffix: str, dpi: int, out_dir: Path) -> List[str]:
        paths = []
        doc = fitz.open(_local_path(source_uri) or source_uri)
        try:
            # render each page in order
            for page_index in range(doc.page_count):
                pix = doc[page_index].get_pixmap(dpi=dpi)
                out_path = out_dir / f"page_{page_index + 1:03d}.{suffix}"
                if suffix == "png":
                    pix.save(str(out_path), output="png")
                else:
                    pix.save(str(out_path), output="jpeg", jpg_quality=quality)
                paths.append(str(out_path))
        finally:
            doc.close()

        logger.info(f"Rendered {len(paths)} pages from {source_uri}")
        return paths


# strip a file:// scheme and return a path, or None for remote uris
def _local_path(source_uri: str) -> Optional[Path]:
    if source_uri.startswith("file://"):
        return Path(source_uri[len("file://"):])
    if re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", source_uri):
        return None
    return Path(source_uri)


# sort key so that slide_10 follows slide_9
def _natural_key(name: str):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]


# guess the document kind from the file name
def detect_mime_kind(source_uri: str) -> MimeKind:
    suffix = PurePosixPath(source_uri.split("?")[0]).suffix.lower()
    if suffix == ".pdf":
        return MimeKind.PDF
    if suffix == ".zip":
        return MimeKind.ZIP_IMAGES
    return MimeKind.SINGLE_FILE


# wraps the rasterisation capability and owns format handling, not caching
class PageExtractor:
    def __init__(
        self,
        rasterizer: Optional[RasterizationCapability] = None,
        image_extensions: Optional[Sequence[str]] = None
    ):
        self.rasterizer = rasterizer or PyMuPDFRasterizer()
        self.image_extensions = [ext.lower() for ext in (image_extensions or DEFAULT_IMAGE_EXTENSIONS)]

    async def extract_pages(
        self,
        source_uri: str,
        options: Optional[ExtractionOptions] = None,
        mime_kind: MimeKind = MimeKind.PDF,
        output_dir: Optional[str] = None
    ) -> List[PageImage]:
        """Extract all pages of a source document, preserving source order"""
        options = options or ExtractionOptions()
        logger.info(f"Extracting pages from {source_uri} ({mime_kind.value})")

        if mime_kind == MimeKind.PDF:
            pages = await self._extract_pdf(source_uri, options, output_dir)
        elif mime_kind == MimeKind.ZIP_IMAGES:
            pages = await self._extract_zip(source_uri, output_dir)
        elif mime_kind == MimeKind.SINGLE_FILE:
            pages = await self._extract_single_file(source_uri, options, output_dir)
        else:
            raise UnsupportedFormat(f"Unknown document kind: {mime_kind}")

        if not pages:
            raise ExtractionFailed(f"No pages extracted from {source_uri}")

        logger.info(f"Extracted {len(pages)} pages from {source_uri}")
        return pages

    async def _extract_pdf(
        self,
        source_uri: str,
        options: ExtractionOptions,
        output_dir: Optional[str]
    ) -> List[PageImage]:
        local = _local_path(source_uri)
        if local is not None and local.is_file():
            with open(local, "rb") as f:
                header = f.read(5)
            if header != b"%PDF-":
                raise UnsupportedFormat(f"Not a PDF document: {source_uri}")

        try:
            paths = await self.rasterizer.generate_all_pages(
                source_uri,
                options.quality,
                image_format=options.format.value,
                dpi=options.dpi,
                output_dir=output_dir
            )
        except Exception as e:
            logger.error(f"Rasterisation failed for {source_uri}: {str(e)}")
            raise ExtractionFailed(f"Rasterisation failed for {source_uri}", cause=e)

        return [
            PageImage(page_number=index, raster_handle=str(path))
            for index, path in enumerate(paths or [], start=1)
        ]

    async def _extract_zip(self, source_uri: str, output_dir: Optional[str]) -> List[PageImage]:
        local = _local_path(source_uri)
        if local is None or not local.is_file():
            raise ExtractionFailed(f"Archive is not available locally: {source_uri}")

        out_dir = Path(output_dir or tempfile.mkdtemp(prefix="slides-"))
        out_dir.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_running_loop()
        pages = await loop.run_in_executor(None, self._unzip, local, source_uri, out_dir)

        logger.info(f"Found {len(pages)} slide images in {local.name}")
        return pages

    def _unzip(self, local: Path, source_uri: str, out_dir: Path) -> List[PageImage]:
        try:
            with zipfile.ZipFile(local) as archive:
                # keep image entries only, skipping folders and mac metadata
                members = [
                    info for info in archive.infolist()
                    if not info.is_dir() and self._is_slide_image(info.filename)
                ]
                members.sort(key=lambda info: _natural_key(PurePosixPath(info.filename).name))

                pages = []
                for index, info in enumerate(members, start=1):
                    name = PurePosixPath(info.filename).name
                    target = out_dir / f"{index:03d}_{name}"
                    with archive.open(info) as src, open(target, "wb") as dst:
                        dst.write(src.read())
                    pages.append(PageImage(
                        page_number=index,
                        raster_handle=str(target),
                        label=PurePosixPath(name).stem
                    ))
        except zipfile.BadZipFile as e:
            raise UnsupportedFormat(f"Not a valid ZIP archive: {source_uri}", cause=e)
        except OSError as e:
            raise ExtractionFailed(f"Could not unpack {source_uri}", cause=e)
        return pages

    async def _extract_single_file(
        self,
        source_uri: str,
        options: ExtractionOptions,
        output_dir: Optional[str]
    ) -> List[PageImage]:
        suffix = PurePosixPath(source_uri.split("?")[0]).suffix.lower()
        if suffix == ".pdf":
            return await self._extract_pdf(source_uri, options, output_dir)
        if suffix == ".zip":
            return await self._extract_zip(source_uri, output_dir)
        if suffix not in self.image_extensions:
            raise UnsupportedFormat(f"Unsupported file type: {source_uri}")

        local = _local_path(source_uri)
        if local is None or not local.is_file():
            raise ExtractionFailed(f"File is not available locally: {source_uri}")
        return [PageImage(page_number=1, raster_handle=str(local), label=local.stem)]

    def _is_slide_image(self, filename: str) -> bool:
        path = PurePosixPath(filename)
        if "__MACOSX" in path.parts or path.name.startswith("."):
            return False
        return path.suffix.lower() in self.image_extensions
