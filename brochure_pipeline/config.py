# pipeline configuration loaded from defaults or a json file
import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ExtractionOptions

logger = logging.getLogger(__name__)

# bundled asset id the viewer resolves to its own placeholder image
PLACEHOLDER_ASSET = "asset://placeholder"

# image suffixes accepted from zip archives
DEFAULT_IMAGE_EXTENSIONS = [".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"]


# one placeholder slide of the fallback deck
class FallbackSlide(BaseModel):
    title: str
    image_ref: str = PLACEHOLDER_ASSET
    group: str = "General"


def _default_fallback_slides() -> List[FallbackSlide]:
    return [FallbackSlide(title=f"Slide {n}") for n in range(1, 4)]


# settings shared by every pipeline component
class PipelineConfig(BaseModel):
    storage_root: str = "storage"
    presentations_dir: str = "presentations"
    overlays_dir: str = "overlays"
    work_dir: str = "work"
    extraction: ExtractionOptions = Field(default_factory=ExtractionOptions)
    fallback_slides: List[FallbackSlide] = Field(default_factory=_default_fallback_slides)
    image_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_IMAGE_EXTENSIONS))

    @property
    def presentations_path(self) -> Path:
        return Path(self.storage_root) / self.presentations_dir

    @property
    def overlays_path(self) -> Path:
        return Path(self.storage_root) / self.overlays_dir

    @property
    def work_path(self) -> Path:
        return Path(self.storage_root) / self.work_dir

    @classmethod
    def load(cls, path: Optional[str] = None) -> "PipelineConfig":
        """Load configuration from a JSON file, or defaults when no path is given"""
        if not path:
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config {path}: {str(e)}")
            raise

        logger.info(f"Loaded pipeline config from {path}")
        return cls(**data)
