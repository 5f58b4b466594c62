# durable cache of conversion results, one namespace per document
import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .exceptions import StorageUnavailable
from .models import PresentationRecord, validate_segment
from .storage import DurableStorage

logger = logging.getLogger(__name__)

RECORD_FILE = "presentation_data.json"


# stores canonical presentation records and their page rasters
class PresentationCache:
    def __init__(self, storage: DurableStorage):
        self.storage = storage

    def _record_path(self, document_id: str) -> str:
        return f"{validate_segment(document_id, 'document_id')}/{RECORD_FILE}"

    async def has(self, document_id: str) -> bool:
        """Check whether a conversion record exists, without extracting anything"""
        return await self.storage.exists(self._record_path(document_id))

    async def get(self, document_id: str) -> Optional[PresentationRecord]:
        """Load the cached record, or None when absent or unreadable"""
        path = self._record_path(document_id)
        if not await self.storage.exists(path):
            return None

        text = await self.storage.read_text(path)
        try:
            return PresentationRecord(**json.loads(text))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            # a broken record counts as a miss so the next conversion overwrites it
            logger.error(f"Corrupt presentation record for {document_id}: {str(e)}")
            return None

    async def put(self, document_id: str, record: PresentationRecord) -> None:
        """Write (or overwrite) the record, creating the namespace if needed"""
        await self.storage.ensure_dir(validate_segment(document_id, "document_id"))
        payload = json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False)
        await self.storage.write_text(self._record_path(document_id), payload)
        logger.info(f"Cached presentation {document_id} ({len(record.slides)} slides)")

    async def store_page(self, document_id: str, page_number: int, source_path: str) -> str:
        """Copy one page raster into the document namespace and return its image ref"""
        suffix = Path(source_path).suffix.lower() or ".jpg"
        relative = f"{validate_segment(document_id, 'document_id')}/slide_{page_number:03d}{suffix}"
        try:
            data = Path(source_path).read_bytes()
        except OSError as e:
            raise StorageUnavailable(f"Cannot read page raster {source_path!r}", cause=e)

        await self.storage.write_bytes(relative, data)
        return self.storage.locate(relative)

    async def delete(self, document_id: str) -> bool:
        """Remove the namespace with its record and rasters"""
        removed = await self.storage.delete_recursive(validate_segment(document_id, "document_id"))
        if removed:
            logger.info(f"Deleted cached presentation {document_id}")
        return removed

    async def list_all(self) -> List[PresentationRecord]:
        """Re-scan storage and return every readable record"""
        records = []
        for entry in await self.storage.list_entries(""):
            try:
                validate_segment(entry, "document_id")
            except ValueError:
                continue
            record = await self.get(entry)
            if record:
                records.append(record)
        return records
