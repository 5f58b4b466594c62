# fastapi web api exposing conversion, viewer payloads and per-user deck edits
from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from typing import List

from .config import PipelineConfig
from .exceptions import EditNotPersisted, NotFound, StorageUnavailable, UnsupportedFormat
from .models import (
    ConvertRequest, DocumentReference, GroupRename, ReorderItem, SlideCreate, SlideUpdate
)
from .pipeline import BrochurePipeline, UserDeck

# configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# initialize fastapi application
app = FastAPI(
    title="Brochure Pipeline API",
    description="Convert brochures into slide decks and manage per-user customisations",
    version="1.0.0"
)

# add cors middleware to allow cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# single pipeline for the process; tests swap it through dependency_overrides
_pipeline = None


def get_pipeline() -> BrochurePipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = BrochurePipeline(PipelineConfig())
    return _pipeline


async def get_deck(
    user_id: str,
    document_id: str,
    pipeline: BrochurePipeline = Depends(get_pipeline)
) -> UserDeck:
    return await pipeline.open_deck(user_id, document_id)


# map pipeline errors to http status codes

@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UnsupportedFormat)
async def unsupported_handler(request: Request, exc: UnsupportedFormat):
    return JSONResponse(status_code=415, content={"detail": str(exc)})


@app.exception_handler(StorageUnavailable)
async def storage_handler(request: Request, exc: StorageUnavailable):
    logger.error(f"Storage failure on {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=503, content={"detail": str(exc), "persisted": False})


@app.exception_handler(EditNotPersisted)
async def not_persisted_handler(request: Request, exc: EditNotPersisted):
    return JSONResponse(status_code=409, content={"detail": str(exc), "persisted": False})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ============================================================================
# DOCUMENTS
# ============================================================================

@app.post("/documents/{document_id}/convert")
async def convert_document(
    document_id: str,
    request: ConvertRequest,
    pipeline: BrochurePipeline = Depends(get_pipeline)
):
    """Convert a document, or return its cached conversion"""
    ref = DocumentReference(
        document_id=document_id,
        source_uri=request.source_uri,
        mime_kind=request.mime_kind,
        title=request.title
    )
    result = await pipeline.convert(ref)
    return result.model_dump(mode="json")


@app.get("/documents")
async def list_documents(pipeline: BrochurePipeline = Depends(get_pipeline)):
    """List every converted document"""
    records = await pipeline.list_documents()
    return [
        {"id": r.id, "title": r.title, "total_pages": r.total_pages, "converted_at": r.converted_at}
        for r in records
    ]


@app.get("/documents/{document_id}")
async def get_document(document_id: str, pipeline: BrochurePipeline = Depends(get_pipeline)):
    record = await pipeline.cache.get(document_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Document not converted: {document_id}")
    return record.model_dump(mode="json")


@app.delete("/documents/{document_id}")
async def delete_document(document_id: str, pipeline: BrochurePipeline = Depends(get_pipeline)):
    removed = await pipeline.delete_document(document_id)
    return {"deleted": removed}


# ============================================================================
# USER DECKS
# ============================================================================

@app.get("/users/{user_id}/documents/{document_id}/viewer")
async def viewer(deck: UserDeck = Depends(get_deck)):
    """Slides as the viewer renders them"""
    return deck.viewer_payload().model_dump(mode="json")


@app.get("/users/{user_id}/documents/{document_id}/groups")
async def grouped(deck: UserDeck = Depends(get_deck)):
    return [group.model_dump(mode="json") for group in deck.grouped()]


@app.get("/users/{user_id}/documents/{document_id}/snapshot")
async def snapshot(user_id: str, document_id: str, pipeline: BrochurePipeline = Depends(get_pipeline)):
    """Full overlay with its timestamps, as the sync layer reads it"""
    overlay = await pipeline.overlays.snapshot(user_id, document_id)
    if overlay is None:
        raise HTTPException(status_code=404, detail="No overlay for this user and document")
    return overlay.model_dump(mode="json")


@app.post("/users/{user_id}/documents/{document_id}/slides")
async def create_slide(request: SlideCreate, deck: UserDeck = Depends(get_deck)):
    slide = await deck.create_slide(request.title, request.image_ref, request.group, request.order)
    return slide.model_dump(mode="json")


@app.patch("/users/{user_id}/documents/{document_id}/slides/{slide_id}")
async def update_slide(slide_id: str, request: SlideUpdate, deck: UserDeck = Depends(get_deck)):
    slide = await deck.update_slide(slide_id, request)
    return slide.model_dump(mode="json")


@app.delete("/users/{user_id}/documents/{document_id}/slides/{slide_id}")
async def delete_slide(slide_id: str, deck: UserDeck = Depends(get_deck)):
    await deck.delete_slide(slide_id)
    return {"deleted": slide_id}


@app.post("/users/{user_id}/documents/{document_id}/slides/{slide_id}/duplicate")
async def duplicate_slide(slide_id: str, deck: UserDeck = Depends(get_deck)):
    slide = await deck.duplicate_slide(slide_id)
    return slide.model_dump(mode="json")


@app.put("/users/{user_id}/documents/{document_id}/slides/{slide_id}/group")
async def move_slide_to_group(
    slide_id: str,
    group: str = Body(..., embed=True),
    deck: UserDeck = Depends(get_deck)
):
    slide = await deck.move_to_group(slide_id, group)
    return slide.model_dump(mode="json")


@app.post("/users/{user_id}/documents/{document_id}/reorder")
async def reorder(moves: List[ReorderItem], deck: UserDeck = Depends(get_deck)):
    slides = await deck.reorder(moves)
    return [slide.model_dump(mode="json") for slide in slides]


@app.post("/users/{user_id}/documents/{document_id}/groups/rename")
async def rename_group(request: GroupRename, deck: UserDeck = Depends(get_deck)):
    changed = await deck.rename_group(request.old_name, request.new_name)
    return {"changed": changed}


@app.delete("/users/{user_id}/documents/{document_id}/groups/{name}")
async def delete_group(name: str, deck: UserDeck = Depends(get_deck)):
    changed = await deck.delete_group(name)
    return {"changed": changed}


@app.post("/users/{user_id}/documents/{document_id}/sort")
async def sort_alphabetically(deck: UserDeck = Depends(get_deck)):
    slides = await deck.sort_alphabetically()
    return [slide.model_dump(mode="json") for slide in slides]


@app.post("/users/{user_id}/documents/{document_id}/reset")
async def reset(user_id: str, document_id: str, pipeline: BrochurePipeline = Depends(get_pipeline)):
    """Discard the user's customisations"""
    deck = await pipeline.reset_deck(user_id, document_id)
    return deck.viewer_payload().model_dump(mode="json")
