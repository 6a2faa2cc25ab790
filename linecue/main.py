"""
FastAPI application for the linecue backend.

Handles line audio assignment, timeline edits (split, shift, merge) and
marked WAV export.
"""

from fastapi import FastAPI, Depends, UploadFile, File, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session
from urllib.parse import quote
import argparse
import io
import logging
import uvicorn

from . import database, models, timeline, export, config, __version__
from .assets import get_asset_store
from .database import get_db, AudioAsset as DBAudioAsset
from .errors import DecodeError, NotFoundError, StoreIOError
from .projects import load_chapter_snapshot
from .utils.validation import validate_upload

logger = logging.getLogger(__name__)

app = FastAPI(
    title="linecue API",
    description="Line-aligned audio editing and marked WAV export",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(e: Exception) -> HTTPException:
    """Map a domain error to an HTTP error."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DecodeError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StoreIOError):
        logger.error("Storage failure: %s", e)
        return HTTPException(status_code=500, detail=str(e))
    logger.exception("Unexpected error")
    return HTTPException(status_code=500, detail=str(e))


def _wav_download(wav_bytes: bytes, filename: str) -> StreamingResponse:
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    return StreamingResponse(
        io.BytesIO(wav_bytes),
        media_type="audio/wav",
        headers={
            "Content-Disposition": (
                f'attachment; filename="{ascii_name}"; filename*=UTF-8\'\'{quote(filename)}'
            )
        },
    )


# ============================================
# ROOT & HEALTH ENDPOINTS
# ============================================

@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "linecue API", "version": __version__}


@app.get("/health", response_model=models.HealthResponse)
async def health():
    """Health check endpoint."""
    return models.HealthResponse(
        status="healthy",
        database=str(database._db_path) if database._db_path else "not initialized",
        assets_dir=str(get_asset_store().root),
    )


# ============================================
# CHAPTER ENDPOINTS
# ============================================

@app.get("/chapters/{chapter_id}", response_model=models.ChapterResponse)
async def get_chapter(
    chapter_id: str,
    db: Session = Depends(get_db),
):
    """Get a chapter with its ordered lines."""
    try:
        return models.chapter_to_response(load_chapter_snapshot(chapter_id, db))
    except ValueError as e:
        raise _http_error(e)


@app.put("/chapters/{chapter_id}/lines/{line_id}/audio", response_model=models.EditResponse)
async def assign_line_audio(
    chapter_id: str,
    line_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    """Upload audio for a line, replacing what it held."""
    content = await file.read()
    is_valid, error_msg = validate_upload(content)
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_msg)

    try:
        result = await timeline.assign_audio_to_line(chapter_id, line_id, content, db)
        return models.edit_to_response(result)
    except Exception as e:
        raise _http_error(e)


@app.delete("/chapters/{chapter_id}/audio", response_model=models.ClearAudioResponse)
async def clear_chapter_audio(
    chapter_id: str,
    db: Session = Depends(get_db),
):
    """Remove all audio from a chapter."""
    try:
        result = await timeline.clear_chapter_audio(chapter_id, db)
        return models.ClearAudioResponse(
            chapter_id=chapter_id,
            deleted=len(result.deleted_asset_ids),
        )
    except Exception as e:
        raise _http_error(e)


# ============================================
# TIMELINE EDIT ENDPOINTS
# ============================================

@app.post("/chapters/{chapter_id}/lines/{line_id}/split", response_model=models.EditResponse)
async def split_line_audio(
    chapter_id: str,
    line_id: str,
    data: models.SplitRequest,
    db: Session = Depends(get_db),
):
    """Split a line's audio and ripple the tail down the chain."""
    try:
        result = await timeline.split_at_time(
            chapter_id,
            line_id,
            data.split_seconds,
            data.filter_mode,
            db,
        )
        return models.edit_to_response(result)
    except Exception as e:
        raise _http_error(e)


@app.post("/chapters/{chapter_id}/lines/{line_id}/shift-down", response_model=models.EditResponse)
async def shift_line_audio_down(
    chapter_id: str,
    line_id: str,
    data: models.ShiftRequest,
    db: Session = Depends(get_db),
):
    """Move the chain's audio one eligible line later."""
    try:
        result = await timeline.shift_down(chapter_id, line_id, data.filter_mode, db)
        return models.edit_to_response(result)
    except Exception as e:
        raise _http_error(e)


@app.post("/chapters/{chapter_id}/lines/{line_id}/shift-up", response_model=models.EditResponse)
async def shift_line_audio_up(
    chapter_id: str,
    line_id: str,
    data: models.ShiftRequest,
    db: Session = Depends(get_db),
):
    """Move the chain's audio one eligible line earlier."""
    try:
        result = await timeline.shift_up(chapter_id, line_id, data.filter_mode, db)
        return models.edit_to_response(result)
    except Exception as e:
        raise _http_error(e)


@app.post("/chapters/{chapter_id}/lines/{line_id}/merge-next", response_model=models.EditResponse)
async def merge_line_with_next(
    chapter_id: str,
    line_id: str,
    data: models.ShiftRequest,
    db: Session = Depends(get_db),
):
    """Merge a line with the next line of the same role."""
    try:
        result = await timeline.merge_with_next_and_shift(chapter_id, line_id, data.filter_mode, db)
        return models.edit_to_response(result)
    except Exception as e:
        raise _http_error(e)


@app.post("/chapters/{chapter_id}/lines/{line_id}/merge-previous", response_model=models.EditResponse)
async def merge_line_with_previous(
    chapter_id: str,
    line_id: str,
    data: models.ShiftRequest,
    db: Session = Depends(get_db),
):
    """Append a line's audio to the line before it."""
    try:
        result = await timeline.merge_with_previous_and_shift(chapter_id, line_id, data.filter_mode, db)
        return models.edit_to_response(result)
    except Exception as e:
        raise _http_error(e)


# ============================================
# ASSET ENDPOINTS
# ============================================

@app.get("/assets/{asset_id}")
async def get_asset_audio(
    asset_id: str,
    db: Session = Depends(get_db),
):
    """Serve an audio asset's payload."""
    asset = db.query(DBAudioAsset).filter_by(id=asset_id).first()
    if not asset:
        raise HTTPException(status_code=404, detail="Audio asset not found")

    store = get_asset_store()
    if not store.exists(asset_id):
        raise HTTPException(status_code=404, detail="Audio file not found")

    return FileResponse(
        store.path_for(asset_id),
        media_type="audio/wav",
        filename=f"{asset_id}{config.ASSET_EXTENSION}",
    )


# ============================================
# EXPORT ENDPOINTS
# ============================================

@app.get("/chapters/{chapter_id}/export-markers")
async def export_chapter_markers(
    chapter_id: str,
    db: Session = Depends(get_db),
):
    """Export a chapter's audio as one WAV with a cue marker per line."""
    try:
        wav_bytes, filename = await export.export_chapter(chapter_id, db)
    except Exception as e:
        raise _http_error(e)
    return _wav_download(wav_bytes, filename)


@app.get("/projects/{project_id}/export-markers")
async def export_project_markers(
    project_id: str,
    db: Session = Depends(get_db),
):
    """Export every chapter of a project as one marked WAV."""
    try:
        wav_bytes, filename = await export.export_project(project_id, db)
    except Exception as e:
        raise _http_error(e)
    return _wav_download(wav_bytes, filename)


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("linecue API starting up...")
    database.init_db()
    logger.info("Database initialized at %s", database._db_path)
    logger.info("Assets directory: %s", get_asset_store().root)


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("linecue API shutting down...")


# ============================================
# MAIN
# ============================================

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="linecue backend server")
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (use 0.0.0.0 for remote access)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Data directory for the database and audio assets",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Set data directory if provided
    if args.data_dir:
        config.set_data_dir(args.data_dir)

    # Initialize database after data directory is set
    database.init_db()

    uvicorn.run(
        "linecue.main:app",
        host=args.host,
        port=args.port,
        reload=False,  # Disable reload in production
    )
