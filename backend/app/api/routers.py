import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter
from fastapi.responses import FileResponse, JSONResponse

from backend.app.config import settings
from backend.app.exceptions import error_details, error_message, serialize_error
from backend.app.models.schemas import ClipErrorResponse, ClipRequest, ErrorResponse
from backend.app.services.clip_service import ClipService, cleanup_clip

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "url, startTime, and endTime are required"

# route collection, mounted under /api by main.py
router = APIRouter()

# one shared service instance; it keeps no per-request state
clipper = ClipService()


class ClipFileResponse(FileResponse):
    """FileResponse that deletes the clip once sending ends, successfully or not."""

    def __init__(self, path: Path, **kwargs):
        super().__init__(path, **kwargs)
        self.clip_path = Path(path)

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        except Exception as e:
            logger.error("Error sending file %s: %s", self.clip_path, e)
            raise
        finally:
            # runs after the last body chunk, or after send blew up mid-stream
            await cleanup_clip(self.clip_path)


def missing_fields_response() -> JSONResponse:
    return JSONResponse(status_code=400, content=ErrorResponse(error=MISSING_FIELDS_MESSAGE).model_dump())


def clip_error_response(exc: Exception) -> JSONResponse:
    body = ClipErrorResponse(
        error=error_message(exc),
        details=error_details(exc),
        fullError=serialize_error(exc),
    )
    return JSONResponse(status_code=500, content=body.model_dump())


@router.post("/clip")
async def create_clip(request: ClipRequest):
    if not request.is_complete():
        return missing_fields_response()

    # one fresh output path per request, never reused
    output_path = clipper.new_output_path()
    try:
        await clipper.clip(request, output_path)
    except asyncio.CancelledError:
        # client went away mid-download, yt-dlp is already killed; drop its leftovers
        await cleanup_clip(output_path)
        raise
    except Exception as e:
        logger.exception("Error during video processing")
        await cleanup_clip(output_path)
        return clip_error_response(e)

    logger.info("Processing complete. Clip available at: %s", output_path)
    return ClipFileResponse(
        output_path,
        media_type="video/mp4",
        filename=settings.download_filename,
    )
