import functools
import logging
import math
from typing import Optional

import anyio
import anyio.to_thread
from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile

from vidconv.domain.errors import ProbeError
from vidconv.domain.models import JobState
from vidconv.infrastructure.storage import UploadTooLarge
from vidconv.pipeline.estimator import parse_duration_seconds

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["conversion"])


def _store_upload(request: Request, file: UploadFile, prefix: str = ""):
    storage = request.app.state.storage
    limit = request.app.state.config.server.max_upload_bytes
    try:
        return storage.save_upload(file.file, file.filename or "upload", max_bytes=limit, prefix=prefix)
    except UploadTooLarge as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error(f"failed to store uploaded file: {e}")
        raise HTTPException(status_code=500, detail="Failed to store upload")


@router.get("/health")
def health():
    return {"status": "ok", "service": "video-converter"}


@router.post("/analyze")
def analyze(request: Request, file: Optional[UploadFile] = File(None)):
    """Probe an upload without converting it."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    temp_path = _store_upload(request, file, prefix="temp-")
    try:
        metadata = request.app.state.ffprobe.probe(temp_path)
    except ProbeError as e:
        logger.error(f"analysis error: {e}")
        raise HTTPException(status_code=500, detail="Analysis failed")
    finally:
        request.app.state.storage.discard(temp_path)

    return {
        "name": file.filename,
        "duration": parse_duration_seconds(metadata.format.duration),
        "fileSize": metadata.size_bytes,
        "resolution": metadata.resolution,
        "codec": metadata.codec,
        "bitrate": metadata.format.bit_rate,
    }


def _conversion_limiter(request: Request) -> anyio.CapacityLimiter:
    # Unbounded: each conversion holds its thread for the whole ffmpeg run.
    limiter = getattr(request.app.state, "conversion_limiter", None)
    if limiter is None:
        limiter = anyio.CapacityLimiter(math.inf)
        request.app.state.conversion_limiter = limiter
    return limiter


def _run_conversion(request: Request, file: UploadFile, output_format: str):
    storage = request.app.state.storage
    original_name = file.filename or "upload"
    input_path = _store_upload(request, file)
    try:
        conversion = storage.prepare_request(input_path, original_name, output_format)
        result = request.app.state.orchestrator.convert(conversion)
    finally:
        storage.discard(input_path)

    if result.state == JobState.SUCCEEDED:
        return result.summary.model_dump(by_alias=True)
    raise HTTPException(status_code=result.http_status, detail=result.message)


@router.post("/convert")
async def convert(
    request: Request,
    file: Optional[UploadFile] = File(None),
    format: Optional[str] = Form(None),
):
    """Upload a file and wait until it has been converted to `format`.

    Progress is pushed over /ws while this request is open.
    """
    if not format:
        raise HTTPException(status_code=400, detail="Missing output format")
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    return await anyio.to_thread.run_sync(
        functools.partial(_run_conversion, request, file, format),
        limiter=_conversion_limiter(request),
    )


@router.get("/files")
def list_files(request: Request):
    try:
        return request.app.state.storage.list_files()
    except OSError as e:
        logger.error(f"failed to list downloads: {e}")
        raise HTTPException(status_code=500, detail="Failed to list files")
