"""API routes for upload, conversion, status and download."""
import logging
import uuid
from concurrent.futures import Future
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from converter.config import (
    CONTAINER_PAIRS,
    MAX_VIDEO_SIZE_BYTES,
    MAX_VIDEO_SIZE_MB,
    UPLOAD_CHUNK_BYTES,
)
from converter.conversion.errors import ConversionError
from converter.conversion.models import ConversionOptions, JobResult, MediaJob, Optimization
from converter.conversion.service import get_conversion_service
from converter.conversion.validation import check_size, infer_formats
from converter.db import (
    delete_session_data,
    get_session_activities,
    get_session_stats,
    record_activity,
)

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])

_STATUS_BY_CODE = {
    "UNSUPPORTED_FORMAT": 400,
    "INVALID_OPTION": 400,
    "FILE_TOO_LARGE": 413,
    "JOB_IN_PROGRESS": 409,
    "ENGINE_INIT_FAILURE": 503,
}


def _http_error(exc: ConversionError) -> HTTPException:
    return HTTPException(_STATUS_BY_CODE.get(exc.code, 500), exc.to_detail())


def _content_disposition(filename: str) -> str:
    fallback = "".join(c for c in filename if c.isascii() and c.isprintable() and c not in '"\\') or "converted"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def get_or_create_session_id(request: Request) -> str:
    """Use X-Session-ID header or generate and attach to request for response header."""
    sid = (request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def _record_when_done(session_id: str, job: MediaJob, future: "Future[JobResult]") -> None:
    def done(f: "Future[JobResult]") -> None:
        if f.cancelled():
            return
        result = f.result()
        svc = get_conversion_service()
        try:
            record_activity(
                session_id,
                job.job_id,
                job.filename,
                "completed" if result.ok else "failed",
                target_format=job.target.value,
                input_bytes=job.size,
                output_bytes=result.size,
                error_code=result.error_code,
                duration_seconds=svc.duration_seconds if svc.job is job else None,
            )
        except Exception as e:
            logger.warning("Could not record activity for job %s: %s", job.job_id, e)

    future.add_done_callback(done)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Return upload limits for the client."""
    return {
        "max_video_size_mb": MAX_VIDEO_SIZE_MB,
        "max_video_size_bytes": MAX_VIDEO_SIZE_BYTES,
    }


@router.get("/formats")
def get_formats():
    return {
        "input": sorted(CONTAINER_PAIRS),
        "conversions": CONTAINER_PAIRS,
        "optimizations": [o.value for o in Optimization],
    }


@router.post("/convert")
async def convert(
    file: Optional[UploadFile] = File(None),
    include_audio: bool = Query(True, description="Keep the audio track"),
    optimization: str = Query("none", description="none | fps | length | quality | size"),
    target_format: Optional[str] = Query(None, description="Optional; must match the inferred target"),
    session_id: str = Depends(get_or_create_session_id),
):
    """Upload one MP4/WebM file and start converting it to the other format."""
    if file is None or not file.filename:
        raise HTTPException(400, {"error_code": "MISSING_FILE", "message": "File is required"})
    try:
        _, target = infer_formats(file.filename)
        options = ConversionOptions(
            include_audio=include_audio,
            optimization=Optimization.parse(optimization),
        )
    except ConversionError as e:
        raise _http_error(e)
    if target_format and target_format.strip().lower().lstrip(".") != target.value:
        raise HTTPException(400, {
            "error_code": "UNSUPPORTED_FORMAT",
            "message": f"{file.filename} can only be converted to {target.value}",
        })

    data = bytearray()
    try:
        while chunk := await file.read(UPLOAD_CHUNK_BYTES):
            data.extend(chunk)
            check_size(len(data))
    except ConversionError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Upload failed: %s", e)
        raise HTTPException(500, {"error_code": "IO_FAILURE", "message": "Upload failed"})

    svc = get_conversion_service()
    try:
        job = svc.create_job(file.filename, bytes(data), options)
        future = svc.submit(job)
    except ConversionError as e:
        raise _http_error(e)
    _record_when_done(session_id, job, future)
    return svc.snapshot()


@router.get("/status")
def get_status():
    """Current job state and progress."""
    return get_conversion_service().snapshot()


@router.get("/download")
def download_output():
    """Download the converted file of the last successful job."""
    result = get_conversion_service().result
    data = result.data if result is not None and result.ok else None
    if data is None:
        raise HTTPException(404, "No converted file available")
    return Response(
        content=data,
        media_type=result.mime_type,
        headers={"Content-Disposition": _content_disposition(result.filename)},
    )


@router.post("/reset")
def reset():
    """Drop the current job and its output."""
    svc = get_conversion_service()
    svc.reset()
    return svc.snapshot()


@router.get("/session/stats")
def session_stats(session_id: str = Depends(get_or_create_session_id)):
    """Return aggregated stats for the current session."""
    return get_session_stats(session_id)


@router.get("/session/activities")
def session_activities(
    limit: int = Query(50, ge=1, le=200),
    session_id: str = Depends(get_or_create_session_id),
):
    """Return recent conversions for the current session."""
    return {"activities": get_session_activities(session_id, limit=limit)}


@router.delete("/session/data")
def session_delete_data(session_id: str = Depends(get_or_create_session_id)):
    """Delete the session's conversion history."""
    removed = delete_session_data(session_id)
    return {"ok": True, "removed": removed, "message": "Session data cleared"}
