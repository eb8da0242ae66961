from typing import Annotated, Any

from fastapi import APIRouter, Form, HTTPException, status
from fastapi.responses import FileResponse

from jinx.core.dream import DreamFlagsError
from jinx.web.constants import TEXT_MAX_LENGTH
from jinx.web.utils.files import resolve_export_file
from jinx.web.workers import JOBS
from jinx.web.workers.dream import cancel_dream, queue_snapshot, submit_dream

router = APIRouter(
    prefix="/dream",
    tags=["dream"],
)


def _public(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "job_id": record["id"],
        "status": record["status"],
        "position": record["position"],
        "message": record["message"],
        "prompt": record["prompt"],
        "error": record["error"],
    }


def _get_record(job_id: str) -> dict[str, Any]:
    record = JOBS.get(job_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    return record


@router.post("/")
async def dream(
    text: Annotated[str, Form(min_length=1, max_length=TEXT_MAX_LENGTH)],
) -> dict:
    """Queue an image generation from `<prompt> [-flag value ...]` text."""
    try:
        record = submit_dream(text)
    except DreamFlagsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.errors,
        ) from exc
    return _public(record)


@router.get("/queue")
async def dream_queue() -> dict:
    """Running dream first, then pending dreams in queue order."""
    return {"jobs": [_public(record) for record in queue_snapshot()]}


@router.get("/status/{job_id}")
async def dream_status(job_id: str) -> dict:
    return _public(_get_record(job_id))


@router.get("/result/{job_id}")
async def dream_result(job_id: str) -> FileResponse:
    record = _get_record(job_id)
    if record["status"] != "done":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job not ready",
        )
    result_name = record.get("result")
    if not result_name:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Result missing",
        )
    return FileResponse(
        resolve_export_file(result_name),
        media_type="image/png",
        filename=result_name,
    )


@router.post("/cancel/{job_id}")
async def dream_cancel(job_id: str) -> dict:
    """Cancel a dream that is still waiting; later ones move up by one."""
    record = _get_record(job_id)
    canceled = cancel_dream(job_id)
    return {"job_id": job_id, "canceled": canceled, "status": record["status"]}


__all__ = ["router"]
