import asyncio
import io
import logging
import threading
from pathlib import Path
from typing import Any

from fastapi.concurrency import run_in_threadpool
from PIL import Image

from jinx.core.dream import parse_dream
from jinx.core.queue import Job
from jinx.core.stable_diffusion import StableDiffusionClient
from jinx.web.constants import EXPORT_EXTENSION, SD_API_URL, SD_TIMEOUT
from jinx.web.utils.files import allocate_export_path
from jinx.web.workers import GEN_QUEUE, JOBS

logger = logging.getLogger(__name__)

client = StableDiffusionClient(SD_API_URL, timeout=SD_TIMEOUT)

# Record statuses after which queue movements are no longer reported.
FINISHED = ("done", "error", "canceled")

_export_lock = threading.Lock()
_deliveries: set[asyncio.Task] = set()


def describe_position(position: int) -> str:
    """Text shown to the user while a job waits in the queue."""
    if position == 0:
        return "Done."
    if position == 1:
        return "Generating image..."
    return f"You are currently in position {position} in the queue."


def submit_dream(text: str) -> dict[str, Any]:
    """
    Parse a dream command, queue the generation and return its job record.

    The request to the web UI starts right away; the queue decides the order
    in which results are awaited and keeps the record's position current.
    Delivery of the finished image happens in a background task.

    Raises:
        DreamFlagsError: when the command text is invalid.

    """
    request = parse_dream(text)
    job = GEN_QUEUE.add(client.txt2img(request.to_txt2img()))
    record: dict[str, Any] = {
        "id": job.id,
        "status": "queued",
        "position": job.position,
        "message": describe_position(job.position),
        "prompt": request.prompt,
        "text": request.text,
        "result": None,
        "error": None,
    }
    if job.position == 1:
        record["status"] = "processing"
    JOBS[job.id] = record

    @job.on_position_change
    def _moved(position: int) -> None:
        if record["status"] in FINISHED:
            return
        record["position"] = position
        record["message"] = describe_position(position)
        if position == 1:
            record["status"] = "processing"

    @job.on_canceled
    def _canceled() -> None:
        record["status"] = "canceled"
        record["position"] = 0
        record["message"] = "Canceled."

    task = asyncio.get_running_loop().create_task(deliver(job, record))
    _deliveries.add(task)
    task.add_done_callback(_deliveries.discard)
    logger.info("Queued dream %s at position %d", job.id, job.position)
    return record


def save_image(data: bytes, extension: str = EXPORT_EXTENSION) -> Path:
    """Decode a generated image and write it to the next export slot."""
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        with _export_lock:
            out_file = allocate_export_path(extension)
            image.save(out_file, format="PNG")
    return out_file


def _fail(record: dict[str, Any], error: str) -> None:
    record["status"] = "error"
    record["position"] = 0
    record["error"] = error
    record["message"] = "Error generating image."


async def deliver(job: Job, record: dict[str, Any]) -> None:
    """Wait for a dream job and store its image; canceled jobs are dropped."""
    try:
        result = await job.wait()
    except (OSError, ValueError, RuntimeError) as exc:
        if not job.canceled:
            logger.warning("Dream %s failed: %s", job.id, exc)
            _fail(record, str(exc))
        return

    if job.canceled:
        logger.info("Discarding result of canceled dream %s", job.id)
        return
    if not result.images:
        _fail(record, "The API server may be down.")
        return

    try:
        out_file = await run_in_threadpool(save_image, result.images[0])
    except (OSError, ValueError) as exc:
        logger.warning("Could not save image for dream %s: %s", job.id, exc)
        _fail(record, str(exc))
        return

    record["status"] = "done"
    record["position"] = 0
    record["result"] = out_file.name
    record["message"] = "Done."
    logger.info("Dream %s saved to %s", job.id, out_file.name)


def cancel_dream(job_id: str) -> bool:
    """Remove a pending dream; running and finished dreams are left alone."""
    return GEN_QUEUE.remove_by_id(job_id)


def queue_snapshot() -> list[dict[str, Any]]:
    """Records of the running dream followed by the pending ones."""
    jobs = list(GEN_QUEUE.pending)
    if GEN_QUEUE.current is not None:
        jobs.insert(0, GEN_QUEUE.current)
    return [JOBS[job.id] for job in jobs if job.id in JOBS]


__all__ = [
    "cancel_dream",
    "client",
    "deliver",
    "describe_position",
    "queue_snapshot",
    "save_image",
    "submit_dream",
]
