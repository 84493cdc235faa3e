import asyncio
import logging
import uuid
from typing import Union
from weakref import WeakValueDictionary

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import get_db
from ..errors import RelayError
from ..horde_client import StableHordeClient
from ..image_jobs import (
    Cancelled,
    Done,
    Faulted,
    JobHandle,
    JobSubmitter,
    StatusPoller,
    TimedOut,
    resolve,
)
from ..models import ImageJob
from ..schemas import (
    GenerateImageRequest,
    ImageResultResponse,
    ImageStatusResponse,
    ImageSubmittedResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["images"])

DISCONNECT_CHECK_SECONDS = 0.5

# One in-flight status check per image id
_status_locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()


async def get_horde_client(settings: Settings = Depends(get_settings)):
    client = StableHordeClient(settings.horde)
    try:
        yield client
    finally:
        await client.aclose()


def _http_error(exc: RelayError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def _record_outcome(db: Session, job: ImageJob, outcome) -> None:
    if isinstance(outcome, Done):
        job.status = "completed"
        job.image_url = outcome.result.image_url
        job.model_used = outcome.result.model_used
    elif isinstance(outcome, Faulted):
        job.status = "failed"
        job.error_message = outcome.reason
    elif isinstance(outcome, TimedOut):
        job.status = "failed"
        job.error_message = f"Timed out after {outcome.attempts} status checks; you may resubmit"
    elif isinstance(outcome, Cancelled):
        job.status = "failed"
        job.error_message = "Cancelled: client disconnected"
    _commit(db)


def _status_from_row(job: ImageJob) -> ImageStatusResponse:
    if job.status == "completed":
        return ImageStatusResponse(status="completed", image_url=job.image_url, model=job.model_used)
    return ImageStatusResponse(status="failed", error=job.error_message)


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling image poll")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_CHECK_SECONDS)


@router.post("/generate-image", response_model=Union[ImageResultResponse, ImageSubmittedResponse])
async def generate_image(
    payload: GenerateImageRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: StableHordeClient = Depends(get_horde_client),
):
    """Submit an image job; optionally wait for the finished image."""
    try:
        gen_request = payload.to_generation_request(settings.horde)
        handle = await JobSubmitter(client, settings.horde).submit(gen_request)
    except RelayError as exc:
        raise _http_error(exc)

    image_id = str(uuid.uuid4())
    job = ImageJob(
        id=image_id,
        prompt=gen_request.prompt,
        horde_job_id=handle.job_id,
        models=",".join(handle.models),
        status="pending",
        poll_count=0,
    )
    db.add(job)
    _commit(db)

    wait = payload.wait if payload.wait is not None else settings.horde.wait_for_result
    if not wait:
        return ImageSubmittedResponse(image_id=image_id, check_url=f"/image-status/{image_id}")

    cancel = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        outcome = await StatusPoller(client, settings.horde).poll(handle, cancel=cancel)
    except RelayError as exc:
        job.status = "failed"
        job.error_message = exc.message
        _commit(db)
        await client.cancel(handle.job_id)
        raise _http_error(exc)
    finally:
        cancel.set()
        watcher.cancel()

    _record_outcome(db, job, outcome)
    if isinstance(outcome, (TimedOut, Cancelled)):
        await client.cancel(handle.job_id)

    try:
        result = resolve(outcome)
    except RelayError as exc:
        raise _http_error(exc)
    return ImageResultResponse(image_url=result.image_url, model=result.model_used, image_id=image_id)


@router.get("/image-status/{image_id}", response_model=ImageStatusResponse, response_model_exclude_none=True)
async def image_status(
    image_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: StableHordeClient = Depends(get_horde_client),
):
    """Check an image job once; finished jobs are answered from the database."""
    lock = _status_locks.setdefault(image_id, asyncio.Lock())
    async with lock:
        return await _check_image(image_id, db, settings, client)


def _claim_poll(db: Session, image_id: str, max_attempts: int) -> bool:
    """Atomically spend one status check from the job's budget."""
    claimed = (
        db.query(ImageJob)
        .filter(
            ImageJob.id == image_id,
            ImageJob.status == "pending",
            ImageJob.poll_count < max_attempts,
        )
        .update({ImageJob.poll_count: ImageJob.poll_count + 1}, synchronize_session=False)
    )
    _commit(db)
    return claimed == 1


async def _check_image(image_id: str, db: Session, settings: Settings, client) -> ImageStatusResponse:
    job = db.get(ImageJob, image_id)
    if not job:
        raise HTTPException(status_code=404, detail="Image not found")

    if job.status in ("completed", "failed"):
        return _status_from_row(job)

    handle = JobHandle(job_id=job.horde_job_id, models=tuple(filter(None, (job.models or "").split(","))))
    if not _claim_poll(db, image_id, settings.horde.max_attempts):
        db.refresh(job)
        if job.status == "pending":
            _record_outcome(db, job, TimedOut(attempts=job.poll_count))
            await client.cancel(handle.job_id)
        return _status_from_row(job)

    try:
        status = await StatusPoller(client, settings.horde).check(handle)
    except RelayError as exc:
        raise _http_error(exc)

    if isinstance(status, (Done, Faulted)):
        _record_outcome(db, job, status)
        return _status_from_row(job)

    if job.poll_count >= settings.horde.max_attempts:
        _record_outcome(db, job, TimedOut(attempts=job.poll_count))
        await client.cancel(handle.job_id)
        return _status_from_row(job)

    return ImageStatusResponse(
        status="processing",
        wait_time=status.wait_time,
        queue_position=status.queue_position,
    )

