#!/usr/bin/env python3
"""Stable Horde HTTP client.

Speaks the ``/generate/async`` and ``/generate/status/{id}`` contract and
classifies every upstream answer into a job id, a ``JobStatus`` or one of the
relay errors.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from .config import HordeConfig
from .debug import get_debug_logger
from .errors import (
    InvalidRequest,
    NoWorkerAvailable,
    RateLimited,
    UpstreamError,
    UpstreamUnavailable,
)
from .image_jobs import Done, Faulted, GenerationRequest, JobStatus, Pending, ResultPayload

# Configure logging
logger = logging.getLogger(__name__)

NO_WORKER_CODES = {"NoAvailableWorker"}
HARD_ERROR_STATUSES = {400, 401, 403, 404, 422}


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        errors = data.get("errors")
        if message and isinstance(errors, dict) and errors:
            details = "; ".join(f"{k}: {v}" for k, v in errors.items())
            return f"{message} ({details})"
        if message:
            return str(message)
    return resp.text or f"HTTP {resp.status_code}"


def _reports_no_worker(data: Any) -> bool:
    """True when a response body carries the "no available worker" signal."""
    if not isinstance(data, dict):
        return False
    if data.get("rc") in NO_WORKER_CODES:
        return True
    for warning in data.get("warnings") or []:
        if not isinstance(warning, dict):
            continue
        if warning.get("code") in NO_WORKER_CODES:
            return True
        if "no available worker" in str(warning.get("message", "")).lower():
            return True
    return "no available worker" in str(data.get("message", "")).lower()


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_status(data: Dict[str, Any]) -> JobStatus:
    """Turn a ``/generate/status`` body into a job status."""
    generations = data.get("generations")
    if isinstance(generations, list) and generations:
        first = generations[0] if isinstance(generations[0], dict) else {}
        image_url = first.get("img")
        if image_url:
            return Done(ResultPayload(image_url=image_url, model_used=first.get("model") or ""))
    if data.get("faulted"):
        return Faulted(data.get("fault_message") or data.get("message") or "Generation faulted")
    if data.get("done"):
        return Faulted("Generation finished without an image")
    if data.get("is_possible") is False:
        return Faulted("No worker can fulfil this request")
    return Pending(
        queue_position=_as_int(data.get("queue_position")),
        wait_time=_as_int(data.get("wait_time")),
    )


class StableHordeClient:
    """Async client for a Stable Horde style generation API."""

    def __init__(self, config: HordeConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={
                    "apikey": self.config.api_key,
                    "Client-Agent": self.config.client_agent,
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_payload(self, request: GenerationRequest, models: Sequence[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "params": {
                "width": request.width,
                "height": request.height,
                "steps": request.steps,
                "sampler_name": request.sampler_name,
                "cfg_scale": request.cfg_scale,
                "n": 1,
            },
            "nsfw": self.config.nsfw,
            "censor_nsfw": not self.config.nsfw,
            "r2": True,
        }
        if models:
            payload["models"] = list(models)
        return payload

    async def submit(self, request: GenerationRequest, models: Sequence[str]) -> str:
        """Submit one generation for one model group and return the job id."""
        debug = get_debug_logger()
        payload = self.build_payload(request, models)
        debug.debug_horde_requests(f"POST /generate/async body: {payload}")
        try:
            resp = await self.client.post(
                "/generate/async", json=payload, timeout=self.config.submit_timeout
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Submission failed: {exc!r}") from exc
        debug.debug_horde_responses(f"submit {resp.status_code}: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError:
            data = None

        if _reports_no_worker(data):
            job_id = data.get("id") if isinstance(data, dict) else None
            if job_id:
                await self.cancel(job_id)
            raise NoWorkerAvailable(f"No available worker for models {list(models)}")
        if resp.status_code == 429:
            raise RateLimited(_error_message(resp))
        if resp.status_code in HARD_ERROR_STATUSES:
            raise InvalidRequest(_error_message(resp))
        if resp.status_code >= 400:
            raise UpstreamUnavailable(f"Horde returned {resp.status_code}: {_error_message(resp)}")

        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise UpstreamError("Horde accepted the request without a job id")
        return job_id

    async def status(self, job_id: str) -> JobStatus:
        """Query the status of one job."""
        try:
            resp = await self.client.get(
                f"/generate/status/{job_id}", timeout=self.config.status_timeout
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Status query failed: {exc!r}") from exc
        get_debug_logger().debug_horde_responses(f"status {job_id} {resp.status_code}: {resp.text[:500]}")

        if resp.status_code == 404:
            return Faulted(f"Job {job_id} not found upstream")
        if resp.status_code == 429:
            raise RateLimited(_error_message(resp))
        if resp.status_code >= 400:
            raise UpstreamUnavailable(f"Horde returned {resp.status_code}: {_error_message(resp)}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Horde returned a non-JSON status body") from exc
        return parse_status(data if isinstance(data, dict) else {})

    async def cancel(self, job_id: str) -> None:
        """Best-effort cancellation of an abandoned job."""
        try:
            resp = await self.client.delete(
                f"/generate/status/{job_id}", timeout=self.config.status_timeout
            )
        except httpx.HTTPError as exc:
            logger.warning("Could not cancel job %s: %r", job_id, exc)
            return
        if resp.status_code >= 400:
            logger.warning("Cancelling job %s returned %s", job_id, resp.status_code)
        else:
            logger.info("Cancelled job %s upstream", job_id)
