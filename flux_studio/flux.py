"""
Black Forest Labs (FLUX) Adapter
================================

Drives the BFL asynchronous API for every operation except upscaling.

Endpoints:
    /v1/flux-kontext-max, /v1/flux-kontext-pro   generate, edit, fuse, style transfer
    /v1/flux-pro-1.0-fill                        edit with a mask (inpainting)
    /v1/flux-pro-1.0-expand                      outpainting
    /v1/get_result?id=<id>                       status, unless the submission
                                                 returned a ``polling_url``

Workflow:
    1. POST the JSON payload -> {"id": ..., "polling_url": ...}
    2. GET the polling URL until status is terminal
    3. GET ``result.sample`` for the image bytes

Usage:
    async with httpx.AsyncClient() as http:
        flux = FluxProvider(api_key, http=http)
        job = await flux.submit(OperationKind.GENERATE, {"prompt": "a red apple"})
        status = await flux.get_status(job)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from flux_studio.client import HttpProvider, error_message, json_object, redact
from flux_studio.config import STATUS_TIMEOUT, SUBMIT_TIMEOUT
from flux_studio.errors import AuthError, ProviderRejected, TransportError
from flux_studio.models import Job, JobState, JobStatus, OperationKind

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "flux-kontext-max"
MODELS = ("flux-kontext-max", "flux-kontext-pro")

FILL_ENDPOINT = "flux-pro-1.0-fill"
EXPAND_ENDPOINT = "flux-pro-1.0-expand"

# Provider status vocabulary -> JobState. Anything else is still running.
STATUS_MAP = {
    "Ready": JobState.READY,
    "Failed": JobState.FAILED,
    "Error": JobState.FAILED,
    "Request Moderated": JobState.MODERATED_REQUEST,
    "Content Moderated": JobState.MODERATED_CONTENT,
}


def map_status(status: str | None) -> JobState:
    return STATUS_MAP.get(status or "", JobState.PENDING)


def parse_status(body: dict[str, Any]) -> JobStatus:
    """Turn a get_result body into a JobStatus, keeping the Ready invariant."""
    state = map_status(body.get("status"))
    if state is JobState.READY:
        result = body.get("result")
        sample = result.get("sample") if isinstance(result, dict) else None
        if not sample:
            logger.warning("Result reported Ready without a sample URL: %s", body)
            return JobStatus(state=JobState.FAILED, raw=body)
        return JobStatus(state=state, artifact_url=sample, raw=body)
    return JobStatus(state=state, raw=body)


class FluxProvider(HttpProvider):
    name = "flux"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.bfl.ai",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "x-key": self.api_key,
            "Content-Type": "application/json",
        }

    def endpoint_for(self, kind: OperationKind, payload: dict[str, Any]) -> str:
        """Pick the endpoint path for this kind; Kontext kinds name the model."""
        if kind is OperationKind.EXPAND:
            return EXPAND_ENDPOINT
        if kind is OperationKind.EDIT and payload.get("mask"):
            return FILL_ENDPOINT
        if kind is OperationKind.UPSCALE:
            raise ValueError("FLUX does not serve upscale requests")
        model = payload.get("model") or DEFAULT_MODEL
        if model not in MODELS:
            raise ValueError(f"Unknown FLUX model '{model}'. Must be one of: {MODELS}")
        return model

    async def submit(self, kind: OperationKind, payload: dict[str, Any]) -> Job:
        if not self.api_key:
            raise AuthError("BFL_API_KEY is required")

        endpoint = self.endpoint_for(kind, payload)
        body = {k: v for k, v in payload.items() if k != "model"}
        logger.info("Submitting %s to /v1/%s: %s", kind.value, endpoint, redact(body))

        try:
            r = await self._http.post(
                f"{self.base_url}/v1/{endpoint}",
                json=body,
                headers=self._headers(),
                timeout=SUBMIT_TIMEOUT,
            )
        except httpx.RequestError as e:
            raise TransportError(f"Failed to reach FLUX API: {e}") from e

        if r.status_code == 401:
            raise AuthError(f"FLUX API rejected the credential: {error_message(r)}")
        if not r.is_success:
            raise ProviderRejected(
                f"FLUX request failed ({r.status_code}): {error_message(r)}",
                status_code=r.status_code,
            )

        try:
            data = json_object(r)
        except ValueError as e:
            raise ProviderRejected(f"Unreadable FLUX response: {e}", status_code=r.status_code) from e
        request_id = data.get("id")
        if not request_id:
            raise ProviderRejected(f"No request ID in FLUX response: {data}")

        logger.info("FLUX accepted %s request %s", kind.value, request_id)
        return Job(
            id=request_id,
            kind=kind,
            provider=self.name,
            polling_endpoint=data.get("polling_url"),
        )

    async def get_status(self, job: Job) -> JobStatus:
        if job.polling_endpoint:
            url, params = job.polling_endpoint, None
        else:
            url, params = f"{self.base_url}/v1/get_result", {"id": job.id}

        try:
            r = await self._http.get(url, params=params, headers=self._headers(), timeout=STATUS_TIMEOUT)
        except httpx.RequestError as e:
            raise TransportError(f"Failed to get result for {job.id}: {e}") from e

        if r.status_code == 429 or r.status_code >= 500:
            raise TransportError(f"Status check failed ({r.status_code}): {error_message(r)}")
        if not r.is_success:
            return JobStatus(
                state=JobState.FAILED,
                raw={"status_code": r.status_code, "message": error_message(r)},
            )
        try:
            body = json_object(r)
        except ValueError as e:
            raise TransportError(f"Unreadable status response for {job.id}: {e}") from e
        return parse_status(body)
