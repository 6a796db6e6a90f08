"""
Stability AI Upscaler Adapter
=============================

Three upscale modes, each with its own endpoint:
    - conservative  (/v2beta/stable-image/upscale/conservative) answers synchronously
    - creative      (/v2beta/stable-image/upscale/creative) asynchronous, poll
                    /v2beta/results/<id>
    - fast          (/v2beta/stable-image/upscale/fast) answers synchronously

Synchronous answers are wrapped in a Job whose ``inline_status`` is already
terminal, so the poller treats every mode alike. The finished image travels
as a ``data:`` URL which ``download`` decodes locally.

Requests are multipart: the image plus string form fields (prompt,
negative_prompt, seed, creativity, output_format).
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from flux_studio.client import HttpProvider, error_message, json_object
from flux_studio.config import FAST_UPSCALE_TIMEOUT, STATUS_TIMEOUT, UPSCALE_TIMEOUT
from flux_studio.errors import AuthError, ProviderRejected, TransportError
from flux_studio.models import Job, JobState, JobStatus, OperationKind

logger = logging.getLogger(__name__)

UPSCALE_MODES = ("conservative", "creative", "fast")

# Form fields forwarded when present (the image goes in as a file)
FORM_FIELDS = ("prompt", "negative_prompt", "seed", "creativity", "output_format")


def result_status(body: dict[str, Any], output_format: str = "png") -> JobStatus:
    """Map a finished Stability JSON body to a terminal JobStatus."""
    reason = body.get("finish_reason", "SUCCESS")
    raw = {k: v for k, v in body.items() if k != "image"}
    if reason == "CONTENT_FILTERED":
        return JobStatus(state=JobState.MODERATED_CONTENT, raw=raw)
    image = body.get("image")
    if reason != "SUCCESS" or not image:
        return JobStatus(state=JobState.FAILED, raw=raw)
    return JobStatus(
        state=JobState.READY,
        artifact_url=f"data:image/{output_format};base64,{image}",
        raw=raw,
    )


class StabilityProvider(HttpProvider):
    name = "stability"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stability.ai",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    def _check_api_key(self) -> None:
        if not self.api_key:
            raise AuthError("Stability AI API key not configured")

    async def submit(self, kind: OperationKind, payload: dict[str, Any]) -> Job:
        self._check_api_key()
        if kind is not OperationKind.UPSCALE:
            raise ValueError(f"Stability adapter only serves upscale requests, got {kind.value}")

        mode = payload.get("mode", "conservative")
        if mode not in UPSCALE_MODES:
            raise ValueError(f"Invalid upscale mode '{mode}'. Must be one of: {UPSCALE_MODES}")

        files = {"image": ("image.png", payload["image"], "image/png")}
        data = {k: str(payload[k]) for k in FORM_FIELDS if payload.get(k) is not None}
        timeout = FAST_UPSCALE_TIMEOUT if mode == "fast" else UPSCALE_TIMEOUT

        logger.info("Starting %s upscale: %s", mode, data)
        try:
            r = await self._http.post(
                f"{self.base_url}/v2beta/stable-image/upscale/{mode}",
                headers=self._headers(),
                files=files,
                data=data,
                timeout=timeout,
            )
        except httpx.RequestError as e:
            raise TransportError(f"Failed to reach Stability API: {e}") from e

        if r.status_code == 401:
            raise AuthError(f"Stability API rejected the credential: {error_message(r)}")
        if not r.is_success:
            raise ProviderRejected(
                f"Failed to upscale image ({r.status_code}): {error_message(r)}",
                status_code=r.status_code,
            )

        try:
            body = json_object(r)
        except ValueError as e:
            raise ProviderRejected(f"Unreadable Stability response: {e}", status_code=r.status_code) from e
        if mode == "creative":
            generation_id = body.get("id")
            if not generation_id:
                raise ProviderRejected(f"No generation ID in Stability response: {body}")
            logger.info("Creative upscale accepted as %s", generation_id)
            return Job(
                id=generation_id,
                kind=kind,
                provider=self.name,
                polling_endpoint=f"{self.base_url}/v2beta/results/{generation_id}",
            )

        logger.info("%s upscale completed (%s)", mode.capitalize(), body.get("finish_reason"))
        return Job(
            id=f"{mode}-{uuid.uuid4().hex[:12]}",
            kind=kind,
            provider=self.name,
            inline_status=result_status(body, data.get("output_format", "png")),
        )

    async def get_status(self, job: Job) -> JobStatus:
        if job.inline_status is not None:
            return job.inline_status

        url = job.polling_endpoint or f"{self.base_url}/v2beta/results/{job.id}"
        try:
            r = await self._http.get(url, headers=self._headers(), timeout=STATUS_TIMEOUT)
        except httpx.RequestError as e:
            raise TransportError(f"Failed to get upscale result for {job.id}: {e}") from e

        if r.status_code == 202:
            try:
                raw = json_object(r)
            except ValueError:
                raw = {}
            return JobStatus(state=JobState.PENDING, raw=raw)
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
            raise TransportError(f"Unreadable upscale result for {job.id}: {e}") from e
        return result_status(body)

    async def account_info(self) -> dict[str, Any]:
        """Account details and remaining credits."""
        self._check_api_key()
        try:
            r = await self._http.get(
                f"{self.base_url}/v1/user/account",
                headers=self._headers(),
                timeout=STATUS_TIMEOUT,
            )
        except httpx.RequestError as e:
            raise TransportError(f"Failed to get account info: {e}") from e
        if not r.is_success:
            raise ProviderRejected(
                f"Failed to get account info ({r.status_code}): {error_message(r)}",
                status_code=r.status_code,
            )
        try:
            return json_object(r)
        except ValueError as e:
            raise ProviderRejected(f"Unreadable account response: {e}", status_code=r.status_code) from e
