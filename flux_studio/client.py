"""
Provider Client Interface
=========================

The three primitives every generative-image provider is driven through:

    submit(kind, payload) -> Job          start a job
    get_status(job)       -> JobStatus    one status query
    download(url)         -> bytes        fetch the finished artifact

Adapters are stateless apart from their pooled ``httpx.AsyncClient`` and never
retry; the retry policy lives in ``flux_studio.poller``.
"""

from __future__ import annotations

import abc
import base64
import binascii
import logging
from typing import Any

import httpx

from flux_studio.config import DOWNLOAD_TIMEOUT
from flux_studio.errors import DownloadError
from flux_studio.models import Job, JobStatus, OperationKind

logger = logging.getLogger(__name__)

# Payload keys that hold image data and must never reach the logs
BINARY_FIELDS = ("input_image", "input_image_2", "image", "mask")


class ProviderClient(abc.ABC):
    """Interface the poller and orchestrator depend on."""

    name = "provider"

    @abc.abstractmethod
    async def submit(self, kind: OperationKind, payload: dict[str, Any]) -> Job:
        ...

    @abc.abstractmethod
    async def get_status(self, job: Job) -> JobStatus:
        ...

    @abc.abstractmethod
    async def download(self, artifact_url: str) -> bytes:
        ...


class HttpProvider(ProviderClient):
    """Shared plumbing for adapters that talk HTTP through httpx."""

    def __init__(self, http: httpx.AsyncClient | None = None) -> None:
        self._http = http or httpx.AsyncClient()
        self._owns_http = http is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def download(self, artifact_url: str) -> bytes:
        if artifact_url.startswith("data:"):
            return decode_data_url(artifact_url)
        try:
            r = await self._http.get(artifact_url, timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)
        except httpx.RequestError as e:
            raise DownloadError(f"Failed to download image: {e}") from e
        if not r.is_success:
            raise DownloadError(
                f"Failed to download image ({r.status_code})",
                details={"status_code": r.status_code, "url": artifact_url},
            )
        return r.content


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def decode_data_url(url: str) -> bytes:
    """Decode a ``data:<mime>;base64,<payload>`` URL."""
    header, _, encoded = url.partition(",")
    if not header.endswith(";base64") or not encoded:
        raise DownloadError("Unsupported data URL, expected base64 payload")
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DownloadError(f"Invalid base64 data URL: {e}") from e


def json_object(r: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body. Raises ValueError for anything else."""
    body = r.json()
    if not isinstance(body, dict):
        raise ValueError(f"expected a JSON object, got {type(body).__name__}")
    return body


def error_message(r: httpx.Response) -> str:
    """Best-effort human readable error from a provider response."""
    try:
        body = r.json()
    except ValueError:
        return r.text[:300] or r.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "detail", "name"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return "; ".join(str(e) for e in errors)
        if isinstance(body.get("error"), dict):
            return body["error"].get("message", r.text[:300])
        if isinstance(body.get("detail"), list):
            return "; ".join(str(d.get("msg", d)) for d in body["detail"])
    return r.text[:300]


def redact(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``payload`` with image fields replaced, safe to log."""
    return {
        k: ("[BASE64_DATA]" if k in BINARY_FIELDS and v else v)
        for k, v in payload.items()
    }
