"""
Operation Orchestrator
======================

Runs one user operation end to end:

    validate -> build payload -> submit -> poll -> retrieve -> OperationResult

Validation happens before any network call. Every error, expected or not, is
turned into a failure OperationResult; uploaded temp inputs are removed when
the request finishes either way.

Usage:
    orchestrator = OperationOrchestrator(client, LocalContentStore(content_dir))
    result = await orchestrator.execute(
        OperationKind.GENERATE, [], "a red apple", {"aspectRatio": "1:1"},
    )
    if result.success:
        print(result.artifact_path)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

from pydantic.alias_generators import to_snake

from flux_studio.artifacts import ArtifactRetriever, ContentStore
from flux_studio.client import ProviderClient
from flux_studio.errors import (
    POST_READY_HINT,
    DecodeError,
    DownloadError,
    InternalError,
    PersistError,
    StudioError,
)
from flux_studio.models import OperationKind, OperationRequest, OperationResult
from flux_studio.operations import prepare
from flux_studio.poller import DEFAULT_INTERVAL_MS, DEFAULT_MAX_ATTEMPTS, CancelCheck, JobPoller
from flux_studio.preferences import Preferences

logger = logging.getLogger(__name__)


class OperationOrchestrator:
    def __init__(
        self,
        client: ProviderClient,
        store: ContentStore,
        *,
        poller: JobPoller | None = None,
        preferences: Preferences | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        self.client = client
        self.poller = poller or JobPoller(client)
        self.retriever = ArtifactRetriever(client, store)
        self.preferences = preferences or Preferences()
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms

    def _merge_options(self, kind: OperationKind, options: dict[str, Any] | None) -> dict[str, Any]:
        merged = {to_snake(k): v for k, v in self.preferences.options_for(kind).items()}
        merged.update({to_snake(k): v for k, v in (options or {}).items()})
        return merged

    async def execute(
        self,
        kind: OperationKind,
        input_images: Sequence[bytes],
        prompt_text: str = "",
        options: dict[str, Any] | None = None,
        *,
        mask: bytes | None = None,
        style_reference: bytes | None = None,
        cleanup_paths: Iterable[Path | str] = (),
        is_cancelled: CancelCheck | None = None,
    ) -> OperationResult:
        """
        Run one operation and describe the outcome.

        Args:
            kind:            Operation type.
            input_images:    Encoded input images (count depends on kind).
            prompt_text:     Instruction text; optional for upscale and for
                             style transfer with a reference image or preset.
            options:         Provider options (camelCase or snake_case keys).
            mask:            Edit only. White areas are regenerated.
            style_reference: Style transfer only. Image whose style is copied.
            cleanup_paths:   Temp upload files to delete once finished.
            is_cancelled:    Async predicate checked while polling.

        Returns:
            An OperationResult; failures carry the taxonomy code.
        """
        try:
            request = OperationRequest(
                kind=kind,
                prompt_text=prompt_text or "",
                input_images=tuple(input_images),
                mask=mask,
                style_reference=style_reference,
                options=self._merge_options(kind, options),
            )
            return await self._run(request, is_cancelled)
        except StudioError as e:
            logger.warning("%s failed [%s]: %s", kind.value, e.code, e.message)
            return OperationResult.failed(kind, e)
        except Exception as e:
            logger.exception("%s failed unexpectedly", kind.value)
            return OperationResult.failed(kind, InternalError(f"Unexpected error: {e}"))
        finally:
            _remove_files(cleanup_paths)

    async def _run(self, request: OperationRequest, is_cancelled: CancelCheck | None) -> OperationResult:
        # Decoding, stitching and base64 encoding are CPU bound
        prepared = await asyncio.to_thread(prepare, request)

        job = await self.client.submit(request.kind, prepared.payload)
        logger.info("Submitted %s job %s", request.kind.value, job.id)

        status = await self.poller.poll(
            job,
            max_attempts=self.max_attempts,
            interval_ms=self.interval_ms,
            is_cancelled=is_cancelled,
        )
        try:
            artifact = await self.retriever.retrieve(status, request.kind)
        except (DownloadError, DecodeError, PersistError) as e:
            e.message = f"{POST_READY_HINT} ({e.message})"
            raise

        scale = None
        if request.kind is OperationKind.UPSCALE and prepared.inputs:
            scale = round(artifact.width / prepared.inputs[0].width, 2)

        return OperationResult.succeeded(request.kind, job, artifact, scale=scale)


def _remove_files(paths: Iterable[Path | str]) -> None:
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove temp file %s: %s", path, e)
