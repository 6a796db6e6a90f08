"""Value objects shared by the provider adapters, poller and orchestrator."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class OperationKind(str, Enum):
    GENERATE = "generate"
    EDIT = "edit"
    EXPAND = "expand"
    FUSE = "fuse"
    STYLE_TRANSFER = "style_transfer"
    UPSCALE = "upscale"


class JobState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    MODERATED_REQUEST = "moderated_request"
    MODERATED_CONTENT = "moderated_content"
    UNKNOWN = "unknown"


TERMINAL_STATES = frozenset({
    JobState.READY,
    JobState.FAILED,
    JobState.MODERATED_REQUEST,
    JobState.MODERATED_CONTENT,
})


class JobStatus(BaseModel):
    """Result of one status query. ``artifact_url`` is set iff the job is ready."""

    model_config = ConfigDict(frozen=True)

    state: JobState
    artifact_url: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_artifact_url(self) -> "JobStatus":
        if (self.state is JobState.READY) != bool(self.artifact_url):
            raise ValueError("artifact_url must be set if and only if state is ready")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class Job(BaseModel):
    """One outstanding unit of work at a provider.

    ``provider`` names the adapter that created the job so status checks go
    back to it. ``inline_status`` is filled when the provider answered the
    submission synchronously; polling then needs no network round trip.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: OperationKind
    provider: str = "flux"
    polling_endpoint: str | None = None
    inline_status: JobStatus | None = None


class OperationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OperationKind
    prompt_text: str = ""
    input_images: tuple[bytes, ...] = ()
    mask: bytes | None = None
    style_reference: bytes | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class StoredArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    size_bytes: int
    width: int
    height: int
    format: str
    source_url: str


class OperationResult(BaseModel):
    """Uniform outbound shape, serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    kind: OperationKind | None = None
    artifact_path: str | None = None
    artifact_name: str | None = None
    artifact_source_url: str | None = None
    job_id: str | None = None
    width: int | None = None
    height: int | None = None
    size_bytes: int | None = None
    scale: float | None = None
    error_code: str | None = None
    message: str | None = None
    category: str | None = None

    @classmethod
    def succeeded(
        cls,
        kind: OperationKind,
        job: Job,
        artifact: StoredArtifact,
        scale: float | None = None,
    ) -> "OperationResult":
        return cls(
            success=True,
            kind=kind,
            artifact_path=str(artifact.path),
            artifact_name=artifact.name,
            artifact_source_url=artifact.source_url,
            job_id=job.id,
            width=artifact.width,
            height=artifact.height,
            size_bytes=artifact.size_bytes,
            scale=scale,
        )

    @classmethod
    def failed(cls, kind: OperationKind, error) -> "OperationResult":
        return cls(
            success=False,
            kind=kind,
            error_code=error.code,
            message=error.message,
            category=error.category,
        )

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
