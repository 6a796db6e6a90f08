"""
Artifact Retrieval
==================

Fetches the image behind a Ready JobStatus and persists it to a content store.

Files are named ``<kind>-<epoch ms>-<random>.<ext>`` in one flat directory, so
concurrent writers never collide and no locking is needed. A write goes to a
temporary name first and is renamed into place: a failed retrieval leaves no
file behind.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import os
import secrets
import time
from pathlib import Path

from flux_studio.client import ProviderClient
from flux_studio.errors import DecodeError, PersistError
from flux_studio.imaging import inspect_image
from flux_studio.models import JobState, JobStatus, OperationKind, StoredArtifact

logger = logging.getLogger(__name__)


def artifact_name(kind: OperationKind, extension: str) -> str:
    stamp = int(time.time() * 1000)
    return f"{kind.value.replace('_', '-')}-{stamp}-{secrets.token_hex(3)}.{extension}"


class ContentStore(abc.ABC):
    """Where finished artifacts live. Local disk here; any blob store fits."""

    @abc.abstractmethod
    def write(self, name: str, data: bytes) -> Path:
        ...

    @abc.abstractmethod
    def delete(self, name: str) -> None:
        ...


class LocalContentStore(ContentStore):
    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.root / name

    def write(self, name: str, data: bytes) -> Path:
        target = self.path_for(name)
        partial = target.with_name(f".{name}.part")
        try:
            partial.write_bytes(data)
            os.replace(partial, target)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise PersistError(f"Failed to save image {name}: {e}") from e
        return target

    def delete(self, name: str) -> None:
        self.path_for(name).unlink(missing_ok=True)


class ArtifactRetriever:
    def __init__(self, client: ProviderClient, store: ContentStore) -> None:
        self.client = client
        self.store = store

    async def retrieve(self, status: JobStatus, kind: OperationKind) -> StoredArtifact:
        """
        Download, verify and persist the artifact of a Ready job.

        Raises:
            DownloadError: The provider URL could not be fetched.
            DecodeError:   The bytes are not a decodable image.
            PersistError:  Writing to the content store failed.
        """
        if status.state is not JobState.READY:
            raise ValueError(f"Cannot retrieve an artifact from a {status.state.value} status")

        url = status.artifact_url
        data = await self.client.download(url)

        try:
            info = await asyncio.to_thread(inspect_image, data)
        except ValueError as e:
            raise DecodeError(f"Provider returned an unreadable image: {e}") from e

        name = artifact_name(kind, info.extension)
        path = await asyncio.to_thread(self.store.write, name, data)
        try:
            size = path.stat().st_size
        except OSError as e:
            self.store.delete(name)
            raise PersistError(f"Saved image {name} could not be read back: {e}") from e

        logger.info("Saved %s artifact %s (%dx%d, %d bytes)", kind.value, name, info.width, info.height, size)
        return StoredArtifact(
            path=path,
            name=name,
            size_bytes=size,
            width=info.width,
            height=info.height,
            format=info.format,
            source_url=url if not url.startswith("data:") else "data:inline",
        )
