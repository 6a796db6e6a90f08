"""Single ProviderClient front for all configured providers."""

from __future__ import annotations

from typing import Any

import httpx

from flux_studio.client import HttpProvider, ProviderClient
from flux_studio.flux import FluxProvider
from flux_studio.models import Job, JobStatus, OperationKind
from flux_studio.stability import StabilityProvider


class ProviderRouter(ProviderClient):
    """Routes submissions by kind and status checks by the job's provider.

    Upscales go to Stability, everything else to FLUX.
    """

    name = "router"

    def __init__(
        self,
        flux: FluxProvider,
        stability: StabilityProvider,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.flux = flux
        self.stability = stability
        self._providers: dict[str, HttpProvider] = {flux.name: flux, stability.name: stability}
        self._http = http

    @classmethod
    def from_config(cls, cfg: dict, http: httpx.AsyncClient | None = None) -> "ProviderRouter":
        http = http or httpx.AsyncClient()
        return cls(
            FluxProvider(cfg["bfl_api_key"], cfg["bfl_base_url"], http=http),
            StabilityProvider(cfg["stability_api_key"], cfg["stability_base_url"], http=http),
            http=http,
        )

    def provider_for(self, kind: OperationKind) -> HttpProvider:
        return self.stability if kind is OperationKind.UPSCALE else self.flux

    async def submit(self, kind: OperationKind, payload: dict[str, Any]) -> Job:
        return await self.provider_for(kind).submit(kind, payload)

    async def get_status(self, job: Job) -> JobStatus:
        provider = self._providers.get(job.provider)
        if provider is None:
            raise ValueError(f"Job {job.id} belongs to unknown provider '{job.provider}'")
        return await provider.get_status(job)

    async def download(self, artifact_url: str) -> bytes:
        return await self.flux.download(artifact_url)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
        else:
            await self.flux.aclose()
            await self.stability.aclose()
