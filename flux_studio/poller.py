"""
Job Polling
===========

Drives a submitted Job to a terminal status with a fixed interval and an
attempt budget (60 x 2s by default, so two minutes worst case).

    ready                                  -> returned
    failed                                 -> JobFailed
    moderated_request / moderated_content  -> ContentModerated
    pending / unknown                      -> wait and poll again
    budget exhausted                       -> JobTimeout

Transport errors while checking status are retried within the same budget;
on the last attempt they propagate.

Usage:
    poller = JobPoller(client)
    status = await poller.poll(job)                      # defaults
    status = await poller.poll(job, max_attempts=10, interval_ms=500)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from flux_studio.client import ProviderClient
from flux_studio.errors import ContentModerated, JobFailed, JobTimeout, OperationCancelled, TransportError
from flux_studio.models import Job, JobState, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_INTERVAL_MS = 2000

CancelCheck = Callable[[], Awaitable[bool]]


class JobPoller:
    def __init__(
        self,
        client: ProviderClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self._sleep = sleep

    async def poll(
        self,
        job: Job,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        is_cancelled: CancelCheck | None = None,
    ) -> JobStatus:
        """
        Poll until ``job`` reaches a terminal state.

        Args:
            job:          The submitted job.
            max_attempts: Maximum number of status checks.
            interval_ms:  Wait between checks, in milliseconds.
            is_cancelled: Optional async predicate checked before every
                          attempt; when it returns True polling stops.

        Returns:
            The Ready JobStatus.

        Raises:
            JobFailed, ContentModerated, JobTimeout, OperationCancelled, or the
            TransportError of the final attempt.
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")

        interval = interval_ms / 1000
        attempt = 0

        while attempt < max_attempts:
            if is_cancelled is not None and await is_cancelled():
                logger.info("Polling for %s cancelled after %d attempts", job.id, attempt)
                raise OperationCancelled(f"Request {job.id} was cancelled by the caller")

            last_attempt = attempt == max_attempts - 1
            try:
                status = await self.client.get_status(job)
            except TransportError as e:
                if last_attempt:
                    raise
                logger.warning(
                    "Status check %d/%d for %s failed, retrying: %s",
                    attempt + 1, max_attempts, job.id, e,
                )
                await self._sleep(interval)
                attempt += 1
                continue

            logger.debug("Status: %s (attempt %d) for %s", status.state.value, attempt + 1, job.id)

            if status.state is JobState.READY:
                logger.info("%s job %s ready after %d attempts", job.kind.value, job.id, attempt + 1)
                return status
            if status.state is JobState.FAILED:
                raise JobFailed(
                    f"Request failed with status: {status.raw.get('status', 'Failed')}",
                    details=status.raw,
                )
            if status.state in (JobState.MODERATED_REQUEST, JobState.MODERATED_CONTENT):
                logger.info("%s job %s rejected by moderation (%s)", job.kind.value, job.id, status.state.value)
                raise ContentModerated(details={"state": status.state.value, **status.raw})

            if not last_attempt:
                await self._sleep(interval)
            attempt += 1

        raise JobTimeout(
            f"Request {job.id} timed out after {max_attempts} attempts "
            f"({max_attempts * interval_ms / 1000:.0f}s)"
        )
