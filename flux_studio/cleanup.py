"""
Storage Cleanup
===============

Deletes uploads and generated images older than ``UPLOAD_MAX_AGE_DAYS``.
The backend runs one sweep at startup and then one every 24 hours.

Usage:
    removed = sweep([uploads_dir, content_dir], max_age_days=7)

    task = asyncio.create_task(run_periodically([uploads_dir], 7))
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 24 * 60 * 60


def sweep(directories: Iterable[Path], max_age_days: int, now: float | None = None) -> list[Path]:
    """
    Remove files whose modification time is older than the cutoff.

    Args:
        directories:  Flat directories to scan (missing ones are skipped).
        max_age_days: Age limit in days.
        now:          Reference time (epoch seconds), defaults to the clock.

    Returns:
        The paths that were removed.
    """
    cutoff = (now if now is not None else time.time()) - max_age_days * 24 * 60 * 60
    removed = []
    for directory in directories:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        for path in directory.iterdir():
            try:
                if not path.is_file() or path.stat().st_mtime >= cutoff:
                    continue
                path.unlink()
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
                continue
            removed.append(path)

    if removed:
        logger.info("Cleanup removed %d file(s) older than %d days", len(removed), max_age_days)
    return removed


async def run_periodically(
    directories: Iterable[Path],
    max_age_days: int,
    interval: float = SWEEP_INTERVAL,
) -> None:
    """Sweep now and then every ``interval`` seconds until cancelled."""
    directories = list(directories)
    while True:
        await asyncio.to_thread(sweep, directories, max_age_days)
        await asyncio.sleep(interval)
