"""
Configuration
=============

Reads provider credentials and runtime settings from the first
``settings.json`` found (its ``env`` block) and lets environment variables
override every value.

Environment variables:
    BFL_API_KEY             - Black Forest Labs key (generate/edit/expand/fuse/style)
    BFL_API_BASE_URL        - defaults to https://api.bfl.ai
    STABILITY_API_KEY       - Stability AI key (upscale)
    STABILITY_API_BASE_URL  - defaults to https://api.stability.ai
    FLUX_STUDIO_DATA_DIR    - root for uploads/ and generated/
    UPLOAD_MAX_AGE_DAYS     - age after which stored files are swept (7)
    POLL_MAX_ATTEMPTS       - status checks per job (60)
    POLL_INTERVAL_MS        - wait between status checks (2000)
    CLIENT_URL              - extra CORS origin for the browser UI

The configuration is loaded once per process and cached; call
``reset_config()`` after changing the environment (tests do).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ---------------------------------------------------------------------------
# Settings discovery
# ---------------------------------------------------------------------------

SETTINGS_PATHS = [
    PROJECT_ROOT / "backend" / "settings.json",
    PROJECT_ROOT / "settings.json",
]

DEFAULTS = {
    "BFL_API_KEY": "",
    "BFL_API_BASE_URL": "https://api.bfl.ai",
    "STABILITY_API_KEY": "",
    "STABILITY_API_BASE_URL": "https://api.stability.ai",
    "FLUX_STUDIO_DATA_DIR": str(PROJECT_ROOT / "data"),
    "UPLOAD_MAX_AGE_DAYS": "7",
    "POLL_MAX_ATTEMPTS": "60",
    "POLL_INTERVAL_MS": "2000",
    "CLIENT_URL": "",
}

# Per-call HTTP timeouts (seconds), independent of the poll budget
SUBMIT_TIMEOUT = 30.0
STATUS_TIMEOUT = 15.0
DOWNLOAD_TIMEOUT = 60.0
UPSCALE_TIMEOUT = 120.0
FAST_UPSCALE_TIMEOUT = 60.0

# Upload limits
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_UPLOAD_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")

_config_cache: dict | None = None


def _load_settings() -> dict:
    """Load the ``env`` block of the first available settings file."""
    for path in SETTINGS_PATHS:
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            env = data.get("env", {})
            logger.info("Loaded settings from %s", path)
            return {k: str(v) for k, v in env.items()} | {"_source": str(path)}
    return {}


def get_config() -> dict:
    """
    Get the runtime configuration.

    Returns a dict with typed values:
        bfl_api_key, bfl_base_url, stability_api_key, stability_base_url,
        data_dir, uploads_dir, content_dir, preferences_path,
        max_age_days, poll_max_attempts, poll_interval_ms, cors_origins, source
    """
    global _config_cache
    if _config_cache is None:
        settings = _load_settings()

        def value(key: str) -> str:
            return os.environ.get(key, settings.get(key, DEFAULTS[key]))

        data_dir = Path(value("FLUX_STUDIO_DATA_DIR"))
        origins = [
            "http://localhost:5173",
            "http://localhost:5174",
            "http://127.0.0.1:5173",
        ]
        if value("CLIENT_URL"):
            origins.append(value("CLIENT_URL"))

        _config_cache = {
            "bfl_api_key": value("BFL_API_KEY"),
            "bfl_base_url": value("BFL_API_BASE_URL").rstrip("/"),
            "stability_api_key": value("STABILITY_API_KEY"),
            "stability_base_url": value("STABILITY_API_BASE_URL").rstrip("/"),
            "data_dir": data_dir,
            "uploads_dir": data_dir / "uploads",
            "content_dir": data_dir / "generated",
            "preferences_path": data_dir / "preferences.json",
            "max_age_days": int(value("UPLOAD_MAX_AGE_DAYS")),
            "poll_max_attempts": int(value("POLL_MAX_ATTEMPTS")),
            "poll_interval_ms": int(value("POLL_INTERVAL_MS")),
            "cors_origins": origins,
            "source": settings.get("_source", "env"),
        }
    return _config_cache


def reset_config() -> None:
    global _config_cache
    _config_cache = None


# ---------------------------------------------------------------------------
# Quick self-test
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cfg = get_config()
    print(f"Source:     {cfg['source']}")
    print(f"BFL:        {cfg['bfl_base_url']} (key {'set' if cfg['bfl_api_key'] else 'missing'})")
    print(f"Stability:  {cfg['stability_base_url']} (key {'set' if cfg['stability_api_key'] else 'missing'})")
    print(f"Data dir:   {cfg['data_dir']}")
    print(f"Polling:    {cfg['poll_max_attempts']} x {cfg['poll_interval_ms']}ms")
