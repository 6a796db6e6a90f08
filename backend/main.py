"""
Flux Studio Backend
===================
FastAPI backend for generative image operations: text-to-image, editing,
inpainting, outpainting, fusion, style transfer (FLUX) and upscaling
(Stability AI).
"""

import asyncio
import json
import logging
import secrets
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

# Add project root to path so we can import flux_studio
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from flux_studio.artifacts import LocalContentStore
from flux_studio.cleanup import run_periodically
from flux_studio.config import ALLOWED_UPLOAD_TYPES, MAX_UPLOAD_BYTES, get_config
from flux_studio.errors import StudioError
from flux_studio.models import Job, OperationKind, OperationResult
from flux_studio.orchestrator import OperationOrchestrator
from flux_studio.preferences import Preferences
from flux_studio.router import ProviderRouter

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("flux_studio.backend")

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

cfg = get_config()

UPLOADS_DIR = cfg["uploads_dir"]
UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
CONTENT_DIR = cfg["content_dir"]
CONTENT_DIR.mkdir(parents=True, exist_ok=True)

# Failure code -> HTTP status; anything else is a 500
STATUS_CODES = {
    "ValidationError": 400,
    "ContentModerated": 422,
    "ProviderRejected": 502,
    "TransportError": 502,
    "DownloadError": 502,
    "JobFailed": 502,
    "Cancelled": 503,
    "JobTimeout": 504,
}

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    providers = None
    if getattr(app.state, "orchestrator", None) is None:
        providers = ProviderRouter.from_config(cfg)
        app.state.orchestrator = OperationOrchestrator(
            providers,
            LocalContentStore(CONTENT_DIR),
            preferences=Preferences.load(cfg["preferences_path"]),
            max_attempts=cfg["poll_max_attempts"],
            interval_ms=cfg["poll_interval_ms"],
        )
        logger.info(
            "Providers ready (BFL key %s, Stability key %s)",
            "set" if cfg["bfl_api_key"] else "missing",
            "set" if cfg["stability_api_key"] else "missing",
        )

    cleanup = asyncio.create_task(run_periodically([UPLOADS_DIR, CONTENT_DIR], cfg["max_age_days"]))
    logger.info("Cleanup scheduled: files older than %d days", cfg["max_age_days"])
    try:
        yield
    finally:
        cleanup.cancel()
        if providers is not None:
            await providers.aclose()


app = FastAPI(title="Flux Studio API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg["cors_origins"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=str(CONTENT_DIR)), name="uploads")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_orchestrator(request: Request) -> OperationOrchestrator:
    return request.app.state.orchestrator


def parse_options(raw: str | None) -> dict[str, Any]:
    """Decode the ``options`` form field (a JSON object)."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        raise HTTPException(400, "options must be a JSON object")
    if not isinstance(value, dict):
        raise HTTPException(400, "options must be a JSON object")
    return value


async def read_uploads(uploads: list[tuple[str, UploadFile]]) -> tuple[list[bytes], list[Path]]:
    """
    Validate and save uploaded images.

    Every file is checked (type and size) before anything is written, so a
    rejected request leaves nothing in the uploads directory.

    Returns:
        The file contents and the saved paths, in input order.
    """
    contents = []
    for field, upload in uploads:
        if upload.content_type not in ALLOWED_UPLOAD_TYPES:
            raise HTTPException(400, f"{field} must be an image ({', '.join(ALLOWED_UPLOAD_TYPES)})")
        data = await upload.read()
        if not data:
            raise HTTPException(400, f"{field} is empty")
        if len(data) > MAX_UPLOAD_BYTES:
            raise HTTPException(400, f"{field} must be under {MAX_UPLOAD_BYTES // (1024 * 1024)}MB")
        contents.append(data)

    items = [
        (field, Path(upload.filename or "").suffix.lower() or ".png", data)
        for (field, upload), data in zip(uploads, contents)
    ]
    try:
        paths = await asyncio.to_thread(save_uploads, UPLOADS_DIR, items)
    except OSError as e:
        logger.error("Failed to store upload: %s", e)
        raise HTTPException(500, "Failed to store the uploaded images")
    return contents, paths


def save_uploads(directory: Path, items: list[tuple[str, str, bytes]]) -> list[Path]:
    """Write (field, suffix, data) items; on failure remove what was written."""
    paths = []
    try:
        for field, suffix, data in items:
            path = directory / f"{field}-{int(time.time() * 1000)}-{secrets.token_hex(3)}{suffix}"
            paths.append(path)
            path.write_bytes(data)
    except OSError:
        for path in paths:
            path.unlink(missing_ok=True)
        raise
    return paths


def respond(result: OperationResult) -> JSONResponse:
    body = result.to_response()
    if not result.success:
        return JSONResponse(body, status_code=STATUS_CODES.get(result.error_code, 500))
    body["imageUrl"] = f"/uploads/{result.artifact_name}"
    return JSONResponse(body)


async def run(
    request: Request,
    kind: OperationKind,
    prompt: str,
    options: dict[str, Any],
    uploads: list[tuple[str, UploadFile]],
    **roles: str,
) -> JSONResponse:
    """
    Ingest uploads and run one operation.

    Args:
        request: Incoming request; a client disconnect cancels polling.
        kind:    Operation type.
        prompt:  Instruction text.
        options: Provider options.
        uploads: (field name, file) pairs, in order.
        roles:   Field names to pass as ``mask=`` / ``style_reference=``
                 instead of as input images.
    """
    contents, paths = await read_uploads(uploads)
    by_field = {field: data for (field, _), data in zip(uploads, contents)}
    special = {role: by_field[field] for role, field in roles.items() if field in by_field}
    inputs = [data for (field, _), data in zip(uploads, contents) if field not in roles.values()]

    result = await get_orchestrator(request).execute(
        kind,
        inputs,
        prompt,
        options,
        cleanup_paths=paths,
        is_cancelled=request.is_disconnected,
        **special,
    )
    return respond(result)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "providers": {
            "flux": bool(cfg["bfl_api_key"]),
            "stability": bool(cfg["stability_api_key"]),
        },
    }


# ---------------------------------------------------------------------------
# Image operations
# ---------------------------------------------------------------------------

class GenerateRequest(BaseModel):
    prompt: str = ""
    options: dict[str, Any] = Field(default_factory=dict)


@app.post("/api/images/generate")
async def generate(req: GenerateRequest, request: Request):
    result = await get_orchestrator(request).execute(
        OperationKind.GENERATE,
        [],
        req.prompt,
        req.options,
        is_cancelled=request.is_disconnected,
    )
    return respond(result)


@app.post("/api/images/edit")
async def edit(
    request: Request,
    prompt: str = Form(""),
    options: str | None = Form(None),
    image: UploadFile = File(...),
    mask: UploadFile | None = File(None),
):
    uploads = [("image", image)]
    if mask is not None:
        uploads.append(("mask", mask))
    return await run(request, OperationKind.EDIT, prompt, parse_options(options), uploads, mask="mask")


@app.post("/api/images/inpaint")
async def inpaint(
    request: Request,
    prompt: str = Form(""),
    options: str | None = Form(None),
    image: UploadFile = File(...),
    mask: UploadFile = File(...),
):
    uploads = [("image", image), ("mask", mask)]
    return await run(request, OperationKind.EDIT, prompt, parse_options(options), uploads, mask="mask")


@app.post("/api/images/expand")
async def expand(
    request: Request,
    prompt: str = Form(""),
    options: str | None = Form(None),
    image: UploadFile = File(...),
):
    return await run(request, OperationKind.EXPAND, prompt, parse_options(options), [("image", image)])


@app.post("/api/images/fuse")
async def fuse(
    request: Request,
    prompt: str = Form(""),
    options: str | None = Form(None),
    images: list[UploadFile] = File(...),
):
    # Count is checked by the orchestrator (2-4)
    uploads = [(f"image{i}", upload) for i, upload in enumerate(images, 1)]
    return await run(request, OperationKind.FUSE, prompt, parse_options(options), uploads)


@app.post("/api/images/style-transfer")
async def style_transfer(
    request: Request,
    prompt: str = Form(""),
    options: str | None = Form(None),
    image: UploadFile = File(...),
    style_image: UploadFile | None = File(None),
):
    uploads = [("image", image)]
    if style_image is not None:
        uploads.append(("style", style_image))
    return await run(
        request, OperationKind.STYLE_TRANSFER, prompt, parse_options(options), uploads,
        style_reference="style",
    )


@app.post("/api/images/upscale")
async def upscale(
    request: Request,
    prompt: str = Form(""),
    options: str | None = Form(None),
    upscale_type: str | None = Form(None),
    image: UploadFile = File(...),
):
    opts = parse_options(options)
    if upscale_type:
        opts = {"mode": upscale_type, **opts}
    return await run(request, OperationKind.UPSCALE, prompt, opts, [("image", image)])


@app.get("/api/images/status/{request_id}")
async def image_status(request_id: str, request: Request):
    """One status check of a FLUX request, for clients that poll themselves."""
    job = Job(id=request_id, kind=OperationKind.GENERATE, provider="flux")
    try:
        status = await get_orchestrator(request).client.get_status(job)
    except StudioError as e:
        raise HTTPException(STATUS_CODES.get(e.code, 500), e.message)
    return {
        "id": request_id,
        "state": status.state.value,
        "artifactUrl": status.artifact_url,
        "raw": status.raw,
    }


# ---------------------------------------------------------------------------
# Settings (per-kind form defaults)
# ---------------------------------------------------------------------------

@app.get("/api/settings")
async def get_settings(request: Request):
    return get_orchestrator(request).preferences.as_dict()


@app.put("/api/settings/{kind}")
async def update_settings(kind: OperationKind, options: dict[str, Any], request: Request):
    try:
        saved = get_orchestrator(request).preferences.update(kind, options)
    except StudioError as e:
        raise HTTPException(400, e.message)
    return {"kind": kind.value, "options": saved}


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

@app.get("/api/account/stability")
async def stability_account(request: Request):
    stability = getattr(get_orchestrator(request).client, "stability", None)
    if stability is None:
        raise HTTPException(503, "Stability AI is not configured")
    try:
        return await stability.account_info()
    except StudioError as e:
        raise HTTPException(STATUS_CODES.get(e.code, 500), e.message)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
