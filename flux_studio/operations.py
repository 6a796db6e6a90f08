"""
Operation Table
===============

One entry per OperationKind describing its input contract (image count,
whether a prompt is required, legal options) and how to turn a validated
request into the provider payload.

    prepare(request) -> PreparedOperation    validate + build, no network I/O

Options arrive as a loose dict from the UI (camelCase or snake_case keys) and
are validated with the pydantic model of the kind. Any violation raises
``ValidationError`` before anything is submitted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal, get_args

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from flux_studio.errors import ValidationError
from flux_studio.imaging import (
    ImageInfo,
    check_mask,
    derive_aspect_ratio,
    inspect_image,
    normalise_mask,
    stitch_images,
    to_base64,
)
from flux_studio.models import OperationKind, OperationRequest

AspectRatio = Literal["1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3", "7:3", "3:7"]
ASPECT_RATIOS = get_args(AspectRatio)

MAX_PROMPT_LENGTH = 2000

# ---------------------------------------------------------------------------
# Style presets
# ---------------------------------------------------------------------------

STYLE_PRESETS = {
    "oil-painting": "oil painting style with thick brushstrokes, rich textures, and artistic depth",
    "watercolor": "watercolor painting style with soft flowing colors, transparent washes, and paper texture",
    "sketch": "pencil sketch style with detailed graphite lines, cross-hatching, and natural paper texture",
    "anime": "anime art style with vibrant colors, clean lines, and manga-inspired aesthetics",
    "impressionist": "impressionist painting style with soft brushstrokes, light effects, and atmospheric quality",
    "abstract": "abstract art style with geometric shapes, bold colors, and modern artistic interpretation",
    "van-gogh": "Van Gogh painting style with swirling brushstrokes, expressive colors, and post-impressionist technique",
    "picasso": "Picasso cubist style with geometric faces, fragmented forms, and modernist approach",
    "photorealistic": "photorealistic style with high detail, natural lighting, and lifelike appearance",
    "cartoon": "cartoon style with bold outlines, bright colors, and simplified forms",
    "vintage-poster": "vintage poster style with retro colors, bold typography, and classic design elements",
    "sci-fi": "futuristic sci-fi style with neon colors, digital effects, and cyberpunk aesthetics",
}

STYLE_REFERENCE_INSTRUCTION = (
    "Redraw the first image in the artistic style of the second image: match its "
    "color palette, brushwork, texture and mood while keeping the composition "
    "and subject of the first image."
)

# Upscale defaults per mode
UPSCALE_PROMPTS = {
    "conservative": "high quality, detailed, sharp",
    "creative": "enhance image quality, add details, improve sharpness",
}
UPSCALE_CREATIVITY = {"conservative": 0.35, "creative": 0.3}


# ---------------------------------------------------------------------------
# Option models
# ---------------------------------------------------------------------------

class _Options(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    output_format: Literal["jpeg", "png"] = "jpeg"
    seed: int | None = None

    @field_validator("seed", mode="before")
    @classmethod
    def _blank_seed(cls, v: Any) -> Any:
        # Form inputs send "" for "random"
        return None if v == "" else v


class FluxOptions(_Options):
    safety_tolerance: int = Field(default=2, ge=0, le=2)
    model: Literal["flux-kontext-max", "flux-kontext-pro"] = "flux-kontext-max"
    webhook_url: str | None = None
    webhook_secret: str | None = None


class GenerateOptions(FluxOptions):
    aspect_ratio: AspectRatio = "1:1"
    prompt_upsampling: bool = False


class EditOptions(FluxOptions):
    aspect_ratio: AspectRatio | None = None
    # Inpainting (mask) only
    steps: int = Field(default=50, ge=15, le=50)
    guidance: float = Field(default=60.0, ge=1.5, le=100.0)


class ExpandOptions(FluxOptions):
    top: int = Field(default=0, ge=0)
    bottom: int = Field(default=0, ge=0)
    left: int = Field(default=0, ge=0)
    right: int = Field(default=0, ge=0)
    steps: int = Field(default=50, ge=15, le=50)
    guidance: float = Field(default=50.75, ge=1.5, le=100.0)
    prompt_upsampling: bool = False


class FuseOptions(FluxOptions):
    aspect_ratio: AspectRatio = "1:1"
    layout: Literal["horizontal", "vertical", "grid"] = "horizontal"
    border_width: int = Field(default=20, ge=0, le=200)


class StyleTransferOptions(FluxOptions):
    aspect_ratio: AspectRatio | None = None
    preset: str | None = None

    @field_validator("preset")
    @classmethod
    def _known_preset(cls, v: str | None) -> str | None:
        if v and v not in STYLE_PRESETS:
            raise ValueError(f"Unknown style preset '{v}'. Must be one of: {sorted(STYLE_PRESETS)}")
        return v or None


class UpscaleOptions(_Options):
    mode: Literal["conservative", "creative", "fast"] = "conservative"
    output_format: Literal["jpeg", "png"] = "png"
    creativity: float | None = Field(default=None, ge=0.0, le=1.0)
    negative_prompt: str | None = None


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PreparedOperation:
    request: OperationRequest
    options: BaseModel
    payload: dict[str, Any]
    inputs: tuple[ImageInfo, ...]


@dataclass(frozen=True)
class Operation:
    kind: OperationKind
    options_model: type[BaseModel]
    min_images: int
    max_images: int
    build: Callable[[OperationRequest, Any, tuple[ImageInfo, ...]], dict[str, Any]]
    prompt_required: bool = True
    check: Callable[[OperationRequest, Any, tuple[ImageInfo, ...]], None] | None = None


def _flux_fields(options: FluxOptions) -> dict[str, Any]:
    fields = {
        "seed": options.seed,
        "safety_tolerance": options.safety_tolerance,
        "output_format": options.output_format,
    }
    if options.webhook_url:
        fields["webhook_url"] = options.webhook_url
    if options.webhook_secret:
        fields["webhook_secret"] = options.webhook_secret
    return fields


def _build_generate(request, options: GenerateOptions, inputs) -> dict[str, Any]:
    return {
        "model": options.model,
        "prompt": request.prompt_text,
        "aspect_ratio": options.aspect_ratio,
        "prompt_upsampling": options.prompt_upsampling,
        **_flux_fields(options),
    }


def _check_edit(request, options: EditOptions, inputs) -> None:
    if request.mask is not None:
        try:
            check_mask(request.mask, inputs[0])
        except ValueError as e:
            raise ValidationError(f"Invalid mask: {e}") from e


def _build_edit(request, options: EditOptions, inputs) -> dict[str, Any]:
    image = to_base64(request.input_images[0])
    if request.mask is not None:
        # Inpainting: white mask areas are regenerated
        return {
            "prompt": request.prompt_text,
            "image": image,
            "mask": to_base64(normalise_mask(request.mask)),
            "steps": options.steps,
            "guidance": options.guidance,
            **_flux_fields(options),
        }
    return {
        "model": options.model,
        "prompt": request.prompt_text,
        "input_image": image,
        "aspect_ratio": options.aspect_ratio or derive_aspect_ratio(inputs[0].width, inputs[0].height),
        **_flux_fields(options),
    }


def _check_expand(request, options: ExpandOptions, inputs) -> None:
    if not any((options.top, options.bottom, options.left, options.right)):
        raise ValidationError("At least one of top, bottom, left or right must be greater than 0")


def _build_expand(request, options: ExpandOptions, inputs) -> dict[str, Any]:
    return {
        "image": to_base64(request.input_images[0]),
        "prompt": request.prompt_text,
        "top": options.top,
        "bottom": options.bottom,
        "left": options.left,
        "right": options.right,
        "steps": options.steps,
        "guidance": options.guidance,
        "prompt_upsampling": options.prompt_upsampling,
        **_flux_fields(options),
    }


def _build_fuse(request, options: FuseOptions, inputs) -> dict[str, Any]:
    stitched = stitch_images(list(request.input_images), options.layout, options.border_width)
    return {
        "model": options.model,
        "prompt": request.prompt_text,
        "input_image": to_base64(stitched),
        "aspect_ratio": options.aspect_ratio,
        **_flux_fields(options),
    }


def _check_style_transfer(request, options: StyleTransferOptions, inputs) -> None:
    if request.style_reference is None and not options.preset and not request.prompt_text.strip():
        raise ValidationError("Prompt is required unless a style reference image or preset is given")
    if request.style_reference is not None:
        try:
            inspect_image(request.style_reference)
        except ValueError as e:
            raise ValidationError(f"Invalid style reference image: {e}") from e


def style_instruction(prompt: str, preset: str | None, has_reference: bool) -> str:
    """Build the edit instruction sent for a style transfer."""
    prompt = prompt.strip()
    if has_reference:
        parts = [STYLE_REFERENCE_INSTRUCTION]
    elif preset:
        parts = [f"Transform this image into {STYLE_PRESETS[preset]}, keeping the original composition."]
    else:
        return prompt
    if preset and has_reference:
        parts.append(f"Lean towards {STYLE_PRESETS[preset]}.")
    if prompt:
        parts.append(prompt)
    return " ".join(parts)


def _build_style_transfer(request, options: StyleTransferOptions, inputs) -> dict[str, Any]:
    payload = {
        "model": options.model,
        "prompt": style_instruction(request.prompt_text, options.preset, request.style_reference is not None),
        "input_image": to_base64(request.input_images[0]),
        "aspect_ratio": options.aspect_ratio or derive_aspect_ratio(inputs[0].width, inputs[0].height),
        **_flux_fields(options),
    }
    if request.style_reference is not None:
        payload["input_image_2"] = to_base64(request.style_reference)
    return payload


def _build_upscale(request, options: UpscaleOptions, inputs) -> dict[str, Any]:
    payload = {
        "mode": options.mode,
        "image": request.input_images[0],
        "output_format": options.output_format,
        "seed": options.seed,
    }
    if options.mode != "fast":
        payload["prompt"] = request.prompt_text.strip() or UPSCALE_PROMPTS[options.mode]
        payload["negative_prompt"] = options.negative_prompt
        payload["creativity"] = (
            options.creativity if options.creativity is not None else UPSCALE_CREATIVITY[options.mode]
        )
    return payload


OPERATIONS: dict[OperationKind, Operation] = {
    OperationKind.GENERATE: Operation(
        OperationKind.GENERATE, GenerateOptions, 0, 0, _build_generate,
    ),
    OperationKind.EDIT: Operation(
        OperationKind.EDIT, EditOptions, 1, 1, _build_edit, check=_check_edit,
    ),
    OperationKind.EXPAND: Operation(
        OperationKind.EXPAND, ExpandOptions, 1, 1, _build_expand, check=_check_expand,
    ),
    OperationKind.FUSE: Operation(
        OperationKind.FUSE, FuseOptions, 2, 4, _build_fuse,
    ),
    OperationKind.STYLE_TRANSFER: Operation(
        OperationKind.STYLE_TRANSFER, StyleTransferOptions, 1, 1, _build_style_transfer,
        prompt_required=False, check=_check_style_transfer,
    ),
    OperationKind.UPSCALE: Operation(
        OperationKind.UPSCALE, UpscaleOptions, 1, 1, _build_upscale, prompt_required=False,
    ),
}


# ---------------------------------------------------------------------------
# Validation entry point
# ---------------------------------------------------------------------------

def _image_count_message(operation: Operation, count: int) -> str:
    kind = operation.kind.value
    if operation.max_images == 0:
        return f"{kind} takes no input images, got {count}"
    if operation.min_images == operation.max_images:
        return f"{kind} takes exactly {operation.min_images} input image(s), got {count}"
    return f"{kind} takes {operation.min_images}-{operation.max_images} input images, got {count}"


def _format_pydantic_error(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(p) for p in item["loc"]) or "options"
        parts.append(f"{field}: {item['msg']}")
    return "Invalid options: " + "; ".join(parts)


def parse_options(kind: OperationKind, options: dict[str, Any]) -> BaseModel:
    try:
        return OPERATIONS[kind].options_model.model_validate(options)
    except pydantic.ValidationError as e:
        raise ValidationError(_format_pydantic_error(e)) from e


def prepare(request: OperationRequest) -> PreparedOperation:
    """Validate ``request`` against its kind's contract and build the payload."""
    operation = OPERATIONS[request.kind]

    count = len(request.input_images)
    if not operation.min_images <= count <= operation.max_images:
        raise ValidationError(_image_count_message(operation, count))

    if operation.prompt_required and not request.prompt_text.strip():
        raise ValidationError("Prompt is required")
    if len(request.prompt_text) > MAX_PROMPT_LENGTH:
        raise ValidationError(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters")

    if request.mask is not None and request.kind is not OperationKind.EDIT:
        raise ValidationError("A mask is only accepted for edit requests")
    if request.style_reference is not None and request.kind is not OperationKind.STYLE_TRANSFER:
        raise ValidationError("A style reference is only accepted for style transfer requests")

    inputs = []
    for index, data in enumerate(request.input_images, 1):
        try:
            inputs.append(inspect_image(data))
        except ValueError as e:
            raise ValidationError(f"Input image {index} is not a valid image: {e}") from e
    inputs = tuple(inputs)

    options = parse_options(request.kind, request.options)
    if operation.check is not None:
        operation.check(request, options, inputs)

    payload = operation.build(request, options, inputs)
    return PreparedOperation(request=request, options=options, payload=payload, inputs=inputs)
