import base64
from io import BytesIO

import pytest
from PIL import Image

from flux_studio.errors import ValidationError
from flux_studio.imaging import derive_aspect_ratio, normalise_mask, stitch_images
from flux_studio.models import OperationKind, OperationRequest
from flux_studio.operations import MAX_PROMPT_LENGTH, STYLE_REFERENCE_INSTRUCTION, prepare
from tests.fakes import make_image


def request(kind, images=(), prompt="a prompt", **kwargs):
    return OperationRequest(kind=kind, prompt_text=prompt, input_images=tuple(images), **kwargs)


def size_of(data: bytes) -> tuple[int, int]:
    with Image.open(BytesIO(data)) as img:
        return img.size


# ---------------------------------------------------------------------------
# Aspect ratio
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "width, height, expected",
    [
        (1920, 1080, "16:9"),
        (1500, 1000, "3:2"),
        (1024, 768, "4:3"),
        (1000, 1000, "1:1"),
        (1100, 1000, "1:1"),
        (768, 1024, "3:4"),
        (1000, 1500, "2:3"),
        (1080, 1920, "9:16"),
    ],
)
def test_derive_aspect_ratio(width, height, expected):
    assert derive_aspect_ratio(width, height) == expected


# ---------------------------------------------------------------------------
# Generate
# ---------------------------------------------------------------------------

def test_generate_payload_defaults():
    payload = prepare(request(OperationKind.GENERATE)).payload
    assert payload["prompt"] == "a prompt"
    assert payload["aspect_ratio"] == "1:1"
    assert payload["safety_tolerance"] == 2
    assert payload["output_format"] == "jpeg"
    assert payload["model"] == "flux-kontext-max"


def test_options_accept_camel_and_snake_case():
    payload = prepare(request(
        OperationKind.GENERATE,
        options={"aspectRatio": "16:9", "safety_tolerance": 0, "promptUpsampling": True, "seed": ""},
    )).payload
    assert payload["aspect_ratio"] == "16:9"
    assert payload["safety_tolerance"] == 0
    assert payload["prompt_upsampling"] is True
    assert payload["seed"] is None


@pytest.mark.parametrize(
    "options",
    [
        {"aspect_ratio": "5:4"},
        {"safety_tolerance": 3},
        {"output_format": "gif"},
        {"model": "flux-dev"},
    ],
)
def test_generate_rejects_bad_options(options):
    with pytest.raises(ValidationError, match="Invalid options"):
        prepare(request(OperationKind.GENERATE, options=options))


def test_generate_takes_no_images(png):
    with pytest.raises(ValidationError, match="no input images"):
        prepare(request(OperationKind.GENERATE, [png]))


@pytest.mark.parametrize("prompt", ["", "   "])
def test_prompt_required(prompt):
    with pytest.raises(ValidationError, match="Prompt is required"):
        prepare(request(OperationKind.GENERATE, prompt=prompt))


def test_prompt_length_limit():
    with pytest.raises(ValidationError, match="at most"):
        prepare(request(OperationKind.GENERATE, prompt="x" * (MAX_PROMPT_LENGTH + 1)))


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

def test_edit_derives_aspect_ratio(png):
    payload = prepare(request(OperationKind.EDIT, [png])).payload
    assert payload["aspect_ratio"] == "4:3"
    assert base64.b64decode(payload["input_image"]) == png


def test_edit_with_mask_uses_inpainting_payload(png):
    mask = make_image(64, 48, color=(255, 255, 255))
    payload = prepare(request(OperationKind.EDIT, [png], mask=mask)).payload
    assert "model" not in payload
    assert base64.b64decode(payload["image"]) == png
    assert payload["mask"]
    assert payload["steps"] == 50


def test_edit_rejects_mismatched_mask(png):
    mask = make_image(32, 32)
    with pytest.raises(ValidationError, match="Invalid mask"):
        prepare(request(OperationKind.EDIT, [png], mask=mask))


def test_edit_rejects_undecodable_image():
    with pytest.raises(ValidationError, match="not a valid image"):
        prepare(request(OperationKind.EDIT, [b"not an image"]))


def test_mask_only_for_edit(png):
    with pytest.raises(ValidationError, match="only accepted for edit"):
        prepare(request(OperationKind.EXPAND, [png], mask=png, options={"top": 10}))


def test_normalise_mask_is_binary_grayscale():
    painted = Image.new("RGBA", (8, 8), (0, 0, 0, 0))
    painted.putpixel((1, 1), (255, 0, 0, 255))
    out = BytesIO()
    painted.save(out, format="PNG")

    with Image.open(BytesIO(normalise_mask(out.getvalue()))) as mask:
        assert mask.mode == "L"
        assert mask.getpixel((1, 1)) == 255
        assert mask.getpixel((0, 0)) == 0


# ---------------------------------------------------------------------------
# Expand
# ---------------------------------------------------------------------------

def test_expand_needs_one_positive_side(png):
    with pytest.raises(ValidationError, match="greater than 0"):
        prepare(request(OperationKind.EXPAND, [png]))


def test_expand_rejects_negative_side(png):
    with pytest.raises(ValidationError):
        prepare(request(OperationKind.EXPAND, [png], options={"top": -1, "left": 10}))


def test_expand_payload(png):
    payload = prepare(request(OperationKind.EXPAND, [png], options={"right": 256})).payload
    assert payload["right"] == 256
    assert payload["top"] == 0
    assert payload["guidance"] == 50.75


# ---------------------------------------------------------------------------
# Fuse
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("count", [1, 5])
def test_fuse_image_count(png, count):
    with pytest.raises(ValidationError, match="2-4 input images"):
        prepare(request(OperationKind.FUSE, [png] * count))


def test_fuse_stitches_inputs(png):
    payload = prepare(request(OperationKind.FUSE, [png, png], options={"borderWidth": 10})).payload
    assert size_of(base64.b64decode(payload["input_image"])) == (64 + 10 + 64, 48)


def test_stitch_layouts(png):
    assert size_of(stitch_images([png, png], "vertical")) == (64, 48 + 20 + 48)
    assert size_of(stitch_images([png] * 4, "grid", max_size=512)) == (256 + 20 + 256, 256 + 20 + 256)
    with pytest.raises(ValueError):
        stitch_images([png, png], "diagonal")


# ---------------------------------------------------------------------------
# Style transfer
# ---------------------------------------------------------------------------

def test_style_transfer_with_reference_needs_no_prompt(png):
    style = make_image(32, 32, color=(0, 0, 255))
    payload = prepare(request(OperationKind.STYLE_TRANSFER, [png], prompt="", style_reference=style)).payload
    assert payload["prompt"] == STYLE_REFERENCE_INSTRUCTION
    assert base64.b64decode(payload["input_image_2"]) == style


def test_style_transfer_with_preset(png):
    payload = prepare(request(
        OperationKind.STYLE_TRANSFER, [png], prompt="", options={"preset": "watercolor"},
    )).payload
    assert "watercolor painting style" in payload["prompt"]
    assert "input_image_2" not in payload


def test_style_transfer_needs_prompt_or_style(png):
    with pytest.raises(ValidationError, match="style reference"):
        prepare(request(OperationKind.STYLE_TRANSFER, [png], prompt=""))


def test_style_transfer_unknown_preset(png):
    with pytest.raises(ValidationError, match="Unknown style preset"):
        prepare(request(OperationKind.STYLE_TRANSFER, [png], options={"preset": "cubism"}))


# ---------------------------------------------------------------------------
# Upscale
# ---------------------------------------------------------------------------

def test_upscale_mode_defaults(png):
    payload = prepare(request(OperationKind.UPSCALE, [png], prompt="")).payload
    assert payload["mode"] == "conservative"
    assert payload["prompt"] == "high quality, detailed, sharp"
    assert payload["creativity"] == 0.35
    assert payload["image"] == png


def test_fast_upscale_sends_no_prompt(png):
    payload = prepare(request(OperationKind.UPSCALE, [png], prompt="", options={"mode": "fast"})).payload
    assert "prompt" not in payload
    assert "creativity" not in payload


def test_upscale_creativity_range(png):
    with pytest.raises(ValidationError):
        prepare(request(OperationKind.UPSCALE, [png], options={"creativity": 1.5}))
