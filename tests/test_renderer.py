"""Tests for the Pillow filter renderer."""

import io

import pytest
from PIL import Image

from snapsync.errors import RenderError
from snapsync.renderer import PillowRenderer, guess_mime_type
from snapsync.transform import FilterTransform


def open_image(data):
    return Image.open(io.BytesIO(data))


def test_default_transform_keeps_size(jpeg):
    out = PillowRenderer().render(jpeg, FilterTransform())
    image = open_image(out)
    assert image.size == (64, 48)
    assert image.format == "JPEG"


def test_thumbnail_height(jpeg):
    out = PillowRenderer().render(jpeg, FilterTransform(), target_height=24)
    assert open_image(out).size == (32, 24)


def test_small_images_are_not_upscaled(jpeg):
    out = PillowRenderer().render(jpeg, FilterTransform(), target_height=300)
    assert open_image(out).size == (64, 48)


def test_deterministic(jpeg):
    transform = FilterTransform(saturation=0.3, warmth=0.05, sharpen=1, blur=0.5,
                                brightness=1.2, contrast=0.8, grey=0.1, vignette=0.6)
    renderer = PillowRenderer()
    assert renderer.render(jpeg, transform, 20) == renderer.render(jpeg, transform, 20)


def test_parameters_change_output(jpeg):
    renderer = PillowRenderer()
    plain = renderer.render(jpeg, FilterTransform())
    darker = renderer.render(jpeg, FilterTransform(brightness=0.3))
    assert plain != darker
    assert sum(open_image(darker).convert("L").getdata()) < sum(open_image(plain).convert("L").getdata())


def test_grey_desaturates(jpeg):
    out = PillowRenderer().render(jpeg, FilterTransform(grey=0))
    r, g, b = open_image(out).convert("RGB").getpixel((32, 24))
    assert max(r, g, b) - min(r, g, b) <= 6


def test_alpha_renders_png():
    src = io.BytesIO()
    Image.new("RGBA", (10, 10), (10, 20, 30, 128)).save(src, format="PNG")
    out = PillowRenderer().render(src.getvalue(), FilterTransform(contrast=1.5))
    image = open_image(out)
    assert image.format == "PNG"
    assert image.mode == "RGBA"


def test_garbage_raises_render_error():
    with pytest.raises(RenderError):
        PillowRenderer().render(b"not an image", FilterTransform())


def test_guess_mime_type(jpeg):
    assert guess_mime_type(jpeg) == "image/jpeg"
    assert guess_mime_type(b"plain text") == "application/octet-stream"
