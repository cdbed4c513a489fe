import io
import logging
from typing import Optional

from PIL import Image, ImageDraw, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

from snapsync.errors import RenderError
from snapsync.transform import FilterTransform

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90


class FilterRenderer:
    """
    Renders a FilterTransform against source image bytes.

    Implementations must be deterministic for a given
    (source, transform, target_height).
    """

    def render(self, source: bytes, transform: FilterTransform,
               target_height: Optional[int] = None) -> bytes:
        raise NotImplementedError


class PillowRenderer(FilterRenderer):
    """Filter renderer built on Pillow."""

    def render(self, source, transform, target_height=None):
        try:
            image = Image.open(io.BytesIO(source))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise RenderError(f"Cannot decode source image: {e}") from e

        has_alpha = image.mode in ("RGBA", "LA") or "transparency" in image.info
        image = ImageOps.exif_transpose(image).convert("RGBA" if has_alpha else "RGB")

        if target_height and image.height > target_height:
            width = max(1, round(image.width * target_height / image.height))
            image = image.resize((width, target_height), Image.LANCZOS)

        alpha = image.getchannel("A") if has_alpha else None
        image = self._apply(image.convert("RGB"), transform)
        if alpha is not None:
            image.putalpha(alpha)

        out = io.BytesIO()
        try:
            if has_alpha:
                image.save(out, format="PNG", optimize=False)
            else:
                image.save(out, format="JPEG", quality=JPEG_QUALITY)
        except (OSError, ValueError) as e:
            raise RenderError(f"Cannot encode rendered image: {e}") from e
        logger.debug("Rendered %dx%d image (target height %s)", image.width, image.height, target_height)
        return out.getvalue()

    def _apply(self, image: Image.Image, t: FilterTransform) -> Image.Image:
        # blur: 1 is neutral; below 1 blurs, above 1 is left to sharpen
        if t.blur < 1:
            radius = (1 - t.blur) * 4
            image = image.filter(ImageFilter.GaussianBlur(radius))

        if t.sharpen > 0:
            image = ImageEnhance.Sharpness(image).enhance(1 + t.sharpen)
        elif t.sharpen < 0:
            image = image.filter(ImageFilter.GaussianBlur(-t.sharpen))

        image = ImageEnhance.Brightness(image).enhance(max(t.brightness, 0))
        image = ImageEnhance.Contrast(image).enhance(max(t.contrast, 0))
        image = ImageEnhance.Color(image).enhance(max(t.saturation, 0))

        if t.warmth:
            image = self._warm(image, t.warmth)

        # grey: 0.5 is neutral, 0 fully desaturated tint, 1 untouched
        if t.grey < 0.5:
            grey = ImageOps.grayscale(image).convert("RGB")
            image = Image.blend(image, grey, (0.5 - t.grey) * 2)

        if t.vignette < 2:
            image = self._vignette(image, t.vignette)

        return image

    @staticmethod
    def _warm(image, warmth):
        shift = round(warmth * 255)
        r, g, b = image.split()
        r = r.point(lambda v: max(0, min(255, v + shift)))
        b = b.point(lambda v: max(0, min(255, v - shift)))
        return Image.merge("RGB", (r, g, b))

    @staticmethod
    def _vignette(image, strength):
        # strength 2 means no vignette; lower values darken the corners more
        width, height = image.size
        mask = Image.new("L", (width, height), 0)
        inset_x = round(width * max(strength, 0) / 8)
        inset_y = round(height * max(strength, 0) / 8)
        ImageDraw.Draw(mask).ellipse(
            (-inset_x, -inset_y, width + inset_x, height + inset_y), fill=255
        )
        mask = mask.filter(ImageFilter.GaussianBlur(max(width, height) / 10))
        dark = Image.new("RGB", (width, height), (0, 0, 0))
        return Image.composite(image, dark, mask)


def guess_mime_type(data: bytes) -> str:
    """Mime type of image bytes, or application/octet-stream if Pillow can't tell."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.get_format_mimetype() or "application/octet-stream"
    except (UnidentifiedImageError, OSError, ValueError):
        return "application/octet-stream"
