"""Decoding and encoding of raster images.

The search and the final write both go through :func:`encode` with the same
:class:`EncodeSettings`, so a quality probed during the search produces the
same pixels as the file that is eventually written.  Decoded images are held
in :class:`SourceImage` and never modified in place; every transformation
works on a copy.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
from PIL import Image, ImageChops, UnidentifiedImageError

from . import config
from .errors import DecodeError

# Formats able to store an indexed palette
PALETTE_FORMATS = {"PNG", "GIF", "BMP", "TIFF"}

_STORABLE_MODES = {
    "JPEG": {"L", "RGB", "CMYK"},
    "WEBP": {"RGB", "RGBA"},
}

_DECODE_ERRORS = (
    UnidentifiedImageError,
    OSError,
    SyntaxError,
    ValueError,
    Image.DecompressionBombError,
)


@dataclass(frozen=True, slots=True)
class SourceImage:
    """
    A decoded raster and the attributes needed to write it back.

    Attributes:
        image (Image.Image): Fully loaded pixel data
        format (str): Pillow format name of the encoded data (e.g., JPEG)
        icc_profile (Optional[bytes]): Embedded colour profile, if any
    """
    image: Image.Image
    format: str
    icc_profile: Optional[bytes] = None

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def mode(self) -> str:
        return self.image.mode


@dataclass(frozen=True, slots=True)
class EncodeSettings:
    """Every encoding parameter except the quality."""

    format: str
    resample: Image.Resampling = Image.Resampling.LANCZOS
    optimize_colors: bool = True
    max_dimension: Optional[int] = config.MAX_IMAGE_DIMENSION

    def for_format(self, fmt: str) -> "EncodeSettings":
        return replace(self, format=fmt)


def decode(data: bytes) -> SourceImage:
    """
    Decode *data* into a :class:`SourceImage`.

    Raises:
        DecodeError: If the data is empty, unrecognised, truncated or has
            no pixels
    """
    if not data:
        raise DecodeError("No image data")

    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            fmt = img.format
            image = img.copy()
    except _DECODE_ERRORS as exc:
        raise DecodeError(f"Cannot decode image: {exc}") from exc

    width, height = image.size
    if width == 0 or height == 0:
        raise DecodeError(f"Image has invalid dimensions {width}x{height}")
    if not fmt:
        raise DecodeError("Image format could not be determined")

    return SourceImage(image=image, format=fmt, icc_profile=image.info.get("icc_profile"))


def format_for_path(path: Union[str, Path], default: Optional[str] = None) -> Optional[str]:
    """Return the Pillow format name registered for the extension of *path*."""
    ext = Path(path).suffix.lower()
    return Image.registered_extensions().get(ext, default)


def prepare_reference(source: SourceImage, settings: EncodeSettings) -> SourceImage:
    """Downscale *source* once when it exceeds ``settings.max_dimension``."""
    limit = settings.max_dimension
    if not limit or max(source.size) <= limit:
        return source
    image = source.image.copy()
    image.thumbnail((limit, limit), settings.resample)
    return replace(source, image=image)


def _has_alpha(image: Image.Image) -> bool:
    return "A" in image.getbands() or "transparency" in image.info


def _is_gray(image: Image.Image) -> bool:
    red, green, blue = image.split()[:3]
    return (
        ImageChops.difference(red, green).getbbox() is None
        and ImageChops.difference(green, blue).getbbox() is None
    )


def _exact_palette(image: Image.Image) -> Optional[Image.Image]:
    """Return an exact ``P`` copy of an RGB *image* with at most 256 colours."""
    if image.getcolors(256) is None:
        return None
    pixels = np.asarray(image, dtype=np.uint8).reshape(-1, 3)
    colours, indices = np.unique(pixels, axis=0, return_inverse=True)
    indices = np.asarray(indices, dtype=np.uint8).reshape(image.height, image.width)
    paletted = Image.frombytes("P", image.size, indices.tobytes())
    paletted.putpalette(colours.flatten().tolist())
    return paletted


def _reduce_color_type(image: Image.Image, fmt: str) -> Image.Image:
    """Pick the smallest colour type that keeps every pixel unchanged."""
    if image.mode in ("P", "PA"):
        image = image.convert("RGBA" if _has_alpha(image) else "RGB")

    if image.mode in ("RGBA", "LA") and image.getchannel("A").getextrema() == (255, 255):
        image = image.convert("RGB" if image.mode == "RGBA" else "L")

    if image.mode == "RGB":
        if _is_gray(image):
            return image.convert("L")
        if fmt in PALETTE_FORMATS:
            paletted = _exact_palette(image)
            if paletted is not None:
                return paletted
    return image


def _to_storable_mode(image: Image.Image, fmt: str) -> Image.Image:
    modes = _STORABLE_MODES.get(fmt)
    if modes is None or image.mode in modes:
        return image
    if "RGBA" in modes and _has_alpha(image):
        return image.convert("RGBA")
    return image.convert("RGB")


def optimize_color_mode(image: Image.Image, fmt: str) -> Image.Image:
    """Return *image* in the most compact mode *fmt* can store losslessly."""
    return _to_storable_mode(_reduce_color_type(image, fmt), fmt)


def _save_params(fmt: str, mode: str, quality: int, icc_profile: Optional[bytes]) -> Dict[str, Any]:
    save_params: Dict[str, Any] = {'format': fmt}
    if fmt == 'JPEG':
        save_params.update({
            'quality': quality,
            'optimize': True,
            'progressive': True,
        })
        if mode == 'RGB':
            save_params['subsampling'] = config.JPEG_SUBSAMPLING
    elif fmt == 'WEBP':
        save_params.update({
            'quality': quality,
            'method': config.WEBP_METHOD,
        })
    elif fmt == 'PNG':
        save_params['optimize'] = True
    elif fmt == 'TIFF':
        save_params['compression'] = 'tiff_adobe_deflate'
    if icc_profile and fmt in {'JPEG', 'WEBP', 'PNG', 'TIFF'}:
        save_params['icc_profile'] = icc_profile
    return save_params


def encode(source: SourceImage, quality: int, settings: EncodeSettings) -> bytes:
    """
    Encode *source* at *quality* using *settings*.

    Quality only matters for lossy formats; lossless formats are always
    written with their strongest compression.
    """
    if not config.MIN_QUALITY <= quality <= config.MAX_QUALITY:
        raise ValueError(f"Quality {quality} outside [{config.MIN_QUALITY}, {config.MAX_QUALITY}]")

    fmt = settings.format
    if settings.optimize_colors:
        image = optimize_color_mode(source.image, fmt)
    else:
        image = _to_storable_mode(source.image, fmt)

    buf = BytesIO()
    image.save(buf, **_save_params(fmt, image.mode, quality, source.icc_profile))
    return buf.getvalue()


def encode_candidate(source: SourceImage, quality: int, settings: EncodeSettings) -> SourceImage:
    """Encode *source* at *quality* and decode the result for comparison."""
    return decode(encode(source, quality, settings))
