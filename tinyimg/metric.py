"""Perceptual difference between a reference image and a re-encoding of it."""

from __future__ import annotations

import numpy as np
from PIL import Image

from .codec import SourceImage


def _to_unit_array(image: Image.Image, mode: str) -> np.ndarray:
    """Return *image* as ``float64`` channels scaled to ``[0, 1]``."""
    return np.asarray(image.convert(mode), dtype=np.float64) / 255.0


def _comparison_mode(a: Image.Image, b: Image.Image) -> str:
    for image in (a, b):
        if "A" in image.getbands() or "transparency" in image.info:
            return "RGBA"
    return "RGB"


def fuzz_difference(original: SourceImage, candidate: SourceImage) -> float:
    """Root-mean-square channel difference normalised to ``[0, 1]``.

    0 means the two images decode to identical pixels; 1 means every
    channel of every pixel is at the opposite end of the range.  This is
    the "fuzz" distance ImageMagick reports for its ``Fuzz`` metric.

    Raises:
        ValueError: If the images have different dimensions
    """
    a, b = original.image, candidate.image
    if a.size != b.size:
        raise ValueError(f"Cannot compare images of size {a.size} and {b.size}")

    mode = _comparison_mode(a, b)
    delta = _to_unit_array(a, mode) - _to_unit_array(b, mode)
    return float(np.sqrt(np.mean(delta * delta)))
