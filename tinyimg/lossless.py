"""Lossless size reduction of an already written image.

PNG files are recompressed with Zopfli and JPEG files have their Huffman
tables and scan layout optimised by MozJPEG.  Neither changes decoded
pixels.  The file is only rewritten when the result is strictly smaller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Union

import zopfli
from mozjpeg_lossless_optimization import optimize as mozjpeg_optimize

from . import config
from .codec import format_for_path
from .fileio import atomic_write_bytes, read_bytes

LOGGER = logging.getLogger(f"{config.LOGGER_NAME}.lossless")


def png_compressor() -> zopfli.ZopfliPNG:
    """Return a ZopfliPNG compressor tuned for the smallest lossless output."""
    return zopfli.ZopfliPNG(
        lossy_transparent=False,
        lossy_8bit=False,
        filter_strategies=config.ZOPFLI_FILTER_STRATEGIES,
        use_zopfli=True,
        num_iterations=config.ZOPFLI_ITERATIONS,
        num_iterations_large=config.ZOPFLI_ITERATIONS_LARGE,
    )


def optimize_png(data: bytes) -> bytes:
    """Recompress PNG *data* with Zopfli at maximal effort."""
    return png_compressor().optimize(data)


def optimize_jpeg(data: bytes) -> bytes:
    """Losslessly optimise JPEG *data* with MozJPEG."""
    return mozjpeg_optimize(data)


OPTIMIZERS: Dict[str, Callable[[bytes], bytes]] = {
    "PNG": optimize_png,
    "JPEG": optimize_jpeg,
}


def recompress_file(path: Union[str, Path], fmt: Optional[str] = None) -> int:
    """
    Shrink *path* in place and return the number of bytes saved.

    *fmt* names the format of the data and defaults to the one registered
    for the file extension.  Formats without an optimizer are left
    untouched and report 0.
    Errors from reading, optimizing or writing propagate to the caller;
    the file on disk is either the original or the complete smaller version.
    """
    path = Path(path)
    fmt = fmt or format_for_path(path)
    optimizer = OPTIMIZERS.get(fmt)
    if optimizer is None:
        LOGGER.debug("No lossless optimizer for %s (%s)", path, fmt)
        return 0

    data = read_bytes(path)
    optimized = optimizer(data)
    if len(optimized) >= len(data):
        LOGGER.debug("%s already optimal (%d bytes)", path, len(data))
        return 0

    atomic_write_bytes(path, optimized)
    saved = len(data) - len(optimized)
    LOGGER.info(
        "Lossless pass on %s: %d -> %d bytes (%.1f%% reduction)",
        path, len(data), len(optimized), saved / len(data) * 100,
    )
    return saved
