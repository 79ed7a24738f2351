"""Shared fixtures for tinyimg tests."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import numpy as np
import pytest
from PIL import Image

from tinyimg import config


@pytest.fixture(autouse=True)
def restore_logger():
    """Undo handler changes made by ``configure_logging`` so caplog keeps working."""

    logger = logging.getLogger(config.LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def gradient_image(size=(64, 48)) -> Image.Image:
    w, h = size
    red = np.tile(np.linspace(0, 255, w), (h, 1))
    green = np.tile(np.linspace(0, 255, h)[:, None], (1, w))
    blue = (red + green) / 2
    return Image.fromarray(np.stack([red, green, blue], axis=-1).astype(np.uint8))


@pytest.fixture
def photo() -> Image.Image:
    return gradient_image()


@pytest.fixture
def write_image(tmp_path: Path) -> Callable[..., Path]:
    """Save a gradient image under *tmp_path* and return its path."""

    def _write(name: str = "img.jpg", size=(64, 48), **save_params) -> Path:
        path = tmp_path / name
        gradient_image(size).save(path, **save_params)
        return path

    return _write
