"""Error taxonomy shared by the search, the per-file pipeline and the CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class UsageError(Exception):
    """Raised for bad or missing command line arguments."""


class ImageProcessingError(Exception):
    """Base class for failures scoped to a single file.

    ``path`` and ``stage`` identify where processing stopped so the batch
    runner can report it and move on to the next file.
    """

    stage = "process"

    def __init__(
        self,
        message: str,
        *,
        path: Optional[Union[str, Path]] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        message = super().__str__()
        if self.path is None:
            return f"[{self.stage}] {message}"
        return f"{self.path} [{self.stage}]: {message}"


class IoError(ImageProcessingError):
    """Unreadable source or unwritable destination."""

    stage = "io"


class DecodeError(ImageProcessingError):
    """Corrupt or unsupported image data."""

    stage = "decode"


class CodecFailure(ImageProcessingError):
    """Re-encoding or measuring a candidate failed."""

    stage = "search"


class PostCompressionWarning(UserWarning):
    """The lossless pass failed after the lossy output was written."""
