from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from . import config
from .codec import EncodeSettings, decode, encode, format_for_path, prepare_reference
from .errors import CodecFailure, ImageProcessingError, IoError, PostCompressionWarning
from .fileio import atomic_write_bytes, read_bytes
from .lossless import recompress_file
from .quality_search import ProbeHook, QualitySearcher, SearchBounds
from .validation import validate_image_path, validate_output_path

LOGGER = logging.getLogger(f"{config.LOGGER_NAME}.processor")

PathLike = Union[str, Path]
Recompressor = Callable[[Path, Optional[str]], int]


@dataclass(slots=True)
class FileResult:
    """
    Outcome of optimizing one file.

    Attributes:
        input_path (Path): Source image
        output_path (Path): Written image, possibly the same as the source
        quality (int): Quality chosen by the search
        iterations (int): Number of probes the search needed
        original_size (int): Size of the source in bytes
        encoded_size (int): Size after the lossy encode
        final_size (int): Size after the lossless pass
        warnings (List[PostCompressionWarning]): Non-fatal problems
    """
    input_path: Path
    output_path: Path
    quality: int
    iterations: int
    original_size: int
    encoded_size: int
    final_size: int
    warnings: List[PostCompressionWarning] = field(default_factory=list)

    @property
    def saved_bytes(self) -> int:
        return self.original_size - self.final_size


@dataclass(slots=True)
class BatchOutcome:
    """Per-file entry of a batch run; exactly one of result/error is set."""

    input_path: Path
    output_path: Path
    result: Optional[FileResult] = None
    error: Optional[ImageProcessingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ImageProcessor:
    """Runs the read, search, encode, write and lossless pipeline per file."""

    def __init__(
        self,
        settings: Optional[EncodeSettings] = None,
        bounds: Optional[SearchBounds] = None,
        *,
        recompressor: Recompressor = recompress_file,
        on_probe: Optional[ProbeHook] = None,
    ) -> None:
        """
        Args:
            settings: Encoding parameters; the format is replaced per file
                by the one matching the destination extension
            bounds: Quality range searched for every file
            recompressor: Lossless pass applied to the written file
            on_probe: Hook receiving ``(iteration, quality, diff)`` per probe
        """
        self.settings = settings
        self.bounds = bounds or SearchBounds()
        self._recompressor = recompressor
        self._on_probe = on_probe

    def process(
        self,
        input_path: PathLike,
        output_path: PathLike,
        eps: float = config.DEFAULT_EPS,
    ) -> FileResult:
        """
        Optimize *input_path* and write the result to *output_path*.

        *output_path* may be the same file as *input_path*; the source is
        then replaced only once the new content is complete.

        Raises:
            IoError: If the source cannot be read or the destination written
            DecodeError: If the source is not a decodable image
            CodecFailure: If the search or the final encode fails
        """
        LOGGER.info("Optimizing image %s. Destination file name: %s. Eps: %s", input_path, output_path, eps)
        try:
            return self._process(Path(input_path), Path(output_path), eps)
        except ImageProcessingError as exc:
            if exc.path is None:
                exc.path = Path(input_path)
            raise

    def _process(self, input_path: Path, output_path: Path, eps: float) -> FileResult:
        try:
            source_path = validate_image_path(input_path)
        except (ValueError, OSError, RuntimeError) as exc:
            raise IoError(str(exc), stage="read") from exc
        try:
            dest_path = validate_output_path(output_path)
        except (ValueError, OSError, RuntimeError) as exc:
            raise IoError(str(exc), stage="write") from exc

        try:
            data = read_bytes(source_path)
        except OSError as exc:
            raise IoError(f"Cannot read source: {exc}", stage="read") from exc

        stage = "decode"
        try:
            source = decode(data)
            settings = self._settings_for(source.format, dest_path)
            reference = prepare_reference(source, settings)

            stage = "search"
            searcher = QualitySearcher(settings, self.bounds, on_probe=self._on_probe)
            outcome = searcher.search(reference, eps)
            LOGGER.debug("%s: quality %d after %d probes", input_path, outcome.quality, outcome.iterations)

            stage = "encode"
            encoded = encode(reference, outcome.quality, settings)
        except ImageProcessingError:
            raise
        except Exception as exc:  # noqa: BLE001 - any codec fault fails this file only
            raise CodecFailure(f"{stage.capitalize()} failed: {exc}", stage=stage) from exc

        try:
            atomic_write_bytes(dest_path, encoded)
        except OSError as exc:
            raise IoError(f"Cannot write destination: {exc}", path=dest_path, stage="write") from exc

        result = FileResult(
            input_path=input_path,
            output_path=output_path,
            quality=outcome.quality,
            iterations=outcome.iterations,
            original_size=len(data),
            encoded_size=len(encoded),
            final_size=len(encoded),
        )
        self._post_compress(dest_path, settings.format, result)
        LOGGER.info(
            "%s: quality=%d, %d -> %d bytes",
            output_path, result.quality, result.original_size, result.final_size,
        )
        return result

    def _settings_for(self, source_format: str, dest_path: Path) -> EncodeSettings:
        """Encode in the destination's format, falling back to the source's."""
        fmt = format_for_path(dest_path, source_format)
        if self.settings is None:
            return EncodeSettings(format=fmt)
        return self.settings.for_format(fmt)

    def _post_compress(self, dest_path: Path, fmt: str, result: FileResult) -> None:
        try:
            self._recompressor(dest_path, fmt)
            result.final_size = dest_path.stat().st_size
        except Exception as exc:  # noqa: BLE001 - the lossy output is already complete
            warning = PostCompressionWarning(f"Lossless pass failed for {dest_path}: {exc}")
            LOGGER.warning("%s", warning)
            result.warnings.append(warning)

    def process_batch(
        self,
        jobs: Iterable[Tuple[PathLike, PathLike]],
        eps: float = config.DEFAULT_EPS,
    ) -> List[BatchOutcome]:
        """
        Process ``(input, output)`` pairs one after another.

        A failure is logged and recorded for its file only; the remaining
        files are still processed.
        """
        outcomes: List[BatchOutcome] = []
        for input_path, output_path in jobs:
            outcome = BatchOutcome(Path(input_path), Path(output_path))
            try:
                outcome.result = self.process(input_path, output_path, eps)
            except ImageProcessingError as exc:
                LOGGER.error("Failed to process %s", exc)
                outcome.error = exc
            outcomes.append(outcome)
        return outcomes
