"""Perceptual-tolerance image optimizer."""

from .codec import EncodeSettings, SourceImage, decode, encode
from .errors import (
    CodecFailure,
    DecodeError,
    ImageProcessingError,
    IoError,
    PostCompressionWarning,
    UsageError,
)
from .image_processor import BatchOutcome, FileResult, ImageProcessor
from .quality_search import QualitySearcher, SearchBounds, find_quality

__all__ = [
    "BatchOutcome",
    "CodecFailure",
    "DecodeError",
    "EncodeSettings",
    "FileResult",
    "ImageProcessingError",
    "ImageProcessor",
    "IoError",
    "PostCompressionWarning",
    "QualitySearcher",
    "SearchBounds",
    "SourceImage",
    "UsageError",
    "decode",
    "encode",
    "find_quality",
]
