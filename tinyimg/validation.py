"""Validation of source and destination paths given on the command line."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union
from urllib.parse import urlparse

from PIL import Image


def _extensions_for(*registries) -> frozenset:
    """Return the extensions whose Pillow format appears in every registry."""
    registered = Image.registered_extensions()
    return frozenset(
        ext for ext, fmt in registered.items()
        if all(fmt in registry for registry in registries)
    )


# Extensions Pillow can decode, and the subset it can also encode
READABLE_EXTENSIONS = _extensions_for(Image.OPEN)
WRITABLE_EXTENSIONS = _extensions_for(Image.OPEN, Image.SAVE)


def _has_url_scheme(path_str: str) -> bool:
    """Return True if *path_str* looks like a URL with a scheme.

    Single-letter schemes such as ``"C"`` are treated as drive letters on
    Windows and therefore ignored.
    """
    parsed = urlparse(path_str)
    return bool(parsed.scheme and len(parsed.scheme) > 1)


def _check_extension(p: Path, allowed_exts: Iterable[str]) -> None:
    # No extension: the format is taken from the content (or the source)
    if not p.suffix:
        return
    if p.suffix.lower() not in {ext.lower() for ext in allowed_exts}:
        raise ValueError(f"Unsupported file extension: {p.suffix}")


def validate_image_path(
    path: Union[str, Path], allowed_exts: Optional[Iterable[str]] = None
) -> Path:
    """Validate a source image *path*.

    The path must point to an existing file, carry no extension or one
    Pillow can read, and must not include a URL scheme.  Returns the
    resolved ``Path`` object.

    Raises:
        ValueError: If any check fails, including paths that cannot be
            resolved (symlink loops, unreadable parents)
    """
    path_str = str(path)
    if _has_url_scheme(path_str):
        raise ValueError("URLs are not allowed")

    p = Path(path_str).expanduser()
    try:
        p = p.resolve(strict=True)
    except FileNotFoundError as exc:
        raise ValueError(f"File does not exist: {path_str}") from exc
    except (OSError, RuntimeError) as exc:
        raise ValueError(f"Cannot resolve {path_str}: {exc}") from exc

    if not p.is_file():
        raise ValueError(f"Not a file: {path_str}")

    _check_extension(p, allowed_exts or READABLE_EXTENSIONS)
    return p


def validate_output_path(
    path: Union[str, Path], allowed_exts: Optional[Iterable[str]] = None
) -> Path:
    """Validate a destination *path*.

    Ensures the directory exists, the target is not itself a directory, the
    extension names a format Pillow can write and the path does not contain
    a URL scheme.  Returns the resolved ``Path``.
    """
    path_str = str(path)
    if _has_url_scheme(path_str):
        raise ValueError("URLs are not allowed")

    p = Path(path_str).expanduser()
    try:
        p = p.resolve()
    except (OSError, RuntimeError) as exc:
        raise ValueError(f"Cannot resolve {path_str}: {exc}") from exc

    if not p.parent.is_dir():
        raise ValueError(f"Directory does not exist: {p.parent}")

    if p.is_dir():
        raise ValueError(f"Destination is a directory: {path_str}")

    _check_extension(p, allowed_exts or WRITABLE_EXTENSIONS)
    return p
