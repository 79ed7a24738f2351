"""Whole-file reads and atomic writes."""

from __future__ import annotations

import os
import stat
import tempfile
from pathlib import Path
from typing import Union


def read_bytes(path: Union[str, Path]) -> bytes:
    """Read the whole of *path* into memory."""
    with open(path, "rb") as handle:
        return handle.read()


def _target_mode(target: Path) -> int:
    """Permissions for the new file: those of *target*, or the umask default."""
    try:
        return stat.S_IMODE(os.stat(target).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """Replace *path* with *data* without ever exposing a partial file.

    The bytes go to a temporary file in the destination directory which is
    then renamed over *path*.  On failure the temporary file is removed and
    any existing *path* is left untouched.
    """
    target = Path(path)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, _target_mode(target))
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        raise
