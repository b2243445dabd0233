import os
import shutil
import logging
from pathlib import Path

from ..exceptions import FileOperationError


def move_file(src: Path, dest: Path):
    """
    Moves one file, creating the destination folder.

    Uses an atomic rename when both paths are on the same volume and falls
    back to copy + delete otherwise (both copies exist briefly).
    Raises FileNotFoundError if `src` is gone, FileOperationError on any other failure.
    """
    if not src.exists():
        raise FileNotFoundError(str(src))

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileOperationError(f"Cannot create {dest.parent}: {e}") from e

    try:
        os.rename(src, dest)
        return
    except FileNotFoundError:
        raise
    except OSError as e:
        logging.debug(f"Rename {src} -> {dest} failed ({e}); copying instead")

    try:
        shutil.copy2(str(src), str(dest))
        src.unlink()
    except FileNotFoundError:
        raise
    except OSError as e:
        raise FileOperationError(f"Failed to move {src} -> {dest}: {e}") from e


def same_size(a: Path, b: Path) -> bool:
    try:
        return a.stat().st_size == b.stat().st_size
    except OSError:
        return False
