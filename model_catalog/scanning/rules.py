"""
Folder classification heuristics.

Pure functions over the filesystem: they decide whether a folder is skipped,
is a category, or is a model leaf, and where a model's preview image lives.
Unreadable directories are treated as empty.
"""
import os
import re
import logging
from pathlib import Path
from typing import List, Optional, Pattern, Set

from .. import config
from ..models import DirClassification, DirKind

RULE_DIRECT_FILES = 'direct_files'
RULE_IGNORED_SUBDIR = 'ignored_subdir'
RULE_ANY_SUBDIR = 'any_subdir'


def build_ignored_regex(csv: str) -> Optional[Pattern]:
    """
    Builds a case-insensitive full-match regex from a comma separated list of
    folder names, plus miniature scale folders like "25mm".
    """
    names = [n.strip() for n in (csv or "").split(",") if n.strip()]
    if not names:
        return None
    alternatives = "|".join(re.escape(n) for n in names)
    return re.compile(rf'^({alternatives}|{config.SIZE_FOLDER_PATTERN})$', re.IGNORECASE)


def parse_folder_set(csv: str) -> Set[str]:
    """Comma separated folder names -> lowercase set."""
    return {n.strip().lower() for n in (csv or "").split(",") if n.strip()}


def is_excluded(name: str, excluded: Set[str]) -> bool:
    return bool(excluded) and name.lower() in excluded


def _list_entries(directory: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as e:
        logging.debug(f"Cannot list {directory}: {e}")
        return []
    # Sort for stable traversal order
    entries.sort(key=lambda e: e.name)
    return entries


def _is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def _is_file(entry: os.DirEntry) -> bool:
    try:
        return entry.is_file(follow_symlinks=False)
    except OSError:
        return False


def list_subdirs(directory: Path, include_hidden: bool = False) -> List[Path]:
    return [
        Path(e.path) for e in _list_entries(directory)
        if _is_dir(e) and (include_hidden or not e.name.startswith("."))
    ]


def _has_ext(name: str, exts: Set[str]) -> bool:
    return os.path.splitext(name)[1].lower() in exts


def find_direct_model_files(directory: Path) -> List[Path]:
    """3D files directly inside `directory` (no recursion)."""
    return [
        Path(e.path) for e in _list_entries(directory)
        if _is_file(e) and _has_ext(e.name, config.MODEL_EXTS)
    ]


def find_model_files(directory: Path, max_depth: int = config.MODEL_SEARCH_DEPTH) -> List[Path]:
    """All 3D files beneath `directory`, descending at most `max_depth` levels."""
    files: List[Path] = []
    _collect_model_files(directory, 0, max_depth, files)
    return files


def _collect_model_files(directory: Path, depth: int, max_depth: int, files: List[Path]):
    for e in _list_entries(directory):
        if _is_dir(e):
            if depth < max_depth and not e.name.startswith("."):
                _collect_model_files(Path(e.path), depth + 1, max_depth, files)
        elif _is_file(e) and _has_ext(e.name, config.MODEL_EXTS):
            files.append(Path(e.path))


def has_ignored_subdir_with_files(directory: Path, ignored_re: Optional[Pattern]) -> bool:
    """True if an immediate subfolder named like a variant folder holds 3D files directly."""
    if ignored_re is None:
        return False
    for sub in list_subdirs(directory, include_hidden=True):
        if ignored_re.match(sub.name) and find_direct_model_files(sub):
            return True
    return False


def has_any_subdir_with_files(directory: Path) -> bool:
    """True if any non-hidden subfolder (searched recursively) holds 3D files."""
    for sub in list_subdirs(directory):
        if find_model_files(sub):
            return True
    return False


def classify_directory(path: Path,
                       depth: int,
                       min_depth: int,
                       ignored_re: Optional[Pattern],
                       excluded: Set[str]) -> DirClassification:
    """
    Classifies one folder of the walk. `depth` is 0 for the root's children.

    Model detection only applies at or below `min_depth` and tries, in order:
      a. 3D files directly in the folder
      b. a variant-named subfolder (see build_ignored_regex) with 3D files
      c. any subfolder with 3D files
    """
    if is_excluded(path.name, excluded):
        return DirClassification(DirKind.EXCLUDED)

    if depth < min_depth:
        return DirClassification(DirKind.CATEGORY)

    rule = None
    if find_direct_model_files(path):
        rule = RULE_DIRECT_FILES
    elif has_ignored_subdir_with_files(path, ignored_re):
        rule = RULE_IGNORED_SUBDIR
    elif has_any_subdir_with_files(path):
        rule = RULE_ANY_SUBDIR

    if rule is None:
        return DirClassification(DirKind.UNCLASSIFIED)

    return DirClassification(DirKind.MODEL_LEAF, rule=rule, files=find_model_files(path))


# --- Thumbnails ---

def find_image_in_dir(directory: Path) -> Optional[Path]:
    for e in _list_entries(directory):
        if _is_file(e) and _has_ext(e.name, config.IMAGE_EXTS):
            return Path(e.path)
    return None


def find_thumbnail(model_dir: Path) -> Optional[Path]:
    """
    Picks a preview image for a model folder, first match wins:
      1. an image directly in the folder
      2. an image directly in a render-named subfolder (renders, imgs, photos...)
      3. the first image found walking the other subfolders, 3 levels deep
    """
    thumb = find_image_in_dir(model_dir)
    if thumb:
        return thumb

    for sub in list_subdirs(model_dir, include_hidden=True):
        if config.RENDER_DIR_RE.match(sub.name):
            thumb = find_image_in_dir(sub)
            if thumb:
                return thumb

    return _find_image_recursive(model_dir, 0, config.THUMBNAIL_SEARCH_DEPTH)


def _find_image_recursive(directory: Path, depth: int, max_depth: int) -> Optional[Path]:
    if depth >= max_depth:
        return None
    for sub in list_subdirs(directory):
        thumb = find_image_in_dir(sub)
        if thumb:
            return thumb
        thumb = _find_image_recursive(sub, depth + 1, max_depth)
        if thumb:
            return thumb
    return None
