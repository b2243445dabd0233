import os
import shutil
import sqlite3
import logging
import threading
from contextlib import nullcontext
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .. import config
from ..database.ops import CatalogOps
from ..exceptions import DatabaseError, FileOperationError, MergeError, ModelNotFoundError
from ..models import MergeResult, Model, ModelFile
from .mover import move_file, same_size

MOVED = 'moved'
RENAMED = 'renamed'
DUPLICATE = 'duplicate'


def _is_under(path: str, parent: str) -> bool:
    return path == parent or path.startswith(parent + "/")


def merged_name(rel_path: str, attempt: int) -> str:
    """
    `a/render.png` -> `a/render_merged.png` (attempt 1), `a/render_merged_2.png` (attempt 2)...
    """
    if attempt == 0:
        return rel_path
    p = PurePosixPath(rel_path)
    suffix = config.MERGED_SUFFIX if attempt == 1 else f"{config.MERGED_SUFFIX}_{attempt}"
    return str(p.with_name(f"{p.stem}{suffix}{p.suffix}"))


class ModelMerger:
    """
    Consolidates two catalog models (and their folders) into one.

    Layout after a merge: the target folder holds one subfolder per origin,
    `<target>/<target name>/...` for its own loose files and
    `<target>/<source name>/...` for everything that came from the source.

    Ordering: files are moved first, the catalog transaction commits only
    after every move succeeded, and the source folder is deleted only after
    the commit. A failure rolls back the catalog but leaves already moved
    files where they are.
    """
    def __init__(self,
                 root: Path,
                 conn: sqlite3.Connection,
                 write_lock: Optional[threading.Lock] = None,
                 show_progress: bool = False):
        self.root = Path(root)
        self.db = CatalogOps(conn)
        self._lock = write_lock
        self.show_progress = show_progress

    def _locked(self):
        return self._lock if self._lock is not None else nullcontext()

    def merge(self, target_id: int, source_id: int) -> MergeResult:
        with self._locked():
            return self._merge(target_id, source_id)

    def rename_model_path(self, model_id: int, new_path: str) -> int:
        """
        Points a model at a new root-relative folder (after the folder was
        renamed on disk). If another model already owns that path, this model
        is merged into it instead.

        Returns the id of the model that owns `new_path` afterwards.
        """
        new_path = new_path.strip().replace("\\", "/").strip("/")
        if not new_path:
            raise ValueError("Path cannot be empty")

        with self._locked():
            current = self.db.get_model(model_id)
            if current is None:
                raise ModelNotFoundError(model_id)

            if current.path == new_path:
                return model_id

            existing = self.db.get_model_by_path(new_path)
            if existing is not None:
                logging.info(f"Path {new_path} already belongs to model {existing.id}; "
                             f"merging model {model_id} into it")
                self._merge(existing.id, model_id)
                return existing.id

            logging.info(f"Updating model {model_id} path from {current.path} to {new_path}")
            try:
                self.db.update_model_path(model_id, new_path)
                self.db.replace_file_path_prefix(model_id, current.path, new_path)
                if current.thumbnail_path and _is_under(current.thumbnail_path, current.path):
                    self.db.update_thumbnail(model_id, new_path + current.thumbnail_path[len(current.path):])
                self.db.commit()
            except (sqlite3.Error, UnicodeError) as e:
                self.db.rollback()
                raise DatabaseError(f"Failed to update path for model {model_id}: {e}") from e
            return model_id

    # --- Merge ---

    def _merge(self, target_id: int, source_id: int) -> MergeResult:
        target = self.db.get_model(target_id)
        if target is None:
            raise ModelNotFoundError(target_id, "target")
        source = self.db.get_model(source_id)
        if source is None:
            raise ModelNotFoundError(source_id, "source")

        if target_id == source_id:
            raise MergeError("Cannot merge a model into itself")

        if _is_under(target.path, source.path) or _is_under(source.path, target.path):
            raise MergeError(f"Cannot merge nested folders {source.path} and {target.path}")

        target_dir = self.root / target.path
        source_dir = self.root / source.path
        target_sub = PurePosixPath(target.path).name
        source_sub = PurePosixPath(source.path).name
        logging.info(f"[merge] target: {target_dir}, source: {source_dir}")

        result = MergeResult(target_id=target_id, source_id=source_id)
        try:
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FileOperationError(f"Failed to create target directory {target_dir}: {e}") from e

            self._relocate_target_files(target, target_dir, target_sub)
            relocated = self._relocate_source_files(source, target, source_dir, source_sub, result)

            source_thumb = source.thumbnail_path
            if source_thumb and _is_under(source_thumb, source.path):
                # Anything left under the source folder disappears with it
                source_thumb = relocated.get(source_thumb, "")

            self.db.merge_tags(source.id, target.id)
            self.db.copy_missing_metadata(source.id, target.id, source_thumb)
            self.db.delete_model(source.id)
            self.db.commit()
        except Exception as e:
            # Anything short of the commit leaves the catalog as it was before the merge
            self.db.rollback()
            logging.error(f"[merge] failed to merge model {source_id} into {target_id}: {e}")
            raise MergeError(f"Failed to merge model {source_id} into {target_id}: {e}") from e

        # Only after the commit: the catalog no longer references anything in here
        if source_dir.exists():
            try:
                shutil.rmtree(source_dir)
            except OSError as e:
                logging.warning(f"[merge] failed to remove source directory {source_dir}: {e}")

        logging.info(f"[merge] merged model {source_id} into {target_id} "
                     f"(moved={result.moved}, renamed={result.renamed}, "
                     f"duplicates={result.duplicates}, missing={result.missing})")
        return result

    def _place(self, src: Path, dest_rel: str) -> Tuple[str, str]:
        """
        Moves `src` to `dest_rel`, or decides it is a duplicate.
        Same size at the destination means duplicate; a different size gets
        a `_merged` name instead.
        """
        attempt = 0
        while True:
            candidate_rel = merged_name(dest_rel, attempt)
            candidate = self.root / candidate_rel
            if not candidate.exists():
                move_file(src, candidate)
                return candidate_rel, MOVED if attempt == 0 else RENAMED
            if candidate.is_file() and same_size(src, candidate):
                return candidate_rel, DUPLICATE
            attempt += 1

    def _relocate_target_files(self, target: Model, target_dir: Path, target_sub: str):
        loose = sorted(p for p in target_dir.iterdir() if p.is_file())
        if not loose:
            return

        for f in loose:
            old_rel = f"{target.path}/{f.name}"
            final_rel, outcome = self._place(f, f"{target.path}/{target_sub}/{f.name}")
            if outcome == DUPLICATE:
                logging.warning(f"[merge] {old_rel} already exists as {final_rel}; left in place")
                continue

            row = self.db.get_file_by_path(old_rel)
            if row is not None:
                self.db.update_file_path(row.id, final_rel)
            if target.thumbnail_path == old_rel:
                self.db.update_thumbnail(target.id, final_rel)

    def _relocate_source_files(self,
                               source: Model,
                               target: Model,
                               source_dir: Path,
                               source_sub: str,
                               result: MergeResult) -> Dict[str, str]:
        """Returns {old relative path: new relative path} for every file that now lives under the target."""
        rows = {mf.file_path: mf for mf in self.db.get_files_by_model(source.id)}
        relocated: Dict[str, str] = {}

        disk_files = self._walk_files(source_dir) if source_dir.is_dir() else []
        if not source_dir.is_dir():
            logging.warning(f"[merge] source directory {source_dir} does not exist")

        for f in tqdm(disk_files, desc="Merging", unit="file", disable=not self.show_progress):
            rel_in_source = f.relative_to(source_dir).as_posix()
            old_rel = f"{source.path}/{rel_in_source}"
            row = rows.pop(old_rel, None)

            try:
                final_rel, outcome = self._place(f, f"{target.path}/{source_sub}/{rel_in_source}")
            except FileNotFoundError:
                logging.warning(f"[merge] source file {f} not found on disk, skipping")
                if row is not None:
                    self.db.delete_file(row.id)
                result.missing += 1
                continue

            relocated[old_rel] = final_rel

            if outcome == DUPLICATE:
                result.duplicates += 1
                if row is not None:
                    self.db.delete_file(row.id)
                continue

            if outcome == RENAMED:
                result.renamed += 1
            else:
                result.moved += 1

            if row is not None:
                self.db.move_file_to_model(row.id, target.id, final_rel)
            elif f.suffix.lower() in config.MODEL_EXTS:
                self.db.add_file(ModelFile(
                    model_id=target.id,
                    file_path=final_rel,
                    file_name=PurePosixPath(final_rel).name,
                    file_ext=f.suffix.lower(),
                    file_size=(self.root / final_rel).stat().st_size,
                ))

        for row in rows.values():
            logging.warning(f"[merge] source file {row.file_path} not found on disk, dropping its record")
            self.db.delete_file(row.id)
            result.missing += 1

        return relocated

    def _walk_files(self, directory: Path) -> List[Path]:
        files = []
        for dirpath, dirnames, filenames in os.walk(directory):
            dirnames.sort()
            for name in sorted(filenames):
                files.append(Path(dirpath) / name)
        return files
