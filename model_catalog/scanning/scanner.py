import os
import sqlite3
import logging
import threading
from contextlib import nullcontext
from pathlib import Path
from typing import List, Optional

from .. import config
from ..database.ops import CatalogOps, utc_now_iso
from ..database.settings import SettingsStore
from ..models import Category, DirKind, Model, ModelFile, ScanStatus
from .rules import build_ignored_regex, classify_directory, find_thumbnail, list_subdirs, parse_folder_set
from .status import ScanStatusTracker

# Errors that fail a single category/model/file write. Names that are not
# valid UTF-8 (surrogate-escaped on POSIX) fail when bound as SQL parameters.
CATALOG_WRITE_ERRORS = (sqlite3.Error, UnicodeError)


class CatalogScanner:
    """
    Mirrors the library folder tree into the catalog.

    One pass: rebuild the category tree, upsert every model leaf found on
    disk, then delete the models that were not seen (their watermark is
    older than the pass start).
    """
    def __init__(self,
                 root: Path,
                 conn: sqlite3.Connection,
                 settings: Optional[SettingsStore] = None,
                 write_lock: Optional[threading.Lock] = None):
        self.root = Path(root)
        self.db = CatalogOps(conn)
        self._lock = write_lock
        self.settings = settings or SettingsStore(conn, write_lock)
        self._status = ScanStatusTracker()
        self._thread: Optional[threading.Thread] = None

        # Loaded at the start of each pass
        self.ignored_re = build_ignored_regex(config.DEFAULT_IGNORED_FOLDERS)
        self.min_depth = config.DEFAULT_MIN_DEPTH
        self.excluded: set[str] = set()

    # --- Public API ---

    def status(self) -> ScanStatus:
        return self._status.snapshot()

    def is_running(self) -> bool:
        return self._status.is_running()

    def trigger_scan(self) -> bool:
        """
        Starts a pass in a background thread.
        Returns False (and does nothing) if a pass is already running.
        """
        if not self._status.try_start():
            logging.info("Scan already running; trigger ignored.")
            return False
        self._thread = threading.Thread(target=self._run_pass, name="catalog-scan", daemon=True)
        self._thread.start()
        return True

    def scan(self) -> Optional[ScanStatus]:
        """Runs a pass in the calling thread. Returns None if one is already running."""
        if not self._status.try_start():
            logging.info("Scan already running; skipping.")
            return None
        self._run_pass()
        return self._status.snapshot()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Waits for the background pass, if any. Returns True once it has finished."""
        if self._thread is not None:
            self._thread.join(timeout)
            return not self._thread.is_alive()
        return True

    # --- Pass ---

    def _locked(self):
        return self._lock if self._lock is not None else nullcontext()

    def _run_pass(self):
        scan_start = utc_now_iso()
        message = "Scan complete."
        try:
            self._load_settings()
            logging.info(f"Scanning {self.root} (min depth={self.min_depth}, excluded={sorted(self.excluded)})")

            with self._locked():
                total = self.db.count_models()
                try:
                    self.db.delete_all_categories()
                    self.db.commit()
                except sqlite3.Error as e:
                    self.db.rollback()
                    logging.error(f"Failed to clear existing categories: {e}")

            def _begin(st: ScanStatus):
                st.total = total
                st.message = "Scanning directories..."
            self._status.update(_begin)

            for child in list_subdirs(self.root):
                self._scan_dir(child, 0, None)

            self._status.set_message("Cleaning up removed models...")
            self._remove_stale(scan_start)

            st = self._status.snapshot()
            message = f"Scan complete. {st.new} new, {st.removed} removed."
            logging.info(message)
        except Exception as e:
            logging.exception("Scan failed.")
            message = f"Scan failed: {e}"
            # Never let a later commit persist a half-written unit
            with self._locked():
                self.db.rollback()
        finally:
            # Must precede finish(): close() only waits for a running pass
            try:
                self.settings.set(config.SETTING_LAST_SCAN, utc_now_iso())
            except sqlite3.Error as e:
                logging.error(f"Failed to record last scan time: {e}")
            self._status.finish(message)

    def _load_settings(self):
        ignored_csv = self.settings.get_string(config.SETTING_IGNORED_FOLDERS, config.DEFAULT_IGNORED_FOLDERS)
        self.ignored_re = build_ignored_regex(ignored_csv)
        self.min_depth = max(0, self.settings.get_int(config.SETTING_MIN_DEPTH, config.DEFAULT_MIN_DEPTH))
        self.excluded = parse_folder_set(self.settings.get_string(config.SETTING_EXCLUDED_FOLDERS, ""))

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _scan_dir(self, path: Path, depth: int, parent_category_id: Optional[int]):
        rel_path = self._rel(path)
        result = classify_directory(path, depth, self.min_depth, self.ignored_re, self.excluded)

        if result.kind is DirKind.EXCLUDED:
            logging.info(f"Skipping excluded folder: {rel_path}")
            return

        current_category_id = parent_category_id
        if result.kind is DirKind.CATEGORY:
            current_category_id = self._ensure_category(path, rel_path, depth, parent_category_id)
            if current_category_id is None:
                # Children cannot be linked without their category
                return
        elif result.kind is DirKind.MODEL_LEAF:
            logging.debug(f"Model leaf {rel_path} ({result.rule})")
            self._process_model(path, rel_path, result.files, current_category_id)
            return

        for sub in list_subdirs(path):
            self._scan_dir(sub, depth + 1, current_category_id)

    def _ensure_category(self, path: Path, rel_path: str, depth: int, parent_id: Optional[int]) -> Optional[int]:
        with self._locked():
            try:
                existing = self.db.get_category_by_path(rel_path)
                if existing:
                    return existing.id
                cat = Category(name=path.name, path=rel_path, depth=depth, parent_id=parent_id)
                cat_id = self.db.create_category(cat)
                self.db.commit()
                return cat_id
            except CATALOG_WRITE_ERRORS as e:
                self.db.rollback()
                logging.error(f"Failed to create category {rel_path!r}: {e}")
                return None

    def _process_model(self, path: Path, rel_path: str, files: List[Path], category_id: Optional[int]):
        def _progress(st: ScanStatus):
            st.processed += 1
            st.message = f"Processing: {rel_path}"
        self._status.update(_progress)

        with self._locked():
            try:
                existing = self.db.get_model_by_path(rel_path)
                if existing:
                    self._refresh_model(existing, path, category_id)
                    self.db.commit()
                    return
            except CATALOG_WRITE_ERRORS as e:
                self.db.rollback()
                logging.error(f"Failed to refresh model {rel_path!r}: {e}")
                return

        file_rows = [self._file_row(f) for f in files]
        thumb = find_thumbnail(path)

        with self._locked():
            try:
                model = Model(
                    name=path.name,
                    path=rel_path,
                    category_id=category_id,
                    thumbnail_path=self._rel(thumb) if thumb else "",
                )
                model_id = self.db.create_model(model)
                for mf in file_rows:
                    mf.model_id = model_id
                    try:
                        self.db.add_file(mf)
                    except CATALOG_WRITE_ERRORS as e:
                        logging.warning(f"Skipping file {mf.file_path!r}: {e}")
                self.db.commit()
            except CATALOG_WRITE_ERRORS as e:
                self.db.rollback()
                logging.error(f"Failed to create model {rel_path!r}: {e}")
                return

        logging.info(f"New model: {rel_path} ({len(file_rows)} files)")

        def _count_new(st: ScanStatus):
            st.new += 1
        self._status.update(_count_new)

    def _refresh_model(self, existing: Model, path: Path, category_id: Optional[int]):
        self.db.mark_scanned(existing.id)

        if existing.category_id != category_id:
            self.db.set_model_category(existing.id, category_id)
            logging.debug(f"Updated category for {existing.path}")

        if not existing.thumbnail_path:
            thumb = find_thumbnail(path)
            if thumb:
                self.db.update_thumbnail(existing.id, self._rel(thumb))

    def _file_row(self, f: Path) -> ModelFile:
        try:
            size = f.stat().st_size
        except OSError:
            size = 0
        return ModelFile(
            model_id=0,
            file_path=self._rel(f),
            file_name=f.name,
            file_ext=os.path.splitext(f.name)[1].lower(),
            file_size=size,
        )

    def _remove_stale(self, scan_start: str):
        with self._locked():
            try:
                removed = self.db.delete_stale_models(scan_start)
                self.db.commit()
            except sqlite3.Error as e:
                self.db.rollback()
                logging.error(f"Error deleting stale models: {e}")
                return

        if removed > 0:
            logging.info(f"Removed {removed} stale models")

        def _count_removed(st: ScanStatus):
            st.removed = removed
        self._status.update(_count_removed)
