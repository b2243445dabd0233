import logging
from pathlib import Path
from typing import Optional

from .database.db import DBManager
from .database.ops import CatalogOps
from .database.settings import SettingsStore
from .exceptions import ModelNotFoundError
from .models import MergeResult
from .organization.merge import ModelMerger
from .scanning.scanner import CatalogScanner
from .scheduler import ScanScheduler


class ModelCatalogApp:
    """
    Wires the scanner, merge engine and scheduler to one library root and
    one catalog database. This is the surface an outer layer (CLI, web
    handlers) talks to.
    """
    def __init__(self, root: Path, db_path: Path, show_progress: bool = False):
        self.root = Path(root)
        self.db_manager = DBManager(db_path)
        conn = self.db_manager.connect()
        lock = self.db_manager.write_lock

        self.catalog = CatalogOps(conn)
        self.settings = SettingsStore(conn, lock)
        self.scanner = CatalogScanner(self.root, conn, self.settings, lock)
        self.merger = ModelMerger(self.root, conn, lock, show_progress=show_progress)
        self._scheduler: Optional[ScanScheduler] = None

    # --- Scanning ---

    def trigger_scan(self) -> bool:
        return self.scanner.trigger_scan()

    def scan(self):
        return self.scanner.scan()

    def status(self) -> dict:
        return self.scanner.status().as_dict()

    # --- Merge ---

    def merge(self, target_id: int, source_id: int) -> MergeResult:
        return self.merger.merge(target_id, source_id)

    def rename_model_path(self, model_id: int, new_path: str) -> int:
        return self.merger.rename_model_path(model_id, new_path)

    def merge_candidates(self, model_id: int, query: str = "", limit: int = 20):
        if self.catalog.get_model(model_id) is None:
            raise ModelNotFoundError(model_id)
        return self.catalog.find_merge_candidates(model_id, query, limit)

    # --- Scheduler ---

    def start_scheduler(self, interval: Optional[float] = None) -> ScanScheduler:
        if self._scheduler is None:
            if interval is None:
                self._scheduler = ScanScheduler(self.scanner, self.settings)
            else:
                self._scheduler = ScanScheduler(self.scanner, self.settings, interval)
        self._scheduler.start()
        return self._scheduler

    def stop_scheduler(self):
        if self._scheduler is not None:
            self._scheduler.stop()

    def close(self):
        self.stop_scheduler()
        if self.scanner.is_running():
            logging.info("Waiting for the running scan to finish...")
            self.scanner.wait()
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
