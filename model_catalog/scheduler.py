import logging
import threading
from datetime import datetime
from typing import Optional

from . import config
from .database.settings import SettingsStore
from .scanning.scanner import CatalogScanner


class ScanScheduler:
    """
    Triggers one scan per day at the configured hour.

    Checks once per `interval` seconds; the settings are re-read on every
    check so changes apply without a restart.
    """
    def __init__(self,
                 scanner: CatalogScanner,
                 settings: SettingsStore,
                 interval: float = config.SCHEDULER_INTERVAL_SEC):
        self.scanner = scanner
        self.settings = settings
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="scan-scheduler", daemon=True)
        self._thread.start()
        logging.info("Scheduler started")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logging.info("Scheduler stopped")

    def _loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.check_and_run()
            except Exception as e:
                logging.error(f"Scheduled scan check failed: {e}")

    def check_and_run(self, now: Optional[datetime] = None) -> bool:
        """Returns True if a scan was triggered."""
        if not self.settings.get_bool(config.SETTING_AUTO_SCAN, True):
            return False

        now = now or datetime.now()
        schedule_hour = self.settings.get_int(config.SETTING_SCAN_HOUR, config.DEFAULT_SCAN_HOUR)
        if now.hour != schedule_hour:
            return False

        if self._scanned_today(now):
            return False

        if self.scanner.is_running():
            return False

        logging.info(f"Scheduled scan starting (hour={schedule_hour})")
        return self.scanner.trigger_scan()

    def _scanned_today(self, now: datetime) -> bool:
        last = self.settings.get(config.SETTING_LAST_SCAN)
        if not last:
            return False
        try:
            last_dt = datetime.fromisoformat(last)
        except ValueError:
            logging.warning(f"Unreadable {config.SETTING_LAST_SCAN} value: {last!r}")
            return False
        # Stored in UTC; compare calendar days in local time
        if last_dt.tzinfo is not None:
            last_dt = last_dt.astimezone().replace(tzinfo=None)
        return last_dt.date() == now.date()
