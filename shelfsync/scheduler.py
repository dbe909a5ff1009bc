from __future__ import annotations

import logging
import threading
from typing import Optional

from shelfsync.config_manager import ConfigManager
from shelfsync.models import MIN_INTERVAL_SECONDS, SyncConfig
from shelfsync.sync_engine import SyncEngine


logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="shelfsync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    def _run(self, trigger: str) -> None:
        try:
            result = self.sync_engine.run_once(trigger=trigger)
        except Exception:
            logger.exception("Sync run (%s) crashed", trigger)
            return
        logger.info("Sync run (%s) finished with status %s: %s", trigger, result.status, result.message)

    def _interval_seconds(self, fallback: int) -> int:
        try:
            config = self.config_manager.load()
        except Exception:
            logger.exception("Unable to load config, keeping interval of %ss", fallback)
            return fallback
        return max(MIN_INTERVAL_SECONDS, int(config.sync.interval_seconds))

    def _loop(self) -> None:
        self._run("startup")

        interval_seconds = SyncConfig().interval_seconds
        while not self._stop_event.is_set():
            interval_seconds = self._interval_seconds(interval_seconds)
            manual = self._manual_trigger_event.wait(timeout=interval_seconds)
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            self._run("manual" if manual else "scheduled")
