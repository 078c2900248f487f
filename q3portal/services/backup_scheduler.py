"""Coarse polling scheduler that triggers automatic backups."""
import threading
from datetime import datetime, timedelta, timezone

from q3portal.core.filesystem_utils import parse_iso_utc


def backup_due(settings, now):
    """Return True when a backup should run now under ``settings``."""
    if not settings.enabled:
        return False
    last = parse_iso_utc(settings.last_backup_at)
    if last is None:
        return True
    return now - last >= timedelta(days=settings.interval_days)


class BackupScheduler:
    """One daemon thread per engine; each tick may call ``create_backup_now``.

    Drift is bounded by ``tick_seconds``.
    """

    def __init__(self, engine, log_exception, tick_seconds=60, now=None):
        self.engine = engine
        self.log_exception = log_exception
        self.tick_seconds = tick_seconds
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._start_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def started(self):
        return self._thread is not None and self._thread.is_alive()

    def tick(self):
        """Run one scheduling decision; returns the backup result or ``None``."""
        if self.engine.running:
            return None
        settings = self.engine.load_settings()
        if not backup_due(settings, self._now()):
            return None
        return self.engine.create_backup_now()

    def _loop(self):
        while not self._stop_event.wait(self.tick_seconds):
            try:
                self.tick()
            except Exception as exc:
                self.log_exception("backup_scheduler_tick", exc)

    def start(self):
        """Start the loop once; later calls are no-ops. Returns True if this call started it."""
        with self._start_lock:
            if self._thread is not None:
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._loop, daemon=True, name="backup-scheduler")
            self._thread.start()
            return True

    def stop(self, timeout=None):
        with self._start_lock:
            self._stop_event.set()
            thread = self._thread
            if thread is not None:
                thread.join(timeout)
            self._thread = None
