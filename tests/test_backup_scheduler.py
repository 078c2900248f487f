import time
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock

from q3portal.services.backup_scheduler import BackupScheduler, backup_due
from q3portal.state import BackupSettings

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def _engine(settings, running=False):
    return SimpleNamespace(
        running=running,
        load_settings=Mock(return_value=settings),
        create_backup_now=Mock(return_value={"ok": True, "filename": "backup-x.zip", "warnings": []}),
    )


class BackupDueTests(unittest.TestCase):
    def test_disabled_never_due(self):
        self.assertFalse(backup_due(BackupSettings(enabled=False), NOW))

    def test_first_backup_is_due(self):
        self.assertTrue(backup_due(BackupSettings(last_backup_at=None), NOW))
        self.assertTrue(backup_due(BackupSettings(last_backup_at="garbage"), NOW))

    def test_interval_boundary(self):
        settings = BackupSettings(interval_days=2, last_backup_at="2026-10-16T12:00:00.001Z")
        self.assertFalse(backup_due(settings, NOW))
        settings.last_backup_at = "2026-10-16T12:00:00.000Z"
        self.assertTrue(backup_due(settings, NOW))


class BackupSchedulerTests(unittest.TestCase):
    def test_tick_runs_due_backup(self):
        engine = _engine(BackupSettings())
        scheduler = BackupScheduler(engine, Mock(), now=lambda: NOW)
        self.assertEqual(scheduler.tick()["filename"], "backup-x.zip")
        engine.create_backup_now.assert_called_once_with()

    def test_tick_skips_when_not_due(self):
        engine = _engine(BackupSettings(last_backup_at="2026-10-18T11:00:00.000Z"))
        scheduler = BackupScheduler(engine, Mock(), now=lambda: NOW)
        self.assertIsNone(scheduler.tick())
        engine.create_backup_now.assert_not_called()

    def test_tick_skips_while_running(self):
        engine = _engine(BackupSettings(), running=True)
        scheduler = BackupScheduler(engine, Mock(), now=lambda: NOW)
        self.assertIsNone(scheduler.tick())
        engine.load_settings.assert_not_called()
        engine.create_backup_now.assert_not_called()

    def test_start_is_idempotent_and_stop_joins(self):
        engine = _engine(BackupSettings(enabled=False))
        scheduler = BackupScheduler(engine, Mock(), tick_seconds=0.01)
        self.assertTrue(scheduler.start())
        self.addCleanup(scheduler.stop, 1)
        self.assertFalse(scheduler.start())
        self.assertTrue(scheduler.started)
        scheduler.stop(1)
        self.assertFalse(scheduler.started)

    def test_loop_logs_tick_errors_and_keeps_running(self):
        log_exception = Mock()
        engine = _engine(BackupSettings())
        engine.load_settings.side_effect = [OSError("disk full"), BackupSettings(enabled=False)] + [
            BackupSettings(enabled=False)
        ] * 1000
        scheduler = BackupScheduler(engine, log_exception, tick_seconds=0.005)
        scheduler.start()
        self.addCleanup(scheduler.stop, 1)
        for _ in range(200):
            if engine.load_settings.call_count >= 2:
                break
            time.sleep(0.01)
        scheduler.stop(1)
        log_exception.assert_called_once()
        self.assertEqual(log_exception.call_args[0][0], "backup_scheduler_tick")


if __name__ == "__main__":
    unittest.main()
