"""Load/save ``backup-settings.json`` with strict decoding and clamping."""

import json
import math
from pathlib import Path

from q3portal.core.filesystem_utils import atomic_write_json, parse_iso_utc
from q3portal.state import BackupSettings

MAX_COPIES_RANGE = (1, 30)
INTERVAL_DAYS_RANGE = (1, 365)
SETTINGS_FILENAME = "backup-settings.json"


def default_settings():
    return BackupSettings()


def clamp_int(value, default_value, minimum, maximum):
    """Floor a numeric value (or numeric string) into ``[minimum, maximum]``.

    Booleans, non-numeric text, NaN and infinities fall back to ``default_value``.
    """
    if isinstance(value, bool) or value is None:
        return default_value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default_value
    if not isinstance(value, (int, float)):
        return default_value
    if isinstance(value, float):
        if not math.isfinite(value):
            return default_value
        value = math.floor(value)
    return max(minimum, min(maximum, int(value)))


def decode_settings(payload):
    """Turn a parsed JSON document into ``BackupSettings``; raises ``ValueError`` if not an object."""
    if not isinstance(payload, dict):
        raise ValueError("backup settings must be a JSON object")
    defaults = default_settings()
    last_backup_at = payload.get("lastBackupAt")
    if parse_iso_utc(last_backup_at) is None:
        last_backup_at = None
    return BackupSettings(
        enabled=payload.get("enabled") is True,
        max_copies=clamp_int(payload.get("maxCopies"), defaults.max_copies, *MAX_COPIES_RANGE),
        interval_days=clamp_int(payload.get("intervalDays"), defaults.interval_days, *INTERVAL_DAYS_RANGE),
        last_backup_at=last_backup_at,
    )


def merge_settings(current, values):
    """Apply a partial update; ``lastBackupAt`` is never taken from ``values``."""
    values = values if isinstance(values, dict) else {}
    enabled = values.get("enabled")
    return BackupSettings(
        enabled=enabled if isinstance(enabled, bool) else current.enabled,
        max_copies=clamp_int(values.get("maxCopies"), current.max_copies, *MAX_COPIES_RANGE),
        interval_days=clamp_int(values.get("intervalDays"), current.interval_days, *INTERVAL_DAYS_RANGE),
        last_backup_at=current.last_backup_at,
    )


class SettingsStore:
    """File-backed settings document, created with defaults on first access."""

    def __init__(self, path, log_action):
        self.path = Path(path)
        self.log_action = log_action

    def save(self, settings):
        atomic_write_json(self.path, settings.to_dict())

    def load(self):
        """Read settings; a missing, unreadable or malformed document is reset to defaults."""
        if self.path.exists() or self.path.is_symlink():
            try:
                return decode_settings(json.loads(self.path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                self.log_action(
                    "backup-settings",
                    command=str(self.path),
                    rejection_message=f"reset to defaults: {exc}",
                )
        settings = default_settings()
        try:
            self.save(settings)
        except OSError as exc:
            # Defaults still apply in memory when the path cannot be replaced.
            self.log_action("backup-settings", command=str(self.path), rejection_message=f"save failed: {exc}")
        return settings
