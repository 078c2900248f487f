"""Backup creation, rotation, validation and restore for the portal data directory."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
import re
import shutil
import tempfile
import threading

from q3portal.core.filesystem_utils import (
    file_mtime_iso,
    is_safe_zip_filename,
    iso_utc,
    parse_iso_utc,
    safe_file_in_dir,
    sanitize_upload_name,
)
from q3portal.services.backup_manifest import validate_backup_extracted_content, write_backup_manifest
from q3portal.services.backup_scheduler import BackupScheduler
from q3portal.services.backup_settings import SETTINGS_FILENAME, SettingsStore, merge_settings
from q3portal.services.database_dump import create_db_dump, restore_db_dump
from q3portal.services.platform_commands import run_command, unzip_file, zip_directory
from q3portal.state import SCOPE_DEFAULT, SCOPE_MANUAL, BackupEntry

BACKUP_RUNNING_MESSAGE = "Ya hay un backup en ejecución"
CONFIRM_REQUIRED = "CONFIRM_REQUIRED"
INVALID_FILENAME = "INVALID_FILENAME"
BACKUP_NOT_FOUND = "BACKUP_NOT_FOUND"

BACKUPS_DIRNAME = "backups"
BACKUPS_MANUAL_DIRNAME = "backups-manual"
BACKUPS_UPLOAD_TEMP_DIRNAME = "backups-upload-temp"
# Engine-owned folders inside the data dir that never go into an archive.
EXCLUDED_DATA_DIRS = frozenset({BACKUPS_DIRNAME, BACKUPS_MANUAL_DIRNAME, BACKUPS_UPLOAD_TEMP_DIRNAME})
ARCHIVE_ROOT_DIRNAME = "backup"

_SUFFIXED_NAME_RE = re.compile(r"^(backup-\d{8}-\d{6})(?:-(\d+))?\.zip$")


def backup_result(ok, filename=None, warnings=None, error=None):
    """Build the ``{ok, filename?, warnings, error?}`` payload."""
    result = {"ok": bool(ok), "warnings": list(warnings or [])}
    if filename:
        result["filename"] = filename
    if error:
        result["error"] = error
    return result


def _error_text(exc):
    return str(exc).strip() or type(exc).__name__


def list_backup_entries_from_dir(dir_path, scope, protected_from_rotation):
    """Return ``*.zip`` entries of one directory, newest first."""
    dir_path = Path(dir_path)
    if not dir_path.is_dir():
        return []
    entries = []
    for path in dir_path.iterdir():
        if not path.name.lower().endswith(".zip"):
            continue
        try:
            stat = path.stat()
        except OSError:
            continue
        if not path.is_file():
            continue
        entries.append(BackupEntry(
            scope=scope,
            protected_from_rotation=protected_from_rotation,
            filename=path.name,
            full_path=str(path),
            size_bytes=stat.st_size,
            created_at=file_mtime_iso(stat),
            created_at_ts=stat.st_mtime,
        ))
    _sort_newest_first(entries)
    return entries


def _creation_order_key(filename):
    """Order names so a ``-N`` collision suffix sorts after its base name and ``-10`` after ``-9``."""
    match = _SUFFIXED_NAME_RE.match(filename)
    if not match:
        return filename, 0
    return match.group(1), int(match.group(2) or 0)


def _sort_newest_first(entries):
    entries.sort(
        key=lambda item: (item.created_at_ts, _creation_order_key(item.filename)),
        reverse=True,
    )


class BackupEngine:
    """Owns ``backups/``, ``backups-manual/`` and the settings document.

    One instance per process; ``running`` and the scheduler thread live here.
    """

    def __init__(
        self,
        *,
        data_dir,
        env_file,
        database_url,
        display_tz,
        log_action,
        log_exception,
        temp_dir=None,
        zip_tool=None,
        unzip_tool=None,
        command_runner=run_command,
        now=None,
        scheduler_tick_seconds=60,
    ):
        self.data_dir = Path(data_dir)
        self.backups_dir = self.data_dir / BACKUPS_DIRNAME
        self.manual_dir = self.data_dir / BACKUPS_MANUAL_DIRNAME
        self.upload_temp_dir = self.data_dir / BACKUPS_UPLOAD_TEMP_DIRNAME
        self.env_file = Path(env_file) if env_file else None
        self.database_url = database_url or ""
        self.display_tz = display_tz
        self.log_action = log_action
        self.log_exception = log_exception
        self.temp_dir = temp_dir
        self.zip_tool = zip_tool
        self.unzip_tool = unzip_tool
        self.command_runner = command_runner
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.settings_store = SettingsStore(self.data_dir / SETTINGS_FILENAME, log_action)
        self._run_lock = threading.Lock()
        self.scheduler = BackupScheduler(self, log_exception, tick_seconds=scheduler_tick_seconds)

    @property
    def running(self):
        return self._run_lock.locked()

    def ensure_dirs(self):
        for path in (self.data_dir, self.backups_dir, self.manual_dir, self.upload_temp_dir):
            path.mkdir(parents=True, exist_ok=True)

    def load_settings(self):
        self.ensure_dirs()
        return self.settings_store.load()

    def _scope_dir(self, scope):
        return self.manual_dir if scope == SCOPE_MANUAL else self.backups_dir

    def list_backup_entries(self):
        """Entries from both scopes, newest first."""
        self.ensure_dirs()
        merged = list_backup_entries_from_dir(self.backups_dir, SCOPE_DEFAULT, False)
        merged.extend(list_backup_entries_from_dir(self.manual_dir, SCOPE_MANUAL, True))
        _sort_newest_first(merged)
        return merged

    def get_backup_status(self):
        """Settings plus ``running``, ``copiesAvailable``, ``latestBackup``, ``nextBackupAt``."""
        settings = self.load_settings()
        entries = self.list_backup_entries()
        last_backup = parse_iso_utc(settings.last_backup_at)
        next_backup_at = None
        if settings.enabled and last_backup is not None:
            next_backup_at = iso_utc(last_backup + timedelta(days=settings.interval_days))
        status = settings.to_dict()
        status.update({
            "running": self.running,
            "copiesAvailable": len(entries),
            "latestBackup": entries[0].to_dict() if entries else None,
            "nextBackupAt": next_backup_at,
        })
        return status

    def list_backups(self):
        return [entry.to_dict(include_path=False) for entry in self.list_backup_entries()]

    def update_backup_settings(self, values):
        """Merge ``enabled``/``maxCopies``/``intervalDays`` and return the new status."""
        current = self.load_settings()
        updated = merge_settings(current, values)
        self.settings_store.save(updated)
        self.log_action(
            "backup-settings",
            command=f"enabled={updated.enabled} maxCopies={updated.max_copies} intervalDays={updated.interval_days}",
        )
        return self.get_backup_status()

    def set_backups_enabled(self, enabled):
        current = self.load_settings()
        current.enabled = bool(enabled)
        self.settings_store.save(current)
        self.log_action("backup-settings", command=f"enabled={current.enabled}")
        return self.get_backup_status()

    def rotate_backups(self, max_copies):
        """Delete rotated archives beyond the ``max_copies`` newest; manual ones are untouched."""
        entries = list_backup_entries_from_dir(self.backups_dir, SCOPE_DEFAULT, False)
        removed = []
        for item in entries[max(0, max_copies):]:
            try:
                Path(item.full_path).unlink(missing_ok=True)
                removed.append(item.filename)
            except OSError as exc:
                self.log_exception("rotate_backups", exc)
        if removed:
            self.log_action("backup-rotate", command=", ".join(removed))
        return removed

    def _next_backup_filename(self):
        stamp = self._now().astimezone(self.display_tz).strftime("%Y%m%d-%H%M%S")
        filename = f"backup-{stamp}.zip"
        suffix = 1
        while (self.backups_dir / filename).exists():
            filename = f"backup-{stamp}-{suffix}.zip"
            suffix += 1
        return filename

    def _ignore_engine_dirs(self, directory, names):
        if Path(directory) != self.data_dir:
            return set()
        return {name for name in names if name in EXCLUDED_DATA_DIRS}

    def _stage_backup(self, stage_root, warnings):
        data_target = stage_root / "data"
        if self.data_dir.is_dir():
            shutil.copytree(self.data_dir, data_target, ignore=self._ignore_engine_dirs)
        else:
            data_target.mkdir(parents=True)
        if self.env_file is not None and self.env_file.is_file():
            shutil.copy2(self.env_file, stage_root / ".env")
        create_db_dump(self.database_url, stage_root / "database.sql", warnings, runner=self.command_runner)
        write_backup_manifest(stage_root)

    def create_backup_now(self):
        """Snapshot data dir, ``.env`` and database into a rotated archive.

        Only one backup runs at a time; a concurrent call returns immediately.
        """
        if not self._run_lock.acquire(blocking=False):
            return backup_result(False, error=BACKUP_RUNNING_MESSAGE)

        warnings = []
        temp_root = None
        zip_path = None
        try:
            self.ensure_dirs()
            temp_root = Path(tempfile.mkdtemp(prefix="q3portal-backup-", dir=self.temp_dir))
            stage_root = temp_root / ARCHIVE_ROOT_DIRNAME
            stage_root.mkdir()
            self._stage_backup(stage_root, warnings)

            filename = self._next_backup_filename()
            zip_path = self.backups_dir / filename
            zip_directory(stage_root, zip_path, tool=self.zip_tool)

            settings = self.settings_store.load()
            settings.last_backup_at = iso_utc(self._now())
            self.settings_store.save(settings)
            self.rotate_backups(settings.max_copies)

            self.log_action("backup-create", command=filename)
            return backup_result(True, filename=filename, warnings=warnings)
        except Exception as exc:
            if zip_path is not None:
                zip_path.unlink(missing_ok=True)
            self.log_exception("create_backup_now", exc)
            self.log_action("backup-create", rejection_message=_error_text(exc))
            return backup_result(False, warnings=warnings, error=_error_text(exc))
        finally:
            if temp_root is not None:
                shutil.rmtree(temp_root, ignore_errors=True)
            self._run_lock.release()

    def resolve_backup_path(self, scope, filename):
        """Return the archive path within ``scope`` or ``None`` for unsafe/missing names."""
        if not is_safe_zip_filename(filename):
            return None
        return safe_file_in_dir(self._scope_dir(scope), filename)

    def get_backup_zip_for_download(self, scope, filename):
        path = self.resolve_backup_path(scope, filename)
        return str(path) if path is not None else None

    def _extract_and_validate(self, zip_path, temp_root, missing_root_error):
        """Extract into ``temp_root`` and validate; returns ``(backup_root, error)``."""
        unzip_file(zip_path, temp_root, tool=self.unzip_tool)
        extracted_root = Path(temp_root) / ARCHIVE_ROOT_DIRNAME
        if not extracted_root.is_dir():
            return None, missing_root_error
        valid, error = validate_backup_extracted_content(extracted_root)
        if not valid:
            return None, error or "Backup inválido"
        return extracted_root, None

    def restore_backup_from_scope(self, scope, filename, confirm_restore):
        """Validate an archive and copy it over the live data dir and database."""
        if confirm_restore is not True:
            return backup_result(False, error=CONFIRM_REQUIRED)
        if not is_safe_zip_filename(filename):
            return backup_result(False, error=INVALID_FILENAME)
        backup_path = self.resolve_backup_path(scope, filename)
        if backup_path is None:
            return backup_result(False, error=BACKUP_NOT_FOUND)

        warnings = []
        temp_root = None
        try:
            temp_root = Path(tempfile.mkdtemp(prefix="q3portal-restore-", dir=self.temp_dir))
            extracted_root, error = self._extract_and_validate(
                backup_path,
                temp_root,
                "Estructura inválida: la raíz backup/ no existe",
            )
            if error:
                self.log_action("backup-restore", command=f"{scope}/{filename}", rejection_message=error)
                return backup_result(False, warnings=warnings, error=error)

            shutil.copytree(extracted_root / "data", self.data_dir, dirs_exist_ok=True)
            restore_db_dump(
                self.database_url,
                extracted_root / "database.sql",
                warnings,
                runner=self.command_runner,
            )
            self.log_action("backup-restore", command=f"{scope}/{filename}")
            return backup_result(True, warnings=warnings)
        except Exception as exc:
            self.log_exception("restore_backup_from_scope", exc)
            self.log_action("backup-restore", command=f"{scope}/{filename}", rejection_message=_error_text(exc))
            return backup_result(False, warnings=warnings, error=_error_text(exc))
        finally:
            if temp_root is not None:
                shutil.rmtree(temp_root, ignore_errors=True)

    def restore_backup(self, filename, confirm_restore):
        return self.restore_backup_from_scope(SCOPE_DEFAULT, filename, confirm_restore)

    def _manual_backup_name(self, temp_file_path, original_name):
        safe_name = sanitize_upload_name(original_name or temp_file_path.name)
        if safe_name.lower().endswith(".zip"):
            safe_name = safe_name[:-4] + ".zip"
        else:
            safe_name = f"{safe_name}.zip"
        millis = int(self._now().timestamp() * 1000)
        return f"{millis}-{safe_name}"

    def register_uploaded_manual_backup(self, temp_file_path, original_name):
        """Move an upload into ``backups-manual/`` and keep it only if it validates."""
        self.ensure_dirs()
        temp_file_path = Path(temp_file_path)
        final_name = self._manual_backup_name(temp_file_path, original_name)
        final_path = self.manual_dir / final_name

        temp_root = None
        try:
            shutil.move(str(temp_file_path), str(final_path))
            temp_root = Path(tempfile.mkdtemp(prefix="q3portal-validate-upload-", dir=self.temp_dir))
            _, error = self._extract_and_validate(
                final_path,
                temp_root,
                "Upload rechazado: debe contener carpeta raíz backup/",
            )
            if error:
                final_path.unlink(missing_ok=True)
                self.log_action("backup-upload", command=final_name, rejection_message=error)
                return backup_result(False, error=error)
            self.log_action("backup-upload", command=final_name)
            return backup_result(True, filename=final_name)
        except Exception as exc:
            final_path.unlink(missing_ok=True)
            self.log_exception("register_uploaded_manual_backup", exc)
            self.log_action("backup-upload", command=final_name, rejection_message=_error_text(exc))
            return backup_result(False, error=_error_text(exc))
        finally:
            if temp_root is not None:
                shutil.rmtree(temp_root, ignore_errors=True)

    def start_backups_scheduler(self):
        """Start the once-per-process polling scheduler."""
        self.ensure_dirs()
        return self.scheduler.start()
