"""Single-line action/error log writers with request-aware client identification."""

from datetime import datetime
import os
import traceback
from flask import request, has_request_context

LOG_ROTATE_MAX_BYTES = 5 * 1024 * 1024
LOG_ROTATE_BACKUP_COUNT = 5
LOG_SOURCE_NAME = "portal"


def sanitize_log_fragment(text):
    """Normalize user/system text into a single safe log line fragment."""
    return " ".join(str(text or "").replace("\r", " ").replace("\n", " ").split()).strip()


def get_client_ip():
    """Resolve the caller IP from proxy headers, or the process name outside requests."""
    if not has_request_context():
        return LOG_SOURCE_NAME
    xff = (request.headers.get("X-Forwarded-For") or "").strip()
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    x_real_ip = (request.headers.get("X-Real-IP") or "").strip()
    if x_real_ip:
        return x_real_ip
    direct = (request.remote_addr or "").strip()
    return direct or LOG_SOURCE_NAME


def _rotate_log_file(path, max_bytes=LOG_ROTATE_MAX_BYTES, backup_count=LOG_ROTATE_BACKUP_COUNT):
    """Shift ``file`` -> ``file.1`` -> ... once the size threshold is reached."""
    if max_bytes <= 0 or backup_count <= 0:
        return
    try:
        if not path.exists() or path.stat().st_size < max_bytes:
            return
        for idx in range(backup_count - 1, 0, -1):
            src = path.with_name(f"{path.name}.{idx}")
            dst = path.with_name(f"{path.name}.{idx + 1}")
            if src.exists():
                os.replace(src, dst)
        os.replace(path, path.with_name(f"{path.name}.1"))
    except OSError:
        # Rotation failures must not break backup or status calls.
        pass


def format_action_line(timestamp, client_ip, action, command=None, rejection_message=None):
    """Build ``<ts> <ip> [portal/<action>] <command> rejected: <reason>``."""
    safe_client = sanitize_log_fragment(client_ip) or "unknown"
    safe_action = sanitize_log_fragment(action) or "unknown"
    parts = [f"{timestamp} <{safe_client}> [{LOG_SOURCE_NAME}/{safe_action}]"]
    safe_command = sanitize_log_fragment(command)
    if safe_command:
        parts.append(safe_command)
    safe_rejection = sanitize_log_fragment(rejection_message)
    if safe_rejection:
        parts.append(f"rejected: {safe_rejection}")
    return " ".join(parts).strip()


def make_log_action(display_tz, log_dir, log_file):
    """Build and return the structured action logger closure."""

    def log_action(action, command=None, rejection_message=None):
        """Append one event line; write failures are swallowed."""
        timestamp = datetime.now(tz=display_tz).strftime("%b %d %H:%M:%S")
        line = format_action_line(timestamp, get_client_ip(), action, command, rejection_message)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            _rotate_log_file(log_file)
            with log_file.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            pass

    return log_action


def make_log_exception(log_action):
    """Build an exception logger that emits through ``log_action``."""

    def log_exception(context, exc):
        """Log a compact exception summary with a truncated traceback."""
        exc_name = type(exc).__name__ if exc is not None else "Exception"
        exc_text = sanitize_log_fragment(str(exc) if exc is not None else "")
        tb = ""
        if exc is not None:
            tb = sanitize_log_fragment(" | ".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
        message = f"{context}: {exc_name}"
        if exc_text:
            message += f": {exc_text}"
        if tb:
            message += f" | traceback: {tb[:700]}"
        log_action("error", rejection_message=message)

    return log_exception
