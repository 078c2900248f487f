"""Flask route registration for server status, RCON and backup administration."""
from pathlib import Path
import time

from flask import jsonify, request, send_file

from q3portal.core.filesystem_utils import sanitize_upload_name
from q3portal.core.security import is_admin_request
from q3portal.services.quake_status import RconError
from q3portal.state import SCOPE_DEFAULT, SCOPE_MANUAL


def _normalize_scope(value):
    return SCOPE_MANUAL if value == SCOPE_MANUAL else SCOPE_DEFAULT


def _as_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def register_routes(app, state):
    """Register all portal core routes on ``app``.

    ``state`` carries ``prober``, ``backup_engine``, ``admin_token``,
    ``log_action``, ``log_exception`` and the response helpers.
    """
    prober = state["prober"]
    engine = state["backup_engine"]
    responses = state["responses"]

    def _is_admin():
        return is_admin_request(request, state["admin_token"])

    # Route: /api/server/status
    @app.route("/api/server/status")
    def server_status():
        """Cached game-server status."""
        try:
            return jsonify(prober.get_server_status().to_dict())
        except Exception as exc:
            state["log_exception"]("server_status", exc)
            return responses.offline_status_response("Failed to fetch server status")

    # Route: /api/server/refresh
    @app.route("/api/server/refresh", methods=["POST"])
    def server_refresh():
        """Drop the cached status and query again."""
        try:
            return jsonify(prober.refresh_server_status().to_dict())
        except Exception as exc:
            state["log_exception"]("server_refresh", exc)
            return responses.offline_status_response("Failed to refresh server status")

    # Route: /api/admin/status
    @app.route("/api/admin/status")
    def admin_status():
        return jsonify({"enabled": _is_admin()})

    # Route: /api/admin/server/rcon
    @app.route("/api/admin/server/rcon", methods=["POST"])
    def server_rcon():
        if not _is_admin():
            state["log_action"]("rcon", rejection_message="Admin token required.")
            return responses.admin_rejected_response()
        body = request.get_json(silent=True) or {}
        command = str(body.get("command") or request.form.get("command") or "").strip()
        if not command:
            return responses.bad_request_response("Command is required.")
        try:
            reply = prober.send_rcon_command(command)
        except RconError as exc:
            return responses.rcon_failed_response(str(exc))
        return jsonify({"ok": True, "response": reply})

    # Route: /api/admin/backups/status
    @app.route("/api/admin/backups/status")
    def backups_status():
        if not _is_admin():
            return responses.admin_rejected_response()
        try:
            return jsonify({"status": engine.get_backup_status()})
        except Exception as exc:
            state["log_exception"]("backups_status", exc)
            return responses.internal_error_response("Failed to fetch backups status")

    # Route: /api/admin/backups
    @app.route("/api/admin/backups")
    def backups_list():
        if not _is_admin():
            return responses.admin_rejected_response()
        try:
            return jsonify({"backups": engine.list_backups()})
        except Exception as exc:
            state["log_exception"]("backups_list", exc)
            return responses.internal_error_response("Failed to list backups")

    # Route: /api/admin/backups/settings
    @app.route("/api/admin/backups/settings", methods=["PUT"])
    def backups_settings():
        if not _is_admin():
            return responses.admin_rejected_response()
        try:
            status = engine.update_backup_settings(request.get_json(silent=True) or {})
        except Exception as exc:
            state["log_exception"]("backups_settings", exc)
            return responses.bad_request_response("Failed to update backup settings")
        return jsonify({"status": status})

    # Route: /api/admin/backups/start
    @app.route("/api/admin/backups/start", methods=["POST"])
    def backups_start():
        if not _is_admin():
            return responses.admin_rejected_response()
        try:
            return jsonify({"status": engine.set_backups_enabled(True)})
        except Exception as exc:
            state["log_exception"]("backups_start", exc)
            return responses.internal_error_response("Failed to start backups")

    # Route: /api/admin/backups/stop
    @app.route("/api/admin/backups/stop", methods=["POST"])
    def backups_stop():
        if not _is_admin():
            return responses.admin_rejected_response()
        try:
            return jsonify({"status": engine.set_backups_enabled(False)})
        except Exception as exc:
            state["log_exception"]("backups_stop", exc)
            return responses.internal_error_response("Failed to stop backups")

    # Route: /api/admin/backups/run
    @app.route("/api/admin/backups/run", methods=["POST"])
    def backups_run():
        if not _is_admin():
            return responses.admin_rejected_response()
        result = engine.create_backup_now()
        if not result.get("ok"):
            return responses.backup_result_response(result)
        return responses.backup_result_response(result, status=engine.get_backup_status())

    # Route: /api/admin/backups/restore
    @app.route("/api/admin/backups/restore", methods=["POST"])
    def backups_restore():
        if not _is_admin():
            state["log_action"]("backup-restore", rejection_message="Admin token required.")
            return responses.admin_rejected_response()
        body = request.get_json(silent=True) or {}
        filename = str(body.get("filename") or "").strip()
        scope = _normalize_scope(body.get("scope"))
        confirm_restore = _as_bool(body.get("confirmRestore", False))
        result = engine.restore_backup_from_scope(scope, filename, confirm_restore)
        return responses.backup_result_response(result)

    # Route: /api/admin/backups/download/<scope>/<filename>
    @app.route("/api/admin/backups/download/<scope>/<filename>")
    def backups_download(scope, filename):
        if not _is_admin():
            return responses.admin_rejected_response()
        full_path = engine.get_backup_zip_for_download(_normalize_scope(scope), (filename or "").strip())
        if full_path is None:
            return responses.not_found_response("Backup not found")
        state["log_action"]("backup-download", command=f"{scope}/{filename}")
        return send_file(full_path, mimetype="application/zip", as_attachment=True, download_name=Path(full_path).name)

    # Route: /api/admin/backups/upload
    @app.route("/api/admin/backups/upload", methods=["POST"])
    def backups_upload():
        if not _is_admin():
            state["log_action"]("backup-upload", rejection_message="Admin token required.")
            return responses.admin_rejected_response()
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            return responses.bad_request_response("No backup file provided")
        original_name = upload.filename
        if Path(original_name).suffix.lower() != ".zip":
            return responses.bad_request_response("Solo se permite archivo .zip")

        engine.ensure_dirs()
        safe_base = sanitize_upload_name(Path(original_name).stem) or "backup"
        temp_path = engine.upload_temp_dir / f"{int(time.time() * 1000)}-{safe_base}.zip"
        try:
            upload.save(str(temp_path))
            result = engine.register_uploaded_manual_backup(temp_path, original_name)
        except Exception as exc:
            temp_path.unlink(missing_ok=True)
            state["log_exception"]("backups_upload", exc)
            return responses.internal_error_response("Failed to upload backup")
        if not result.get("ok"):
            return responses.backup_result_response(result)
        return jsonify({"result": result, "backups": engine.list_backups()}), 201
