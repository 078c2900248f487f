"""Shared Flask JSON response helpers."""

from flask import jsonify


def admin_rejected_response():
    """Return the standard missing/invalid admin token response."""
    return jsonify({"ok": False, "error": "Admin token required"}), 403


def backup_result_response(result, success_status=200, **extra):
    """Map a backup result dict to 200/400, merging ``extra`` into the body."""
    payload = dict(result)
    payload.update(extra)
    if not result.get("ok"):
        return jsonify(payload), 400
    return jsonify(payload), success_status


def bad_request_response(message):
    return jsonify({"ok": False, "error": message}), 400


def not_found_response(message):
    return jsonify({"ok": False, "error": message}), 404


def rcon_failed_response(message):
    """Return the gateway error used when the game server does not answer RCON."""
    return jsonify({"ok": False, "error": message}), 502


def internal_error_response(message="Internal server error."):
    return jsonify({"ok": False, "error": message}), 500


def offline_status_response(message):
    """Return an offline status body for unexpected prober failures."""
    return jsonify({"online": False, "error": message}), 500
