"""Runtime configuration helpers for the portal core."""

from datetime import timezone
from zoneinfo import ZoneInfo

DEFAULT_QUAKE_HOST = "localhost"
DEFAULT_QUAKE_PORT = 27960
DEFAULT_RCON_PASSWORD = "changeme"


def resolve_admin_token(cfg_get_str):
    """Return the configured admin token, or an empty string when unset.

    An empty token disables every admin endpoint.
    """
    return (cfg_get_str("ADMIN_TOKEN", "") or "").strip()


def resolve_display_tz(cfg_get_str):
    """Resolve ``DISPLAY_TZ`` with a UTC fallback when the zone is unknown."""
    name = cfg_get_str("DISPLAY_TZ", "UTC")
    try:
        return ZoneInfo(name)
    except Exception:
        return timezone.utc


def resolve_quake_target(cfg_get_str, cfg_get_int):
    """Return ``(host, port, rcon_password, timeout_ms)`` for the game server."""
    host = cfg_get_str("QUAKE_SERVER_HOST", DEFAULT_QUAKE_HOST)
    port = cfg_get_int("QUAKE_SERVER_PORT", DEFAULT_QUAKE_PORT, minimum=1)
    password = cfg_get_str("Q3A_RCON_PASSWORD", DEFAULT_RCON_PASSWORD)
    timeout_ms = cfg_get_int("QUAKE_QUERY_TIMEOUT_MS", 5000, minimum=100)
    return host, port, password, timeout_ms


def apply_default_flask_config(app, upload_max_mb=2048):
    """Apply baseline Flask runtime config values."""
    app.config["MAX_CONTENT_LENGTH"] = int(upload_max_mb) * 1024 * 1024
    app.json.sort_keys = False
