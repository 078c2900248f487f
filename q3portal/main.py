"""Portal core web process: game-server status, RCON and backup administration.

Wires configuration, loggers, the status prober and the backup engine into a
Flask app. The prober and the engine are built once here and shared.
"""

import os
from pathlib import Path

from flask import Flask

from q3portal.core import response_helpers
from q3portal.core.config import (
    apply_default_flask_config,
    resolve_admin_token,
    resolve_display_tz,
    resolve_quake_target,
)
from q3portal.core.logging_setup import build_loggers
from q3portal.core.web_config import WebConfig
from q3portal.routes.portal_routes import register_routes
from q3portal.services.backup_engine import BackupEngine
from q3portal.services.bootstrap import run_server
from q3portal.services.quake_status import QuakeStatusProber


def build_runtime(root_dir=None, environ=None):
    """Build config, loggers and services; returns a dict consumed by ``create_flask_app``."""
    root_dir = Path(root_dir or os.environ.get("Q3PORTAL_ROOT") or Path.cwd())
    cfg = WebConfig(root_dir / ".env", root_dir, environ=environ)
    display_tz = resolve_display_tz(cfg.get_str)
    log_dir = cfg.get_path("LOG_DIR", root_dir / "logs")
    log_action, log_system, log_exception = build_loggers(display_tz, log_dir)

    host, port, rcon_password, timeout_ms = resolve_quake_target(cfg.get_str, cfg.get_int)
    prober = QuakeStatusProber(
        host=host,
        port=port,
        rcon_password=rcon_password,
        timeout_ms=timeout_ms,
        log_action=log_action,
        log_exception=log_exception,
    )
    backup_engine = BackupEngine(
        data_dir=cfg.get_path("DATA_DIR", root_dir / "data"),
        env_file=root_dir / ".env",
        database_url=cfg.get_str("DATABASE_URL", ""),
        display_tz=display_tz,
        log_action=log_action,
        log_exception=log_exception,
    )
    return {
        "config": cfg,
        "prober": prober,
        "backup_engine": backup_engine,
        "admin_token": resolve_admin_token(cfg.get_str),
        "log_action": log_action,
        "log_system": log_system,
        "log_exception": log_exception,
        "responses": response_helpers,
    }


def create_flask_app(runtime):
    """Create the Flask app and register routes against ``runtime``."""
    app = Flask(__name__)
    apply_default_flask_config(app, runtime["config"].get_int("BACKUP_UPLOAD_MAX_MB", 2048, minimum=1))
    register_routes(app, runtime)
    return app


def main():
    runtime = build_runtime()
    app = create_flask_app(runtime)
    engine = runtime["backup_engine"]
    cfg = runtime["config"]
    run_server(
        app,
        cfg.get_str,
        cfg.get_int,
        runtime["log_system"],
        runtime["log_exception"],
        boot_steps=[
            ("ensure_backup_dirs", engine.ensure_dirs),
            ("start_backups_scheduler", engine.start_backups_scheduler),
        ],
    )


if __name__ == "__main__":
    main()
