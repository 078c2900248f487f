"""App factory entrypoint for WSGI servers."""


def create_app(root_dir=None):
    """Return a Flask app with routes registered and the backup scheduler running."""
    from q3portal.main import build_runtime, create_flask_app

    runtime = build_runtime(root_dir)
    app = create_flask_app(runtime)
    runtime["backup_engine"].start_backups_scheduler()
    return app
