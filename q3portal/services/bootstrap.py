"""Application bootstrap/run helpers."""


def run_boot_steps(boot_steps, log_system, log_exception):
    """Run named startup steps in order; the first failure is logged and re-raised."""
    for step_name, step_func in boot_steps:
        try:
            step_func()
        except Exception as exc:
            log_exception(f"boot_step/{step_name}", exc)
            log_system("boot-failed", command=step_name, rejection_message=str(exc)[:500] or "startup step failed")
            raise
        log_system("boot-step", command=step_name)


def run_server(app, cfg_get_str, cfg_get_int, log_system, log_exception, boot_steps):
    """Run startup steps, then start the Flask server."""
    host = cfg_get_str("WEB_HOST", "0.0.0.0")
    port = cfg_get_int("WEB_PORT", 5000, minimum=1)
    log_system("boot-start", command=f"host={host} port={port}")

    run_boot_steps(boot_steps, log_system, log_exception)

    log_system("boot-ready", command=f"host={host} port={port}")
    try:
        app.run(host=host, port=port)
    except Exception as exc:
        log_exception("boot_step/app.run", exc)
        log_system("boot-failed", command="app.run", rejection_message=str(exc)[:500] or "web server startup failed")
        raise
