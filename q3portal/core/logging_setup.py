"""Logging setup helpers."""

from q3portal.core.action_logging import make_log_action, make_log_exception


def build_loggers(display_tz, log_dir):
    """Create portal action/system log writers and the exception logger.

    Returns ``(log_action, log_system, log_exception)``. Exceptions go to the
    system log so the action log stays readable for admins.
    """
    log_action = make_log_action(display_tz, log_dir, log_dir / "portal-actions.log")
    log_system = make_log_action(display_tz, log_dir, log_dir / "portal.log")
    log_exception = make_log_exception(log_system)
    return log_action, log_system, log_exception
