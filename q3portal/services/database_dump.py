"""PostgreSQL dump/replay through ``pg_dump`` and ``psql``."""

from pathlib import Path

from q3portal.services.platform_commands import CommandError, run_command

# First line of a database.sql written when no real dump could be taken.
PLACEHOLDER_MARKER = "-- q3portal: database dump unavailable"


def write_placeholder_dump(output_path, reason):
    """Write a comment-only ``database.sql`` so the archive keeps its shape."""
    Path(output_path).write_text(f"{PLACEHOLDER_MARKER}: {reason}\n", encoding="utf-8")


def is_placeholder_dump(sql_path):
    """Return True when ``sql_path`` is a placeholder written by ``write_placeholder_dump``."""
    try:
        with Path(sql_path).open("r", encoding="utf-8", errors="ignore") as fh:
            head = fh.read(len(PLACEHOLDER_MARKER))
    except OSError:
        return False
    return head == PLACEHOLDER_MARKER


def create_db_dump(database_url, output_path, warnings, runner=run_command):
    """Dump the database into ``output_path``; failures are appended to ``warnings``.

    ``database.sql`` always exists afterwards, real dump or placeholder.
    """
    if not database_url:
        warnings.append("DATABASE_URL no definida, backup sin dump SQL.")
        write_placeholder_dump(output_path, "DATABASE_URL not set")
        return False
    try:
        runner([
            "pg_dump",
            "--dbname",
            database_url,
            "--no-owner",
            "--no-privileges",
            "--file",
            output_path,
        ])
    except CommandError as exc:
        warnings.append(f"No se pudo ejecutar pg_dump ({exc}).")
        write_placeholder_dump(output_path, "pg_dump failed")
        return False
    return True


def restore_db_dump(database_url, sql_path, warnings, runner=run_command):
    """Replay ``sql_path`` with ``psql``; failures are appended to ``warnings``."""
    if is_placeholder_dump(sql_path):
        warnings.append("El backup no contiene un dump SQL real, restore sin import SQL.")
        return False
    if not database_url:
        warnings.append("DATABASE_URL no definida, restore sin import SQL.")
        return False
    try:
        runner(["psql", "--dbname", database_url, "-f", sql_path])
    except CommandError as exc:
        warnings.append(f"No se pudo restaurar SQL con psql ({exc}).")
        return False
    return True
