"""External process execution and OS-appropriate zip archiving."""

from pathlib import Path
import shutil
import subprocess
import sys
import zipfile

ARCHIVE_TOOL_POWERSHELL = "powershell"
ARCHIVE_TOOL_INFO_ZIP = "info-zip"
ARCHIVE_TOOL_ZIPFILE = "zipfile"


class CommandError(RuntimeError):
    """Raised when an external command cannot start or exits non-zero."""

    def __init__(self, message, returncode=None):
        super().__init__(message)
        self.returncode = returncode


def run_command(args, cwd=None, env=None, timeout=None):
    """Run one command, capture stderr, and raise ``CommandError`` on failure."""
    argv = [str(arg) for arg in args]
    try:
        result = subprocess.run(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"{argv[0]} not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandError(f"{argv[0]} timed out after {timeout}s") from exc
    except OSError as exc:
        raise CommandError(f"{argv[0]} failed to start: {exc}") from exc
    if result.returncode != 0:
        detail = (result.stderr or "").strip()
        raise CommandError(detail or f"{argv[0]} exited with code {result.returncode}", result.returncode)
    return result


def _ps_quote(value):
    return "'" + str(value).replace("'", "''") + "'"


def select_archive_tool(binary, platform=None, which=shutil.which):
    """Pick the archiver for ``binary`` (``zip`` or ``unzip``) on this OS."""
    platform = platform or sys.platform
    if platform == "win32":
        return ARCHIVE_TOOL_POWERSHELL
    if which(binary):
        return ARCHIVE_TOOL_INFO_ZIP
    return ARCHIVE_TOOL_ZIPFILE


def _zipfile_compress(source_dir, zip_path):
    base = source_dir.parent
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.write(source_dir, source_dir.relative_to(base).as_posix())
        for path in sorted(source_dir.rglob("*")):
            if path.is_dir() or path.is_file():
                zf.write(path, path.relative_to(base).as_posix())


def zip_directory(source_dir, zip_path, tool=None):
    """Compress ``source_dir`` so the archive root is the directory's own name."""
    source_dir = Path(source_dir)
    zip_path = Path(zip_path)
    tool = tool or select_archive_tool("zip")
    if tool == ARCHIVE_TOOL_POWERSHELL:
        run_command([
            "powershell",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            f"Compress-Archive -Path {_ps_quote(source_dir)} -DestinationPath {_ps_quote(zip_path)} -Force",
        ])
    elif tool == ARCHIVE_TOOL_INFO_ZIP:
        run_command(["zip", "-r", "-q", zip_path, source_dir.name], cwd=source_dir.parent)
    else:
        _zipfile_compress(source_dir, zip_path)


def unzip_file(zip_path, destination_dir, tool=None):
    """Extract ``zip_path`` into ``destination_dir``, overwriting existing files."""
    zip_path = Path(zip_path)
    destination_dir = Path(destination_dir)
    tool = tool or select_archive_tool("unzip")
    if tool == ARCHIVE_TOOL_POWERSHELL:
        run_command([
            "powershell",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            f"Expand-Archive -LiteralPath {_ps_quote(zip_path)} -DestinationPath {_ps_quote(destination_dir)} -Force",
        ])
    elif tool == ARCHIVE_TOOL_INFO_ZIP:
        run_command(["unzip", "-o", "-q", zip_path, "-d", destination_dir])
    else:
        try:
            with zipfile.ZipFile(zip_path, "r") as zf:
                zf.extractall(destination_dir)
        except zipfile.BadZipFile as exc:
            raise CommandError(f"Archivo zip inválido: {exc}") from exc
