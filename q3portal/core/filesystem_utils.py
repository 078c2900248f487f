"""Filesystem helpers for archive names, safe paths, hashing and atomic writes."""

from datetime import datetime, timezone
import hashlib
import json
import os
from pathlib import Path
import re
import tempfile

_SAFE_ZIP_NAME_RE = re.compile(r"^[a-zA-Z0-9._-]+\.zip$")
_UNSAFE_NAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9._-]")
_HASH_CHUNK_BYTES = 1024 * 1024


def is_safe_zip_filename(filename):
    """Return True for a bare ``*.zip`` name made only of ``[A-Za-z0-9._-]``."""
    if not filename or not isinstance(filename, str):
        return False
    if "/" in filename or "\\" in filename:
        return False
    if not filename.lower().endswith(".zip"):
        return False
    return bool(_SAFE_ZIP_NAME_RE.match(filename))


def sanitize_upload_name(name):
    """Replace every character outside ``[A-Za-z0-9._-]`` with ``_``."""
    return _UNSAFE_NAME_CHARS_RE.sub("_", str(name or ""))


def safe_file_in_dir(base_dir, filename):
    """Return the path of a direct-child regular file of ``base_dir`` or ``None``."""
    if not filename:
        return None
    name = Path(filename).name
    if name != filename:
        return None
    candidate = Path(base_dir) / name
    try:
        base_resolved = Path(base_dir).resolve()
        candidate_resolved = candidate.resolve()
        candidate_resolved.relative_to(base_resolved)
    except (OSError, ValueError):
        return None
    if not candidate_resolved.is_file():
        return None
    return candidate


def to_posix_relative(root, path):
    """Return ``path`` relative to ``root`` using ``/`` separators."""
    return Path(path).relative_to(root).as_posix()


def collect_files_recursive(root_dir):
    """Walk ``root_dir`` and return ``[(full_path, relative_posix_path)]`` sorted by path.

    Only regular files are returned; directories are descended into and
    anything else (sockets, broken links) is skipped.
    """
    root = Path(root_dir)
    if not root.exists():
        return []
    output = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in filenames:
            full_path = Path(dirpath) / name
            if not full_path.is_file():
                continue
            output.append((full_path, to_posix_relative(root, full_path)))
    output.sort(key=lambda item: item[1])
    return output


def file_sha256(path):
    """Return the hex SHA-256 digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def atomic_write_json(path, payload):
    """Write JSON through a uniquely named sibling temp file and replace the target."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as fh:
        fh.write(json.dumps(payload, indent=2) + "\n")
        temp = Path(fh.name)
    try:
        temp.replace(path)
    except OSError:
        temp.unlink(missing_ok=True)
        raise


def iso_utc(moment):
    """Format a datetime as ISO-8601 UTC with millisecond precision and ``Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_iso_utc(text):
    """Parse an ISO-8601 string into an aware datetime, or ``None`` when invalid."""
    if not isinstance(text, str) or not text.strip():
        return None
    raw = text.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def file_mtime_iso(stat_result):
    """Return a stat result's mtime as an ISO-8601 UTC string."""
    return iso_utc(datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc))
