"""Content-addressed backup manifest creation and archive validation."""

import json
from pathlib import Path

from q3portal.core.filesystem_utils import atomic_write_json, collect_files_recursive, file_sha256
from q3portal.state import MANIFEST_FORMAT_VERSION, BackupManifest, ManifestFile

MANIFEST_FILENAME = ".backup-manifest.json"


class ManifestFormatError(ValueError):
    """Raised when a manifest document does not match format version 1."""


def create_backup_manifest(backup_root):
    """Hash every file under ``backup_root`` except the manifest itself."""
    files = []
    for full_path, relative_path in collect_files_recursive(backup_root):
        if relative_path == MANIFEST_FILENAME:
            continue
        files.append(ManifestFile(
            path=relative_path,
            sha256=file_sha256(full_path),
            size_bytes=full_path.stat().st_size,
        ))
    return BackupManifest(files=files)


def write_backup_manifest(backup_root):
    """Create the manifest and write it at ``backup_root``."""
    manifest = create_backup_manifest(backup_root)
    atomic_write_json(Path(backup_root) / MANIFEST_FILENAME, manifest.to_dict())
    return manifest


def decode_manifest(payload):
    """Validate a parsed manifest document field by field."""
    if not isinstance(payload, dict):
        raise ManifestFormatError("manifest root is not an object")
    version = payload.get("formatVersion")
    if isinstance(version, bool) or version != MANIFEST_FORMAT_VERSION:
        raise ManifestFormatError("unsupported formatVersion")
    raw_files = payload.get("files")
    if not isinstance(raw_files, list):
        raise ManifestFormatError("files is not a list")
    files = []
    for item in raw_files:
        if not isinstance(item, dict):
            raise ManifestFormatError("file entry is not an object")
        path = item.get("path")
        sha256 = item.get("sha256")
        size_bytes = item.get("sizeBytes")
        if not isinstance(path, str) or not isinstance(sha256, str):
            raise ManifestFormatError("file entry path/sha256 must be strings")
        if isinstance(size_bytes, bool) or not isinstance(size_bytes, int):
            raise ManifestFormatError("file entry sizeBytes must be an integer")
        files.append(ManifestFile(path=path, sha256=sha256.lower(), size_bytes=size_bytes))
    return BackupManifest(files=files, format_version=version)


def _is_safe_relative(path_text):
    candidate = Path(path_text)
    if candidate.is_absolute() or not path_text:
        return False
    return ".." not in candidate.parts


def validate_backup_extracted_content(backup_root):
    """Check an extracted ``backup/`` folder against its manifest.

    Returns ``(True, None)`` or ``(False, <error message>)``. The manifest and
    the disk must list exactly the same files, and every file must match its
    recorded size and SHA-256.
    """
    root = Path(backup_root)
    data_dir = root / "data"
    sql_file = root / "database.sql"
    manifest_path = root / MANIFEST_FILENAME

    if not data_dir.is_dir():
        return False, "Estructura inválida: falta carpeta backup/data"
    if not sql_file.exists():
        return False, "Estructura inválida: falta backup/database.sql"
    if not manifest_path.exists():
        return False, f"Backup inválido: falta {MANIFEST_FILENAME}"

    try:
        raw = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValueError):
        return False, "Manifest inválido: no se pudo parsear"
    try:
        manifest = decode_manifest(raw)
    except ManifestFormatError:
        return False, "Manifest inválido: versión o estructura no compatible"

    actual = {
        relative_path: full_path
        for full_path, relative_path in collect_files_recursive(root)
        if relative_path != MANIFEST_FILENAME
    }
    expected_paths = {item.path for item in manifest.files}

    for expected_path in sorted(expected_paths):
        if not _is_safe_relative(expected_path) or expected_path not in actual:
            return False, f"Manifest inválido: falta archivo {expected_path}"
    for actual_path in sorted(actual):
        if actual_path not in expected_paths:
            return False, f"Manifest inválido: archivo extra no permitido {actual_path}"

    for item in manifest.files:
        full_path = actual[item.path]
        if full_path.stat().st_size != item.size_bytes:
            return False, f"Contenido inválido: tamaño distinto en {item.path}"
        if file_sha256(full_path) != item.sha256:
            return False, f"Contenido inválido: hash distinto en {item.path}"

    return True, None
