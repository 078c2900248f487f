import json
import tempfile
import unittest
from pathlib import Path

from q3portal.services.backup_manifest import (
    MANIFEST_FILENAME,
    ManifestFormatError,
    create_backup_manifest,
    decode_manifest,
    validate_backup_extracted_content,
    write_backup_manifest,
)


def _build_backup_root(base):
    root = Path(base) / "backup"
    (root / "data" / "maps").mkdir(parents=True)
    (root / "data" / "maps" / "q3dm6.cfg").write_text("set g_gametype 0\n", encoding="utf-8")
    (root / "data" / "clans.json").write_text('{"clans": []}\n', encoding="utf-8")
    (root / "database.sql").write_text("SELECT 1;\n", encoding="utf-8")
    (root / ".env").write_text("DATABASE_URL=postgres://local/portal\n", encoding="utf-8")
    return root


class ManifestCreationTests(unittest.TestCase):
    def test_manifest_lists_every_file_except_itself(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = _build_backup_root(tmp)
            write_backup_manifest(root)
            manifest = create_backup_manifest(root)
            paths = [item.path for item in manifest.files]
            self.assertEqual(paths, [".env", "data/clans.json", "data/maps/q3dm6.cfg", "database.sql"])
            self.assertNotIn(MANIFEST_FILENAME, paths)
            sizes = {item.path: item.size_bytes for item in manifest.files}
            self.assertEqual(sizes["database.sql"], len(b"SELECT 1;\n"))

    def test_written_manifest_shape(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = _build_backup_root(tmp)
            write_backup_manifest(root)
            payload = json.loads((root / MANIFEST_FILENAME).read_text(encoding="utf-8"))
            self.assertEqual(payload["formatVersion"], 1)
            self.assertEqual(set(payload["files"][0]), {"path", "sha256", "sizeBytes"})
            self.assertEqual(len(payload["files"][0]["sha256"]), 64)


class ManifestDecodeTests(unittest.TestCase):
    def test_rejects_wrong_version_and_shapes(self):
        bad_payloads = [
            [],
            {"formatVersion": 2, "files": []},
            {"formatVersion": True, "files": []},
            {"formatVersion": 1, "files": {}},
            {"formatVersion": 1, "files": ["x"]},
            {"formatVersion": 1, "files": [{"path": "a", "sha256": "b", "sizeBytes": "1"}]},
            {"formatVersion": 1, "files": [{"path": 3, "sha256": "b", "sizeBytes": 1}]},
        ]
        for payload in bad_payloads:
            with self.assertRaises(ManifestFormatError, msg=repr(payload)):
                decode_manifest(payload)

    def test_lowercases_digest(self):
        manifest = decode_manifest({"formatVersion": 1, "files": [{"path": "a", "sha256": "ABCDEF", "sizeBytes": 0}]})
        self.assertEqual(manifest.files[0].sha256, "abcdef")


class ManifestValidationTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = _build_backup_root(self._tmp.name)
        write_backup_manifest(self.root)

    def test_valid_content(self):
        self.assertEqual(validate_backup_extracted_content(self.root), (True, None))

    def test_tampered_byte_fails_hash(self):
        target = self.root / "data" / "maps" / "q3dm6.cfg"
        content = target.read_bytes()
        target.write_bytes(content[:-2] + b"1\n")
        ok, error = validate_backup_extracted_content(self.root)
        self.assertFalse(ok)
        self.assertEqual(error, "Contenido inválido: hash distinto en data/maps/q3dm6.cfg")

    def test_size_change_fails(self):
        (self.root / "database.sql").write_text("SELECT 1; SELECT 2;\n", encoding="utf-8")
        ok, error = validate_backup_extracted_content(self.root)
        self.assertFalse(ok)
        self.assertEqual(error, "Contenido inválido: tamaño distinto en database.sql")

    def test_extra_file_fails(self):
        (self.root / "data" / "intruder.txt").write_text("x", encoding="utf-8")
        ok, error = validate_backup_extracted_content(self.root)
        self.assertFalse(ok)
        self.assertEqual(error, "Manifest inválido: archivo extra no permitido data/intruder.txt")

    def test_missing_file_fails(self):
        (self.root / "data" / "clans.json").unlink()
        ok, error = validate_backup_extracted_content(self.root)
        self.assertFalse(ok)
        self.assertEqual(error, "Manifest inválido: falta archivo data/clans.json")

    def test_missing_structure(self):
        (self.root / "database.sql").unlink()
        self.assertEqual(
            validate_backup_extracted_content(self.root),
            (False, "Estructura inválida: falta backup/database.sql"),
        )
        other = Path(self._tmp.name) / "empty"
        other.mkdir()
        self.assertEqual(
            validate_backup_extracted_content(other),
            (False, "Estructura inválida: falta carpeta backup/data"),
        )

    def test_missing_manifest(self):
        (self.root / MANIFEST_FILENAME).unlink()
        ok, error = validate_backup_extracted_content(self.root)
        self.assertFalse(ok)
        self.assertEqual(error, "Backup inválido: falta .backup-manifest.json")

    def test_unparseable_and_incompatible_manifest(self):
        manifest_path = self.root / MANIFEST_FILENAME
        manifest_path.write_text("{not json", encoding="utf-8")
        self.assertEqual(
            validate_backup_extracted_content(self.root),
            (False, "Manifest inválido: no se pudo parsear"),
        )
        manifest_path.write_text(json.dumps({"formatVersion": 2, "files": []}), encoding="utf-8")
        self.assertEqual(
            validate_backup_extracted_content(self.root),
            (False, "Manifest inválido: versión o estructura no compatible"),
        )

    def test_path_escape_in_manifest_is_rejected(self):
        manifest_path = self.root / MANIFEST_FILENAME
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
        payload["files"].append({"path": "../outside.txt", "sha256": "0" * 64, "sizeBytes": 0})
        manifest_path.write_text(json.dumps(payload), encoding="utf-8")
        ok, error = validate_backup_extracted_content(self.root)
        self.assertFalse(ok)
        self.assertEqual(error, "Manifest inválido: falta archivo ../outside.txt")


if __name__ == "__main__":
    unittest.main()
