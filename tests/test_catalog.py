"""
Tests for the backup catalog.

Tests cover:
- Listing with warnings for unreadable archives
- Slug resolution, info and deletion
- Importing external archive files
- Slug generation
- Scratch entries and their owning process
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path

from auditvault.backup.archive import PAYLOAD_ENTRY, build_outer_archive
from auditvault.backup.catalog import BackupCatalog, generate_slug
from auditvault.backup.errors import (
    BackupNotFoundError,
    BadParametersError,
    OperationConflictError,
)
from auditvault.backup.models import BackupManifest


class TestGenerateSlug(unittest.TestCase):
    """Tests for generate_slug."""

    def test_format(self):
        """Test that slugs are lowercase base-36 and long enough to be unique."""
        slug = generate_slug()

        self.assertRegex(slug, r"^[0-9a-z]{12,}$")

    def test_unique(self):
        """Test that slugs do not repeat."""
        slugs = {generate_slug() for _ in range(200)}
        self.assertEqual(len(slugs), 200)


class TestBackupCatalog(unittest.TestCase):
    """Tests for BackupCatalog."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.backup_dir = self.temp_dir / "backups"
        self.backup_dir.mkdir()
        self.catalog = BackupCatalog(self.backup_dir)

    def tearDown(self):
        """Clean up temporary directories."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _make_archive(self, slug, name="Nightly", date=None, directory=None, filename=None):
        manifest = BackupManifest.create(
            name=name,
            slug=slug,
            protected=False,
            categories=["Users"],
        )
        if date:
            data = manifest.to_dict()
            data["date"] = date
            manifest = BackupManifest.from_dict(data)

        payload = self.temp_dir / f"{slug}-{PAYLOAD_ENTRY}"
        payload.write_bytes(b"\x1f\x8b payload")
        dest = (directory or self.backup_dir) / (filename or f"{slug}.tar")
        build_outer_archive(manifest.to_json_bytes(), payload, PAYLOAD_ENTRY, dest)
        return dest

    def test_list_empty(self):
        """Test listing an empty directory."""
        listing = self.catalog.list()

        self.assertEqual(listing.backups, [])
        self.assertEqual(listing.warnings, [])

    def test_list_missing_directory(self):
        """Test listing when the backup directory does not exist yet."""
        catalog = BackupCatalog(self.temp_dir / "missing")
        self.assertEqual(catalog.list().backups, [])

    def test_list_sorted_newest_first(self):
        """Test listing order and decoration."""
        self._make_archive("older", date="2024-01-01T00:00:00.000Z")
        self._make_archive("newer", date="2024-06-01T00:00:00.000Z")

        listing = self.catalog.list()

        self.assertEqual([b.slug for b in listing.backups], ["newer", "older"])
        first = listing.backups[0]
        self.assertEqual(first.filename, "newer.tar")
        self.assertEqual(first.size, (self.backup_dir / "newer.tar").stat().st_size)
        self.assertEqual(first.to_dict()["filename"], "newer.tar")

    def test_list_reports_unreadable_archives(self):
        """Test that invalid archives are skipped with a warning."""
        self._make_archive("good")
        (self.backup_dir / "broken.tar").write_bytes(b"garbage")

        listing = self.catalog.list()

        self.assertEqual([b.slug for b in listing.backups], ["good"])
        self.assertEqual(len(listing.warnings), 1)
        self.assertTrue(listing.warnings[0].startswith("broken.tar: "))

    def test_list_ignores_other_files(self):
        """Test that only .tar files are considered."""
        self._make_archive("good")
        (self.backup_dir / "notes.txt").write_text("hello")
        (self.backup_dir / ".state").write_text("{}")

        self.assertEqual(len(self.catalog.list().backups), 1)

    def test_resolve_slug_by_manifest(self):
        """Test that slugs are resolved from the manifest, not the file name."""
        self._make_archive("abc", filename="renamed.tar")

        self.assertEqual(self.catalog.resolve_slug("abc"), "renamed.tar")
        self.assertEqual(self.catalog.get_path("abc"), self.backup_dir / "renamed.tar")

    def test_resolve_unknown_slug(self):
        """Test that unknown slugs raise not-found."""
        with self.assertRaises(BackupNotFoundError) as cm:
            self.catalog.resolve_slug("nope")
        self.assertEqual(cm.exception.kind, "not_found")

    def test_get_info(self):
        """Test reading one backup's info."""
        self._make_archive("abc", name="Weekly")

        info = self.catalog.get_info("abc")

        self.assertEqual(info.manifest.name, "Weekly")
        self.assertFalse(info.manifest.protected)

    def test_delete(self):
        """Test deleting a backup."""
        path = self._make_archive("abc")

        self.catalog.delete("abc")

        self.assertFalse(path.exists())
        self.assertFalse(self.catalog.exists("abc"))

    def test_delete_unknown(self):
        """Test deleting an unknown backup."""
        with self.assertRaises(BackupNotFoundError):
            self.catalog.delete("nope")

    def test_new_slug_avoids_existing_files(self):
        """Test that new slugs never collide with archive files."""
        slug = self.catalog.new_slug()
        self.assertFalse((self.backup_dir / f"{slug}.tar").exists())

    def test_import_archive(self):
        """Test importing a valid archive."""
        outside = self.temp_dir / "outside"
        outside.mkdir()
        source = self._make_archive("imported", directory=outside)

        info = self.catalog.import_archive(source)

        self.assertEqual(info.slug, "imported")
        self.assertEqual(info.filename, "imported.tar")
        self.assertTrue((self.backup_dir / "imported.tar").exists())
        self.assertTrue(source.exists())
        self.assertEqual(list((self.backup_dir / ".tmp").iterdir()), [])

    def test_import_custom_filename(self):
        """Test importing under another file name."""
        outside = self.temp_dir / "outside"
        outside.mkdir()
        source = self._make_archive("imported", directory=outside)

        info = self.catalog.import_archive(source, filename="upload.tar")

        self.assertEqual(info.filename, "upload.tar")
        self.assertEqual(self.catalog.resolve_slug("imported"), "upload.tar")

    def test_import_rejects_wrong_extension(self):
        """Test that only .tar files are accepted."""
        source = self.temp_dir / "backup.zip"
        source.write_bytes(b"zip")

        with self.assertRaises(BadParametersError):
            self.catalog.import_archive(source)

    def test_import_invalid_archive_removed(self):
        """Test that an invalid archive is rejected and leaves nothing behind."""
        source = self.temp_dir / "invalid.tar"
        source.write_bytes(b"not an archive")

        with self.assertRaises(BadParametersError) as cm:
            self.catalog.import_archive(source)

        self.assertEqual(cm.exception.message, "Invalid backup file")
        self.assertFalse((self.backup_dir / "invalid.tar").exists())
        self.assertEqual(list((self.backup_dir / ".tmp").iterdir()), [])

    def test_import_existing_filename_conflict(self):
        """Test that an existing file name is a conflict."""
        self._make_archive("abc")
        outside = self.temp_dir / "outside"
        outside.mkdir()
        source = self._make_archive("other", directory=outside, filename="abc.tar")

        with self.assertRaises(OperationConflictError):
            self.catalog.import_archive(source)

    def test_import_existing_slug_conflict(self):
        """Test that an already-present slug is a conflict."""
        self._make_archive("abc")
        outside = self.temp_dir / "outside"
        outside.mkdir()
        source = self._make_archive("abc", directory=outside, filename="copy.tar")

        with self.assertRaises(OperationConflictError):
            self.catalog.import_archive(source)
        self.assertFalse((self.backup_dir / "copy.tar").exists())

    def test_disk_usage(self):
        """Test disk usage reporting."""
        usage = self.catalog.disk_usage()

        self.assertEqual(set(usage), {"total", "used", "free"})
        self.assertGreater(usage["total"], 0)

    def test_scratch_path_names_owner(self):
        path = self.catalog.scratch_path("backup", "abc")

        self.assertEqual(path, self.backup_dir / ".tmp" / f"backup-{os.getpid()}-abc")

    def test_remove_stale_scratch(self):
        """Test that only entries of live processes are kept."""
        scratch = self.backup_dir / ".tmp"
        live = self.catalog.scratch_path("restore", "abc-1234")
        live.mkdir(parents=True)
        (scratch / "backup-999999999-abc").mkdir()
        (scratch / "import-999999999-0011.tar.part").write_bytes(b"partial")
        (scratch / "leftover").mkdir()

        removed = self.catalog.remove_stale_scratch()

        self.assertEqual(
            removed,
            ["backup-999999999-abc", "import-999999999-0011.tar.part", "leftover"],
        )
        self.assertEqual(list(scratch.iterdir()), [live])

    def test_remove_stale_scratch_drops_empty_root(self):
        (self.backup_dir / ".tmp" / "backup-999999999-abc").mkdir(parents=True)

        self.catalog.remove_stale_scratch()

        self.assertFalse((self.backup_dir / ".tmp").exists())

    def test_remove_stale_scratch_without_root(self):
        self.assertEqual(self.catalog.remove_stale_scratch(), [])


if __name__ == "__main__":
    unittest.main()
