"""
Tests for the backup manager.

Tests cover:
- Create and restore round trips
- Monotonic version numbering across imports
- Import validation, duplicate rejection and legacy upgrade
- Export through a sink
- Deletion isolation and archive cache ownership
- Checksum mismatch handling
- Error kinds at the operation boundary
"""

import copy
import io
import json
import shutil
import tempfile
import unittest
import zipfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

from nihongopro_backup.backup import (
    BackupError,
    BackupErrorKind,
    BackupManager,
    BackupMetadataStore,
    BackupPayload,
    BackupVersion,
    DirectoryArchiveCache,
    DirectorySink,
    MemoryArchiveCache,
    SinkError,
    TarGzArchiveCodec,
    ZipArchiveCodec,
)
from nihongopro_backup.backup.archive import BACKUP_DATA_FILENAME, LEGACY_DATA_FILENAME
from nihongopro_backup.backup.metadata_store import METADATA_KEY
from nihongopro_backup.backup.models import build_envelope, format_iso
from nihongopro_backup.storage.kv_store import MemoryKeyValueStore


def make_payload(name: str = "Sakura") -> dict:
    return {
        "user": {
            "name": name,
            "avatarId": "fox",
            "xp": 1250,
            "streak": 12,
            "lastLogin": "2024-01-15T08:00:00.000Z",
            "favorites": ["猫"],
            "mistakes": [],
            "dailyGoals": {"words": 20, "minutes": 15},
        },
        "logs": [
            {"type": "quiz", "content": "N5 vocabulary", "score": 90, "date": "2024-01-14T10:00:00.000Z"},
            {"type": "kana", "content": "ひらがな", "score": None, "date": "2024-01-15T09:00:00.000Z"},
        ],
        "settings": {
            "lang": "zh",
            "targetLang": "ja",
            "theme": "light",
            "onlineMode": True,
            "aiConfig": {"enabled": True, "provider": "gemini", "model": "flash"},
            "ttsConfig": {"enabled": True, "provider": "minimax"},
        },
    }


def make_foreign_archive(
    version_number: int = 5,
    version_id: str = "abc",
    codec=None,
) -> bytes:
    """Build an archive as another device would have exported it."""
    version = BackupVersion(
        id=version_id,
        version_number=version_number,
        timestamp="2024-02-01T09:15:00.000Z",
        source="local",
    )
    _, text = build_envelope(
        version,
        BackupPayload.from_dict(make_payload("Haruto")),
        export_date="2024-02-01T09:15:00.000Z",
    )
    return (codec or ZipArchiveCodec()).pack({BACKUP_DATA_FILENAME: text.encode("utf-8")})


def make_zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


class ManagerTestCase(unittest.TestCase):
    """Base class wiring a manager over in-memory collaborators."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.kv = MemoryKeyValueStore()
        self.store = BackupMetadataStore(self.kv)
        self.cache = MemoryArchiveCache()
        self.sink = DirectorySink(Path(self.temp_dir) / "exports")
        self.manager = BackupManager(self.store, sink=self.sink, cache=self.cache)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def assertKind(self, cm, kind: BackupErrorKind) -> None:
        self.assertEqual(cm.exception.kind, kind, cm.exception.message)


class TestCreateBackup(ManagerTestCase):
    """Tests for create_backup."""

    def test_first_backup_is_version_one(self):
        created = self.manager.create_backup(make_payload(), description="before trip")

        version = created.version
        self.assertEqual(version.version_number, 1)
        self.assertEqual(version.source, "local")
        self.assertEqual(version.description, "before trip")
        self.assertTrue(version.checksum)
        self.assertGreater(version.data_size, 0)

    def test_archive_holds_backup_json(self):
        created = self.manager.create_backup(make_payload())
        entries = ZipArchiveCodec().unpack(created.archive)
        self.assertEqual(list(entries), [BACKUP_DATA_FILENAME])

        data = json.loads(entries[BACKUP_DATA_FILENAME])
        self.assertEqual(data["version"], "2.0")
        self.assertEqual(data["backupVersion"]["id"], created.version.id)
        self.assertEqual(data["exportDate"], created.version.timestamp)

    def test_records_catalog_entry(self):
        created = self.manager.create_backup(make_payload())
        metadata = self.store.get_backup_metadata()
        self.assertEqual(metadata.versions, [created.version])
        self.assertEqual(metadata.last_backup_date, created.version.timestamp)

    def test_caches_archive(self):
        created = self.manager.create_backup(make_payload())
        self.assertTrue(self.manager.has_archive(created.version.id))
        self.assertEqual(self.cache.get(created.version.id), created.archive)

    def test_numbers_increase(self):
        numbers = [self.manager.create_backup(make_payload()).version.version_number for _ in range(3)]
        self.assertEqual(numbers, [1, 2, 3])

    def test_accepts_payload_dataclass(self):
        created = self.manager.create_backup(BackupPayload.from_dict(make_payload()))
        self.assertEqual(created.version.version_number, 1)

    def test_clears_reminder_dismissal(self):
        self.manager.dismiss_backup_reminder()
        self.assertIsNotNone(self.store.get_reminder_dismissed_at())

        self.manager.create_backup(make_payload())
        self.assertIsNone(self.store.get_reminder_dismissed_at())

    def test_invalid_payload_is_rejected(self):
        payload = make_payload()
        payload["user"]["xp"] = "lots"

        with self.assertRaises(BackupError) as cm:
            self.manager.create_backup(payload)
        self.assertKind(cm, BackupErrorKind.VALIDATION_ERROR)
        self.assertIn("user.xp must be a non-negative number", cm.exception.errors)
        self.assertEqual(self.store.get_backup_metadata().versions, [])

    def test_quota_exceeded(self):
        store = BackupMetadataStore(MemoryKeyValueStore(quota_bytes=100))
        manager = BackupManager(store, cache=self.cache)

        with self.assertRaises(BackupError) as cm:
            manager.create_backup(make_payload())
        self.assertKind(cm, BackupErrorKind.QUOTA_EXCEEDED)
        self.assertEqual(len(self.cache), 0)

    def test_cache_failure_records_nothing(self):
        cache = MagicMock()
        cache.put.side_effect = OSError("disk full")
        manager = BackupManager(self.store, cache=cache)

        with self.assertRaises(BackupError) as cm:
            manager.create_backup(make_payload())
        self.assertKind(cm, BackupErrorKind.SERIALIZATION_ERROR)
        self.assertEqual(self.store.get_backup_metadata().versions, [])

    def test_codec_failure_is_serialization_error(self):
        codec = MagicMock()
        codec.extension = "zip"
        codec.pack.side_effect = RuntimeError("out of memory")
        manager = BackupManager(self.store, codec=codec, cache=self.cache)

        with self.assertRaises(BackupError) as cm:
            manager.create_backup(make_payload())
        self.assertKind(cm, BackupErrorKind.SERIALIZATION_ERROR)
        self.assertEqual(self.store.get_backup_metadata().versions, [])


class TestRestoreBackup(ManagerTestCase):
    """Tests for restore_backup."""

    def test_round_trip_from_cache(self):
        payload = make_payload()
        created = self.manager.create_backup(payload)

        envelope = self.manager.restore_backup(created.version)
        self.assertEqual(envelope.payload.to_dict(), payload)
        self.assertEqual(envelope.backup_version, created.version)

    def test_round_trip_with_explicit_bytes(self):
        payload = make_payload()
        created = self.manager.create_backup(payload)

        other = BackupManager(BackupMetadataStore(MemoryKeyValueStore()))
        envelope = other.restore_backup(created.version, created.archive)
        self.assertEqual(envelope.payload.to_dict(), payload)

    def test_restore_by_id(self):
        created = self.manager.create_backup(make_payload())
        envelope = self.manager.restore_backup(created.version.id)
        self.assertEqual(envelope.backup_version.id, created.version.id)

    def test_no_catalog_side_effects(self):
        created = self.manager.create_backup(make_payload())
        before = self.kv.get(METADATA_KEY)
        self.manager.restore_backup(created.version)
        self.assertEqual(self.kv.get(METADATA_KEY), before)

    def test_missing_archive_is_not_found(self):
        created = self.manager.create_backup(make_payload())
        manager = BackupManager(self.store, cache=MemoryArchiveCache())

        self.assertFalse(manager.has_archive(created.version.id))
        with self.assertRaises(BackupError) as cm:
            manager.restore_backup(created.version)
        self.assertKind(cm, BackupErrorKind.NOT_FOUND)
        self.assertIn("re-import", cm.exception.message)

    def test_not_an_archive(self):
        version = BackupVersion(id="x", version_number=1, timestamp="2024-01-01T00:00:00Z")
        with self.assertRaises(BackupError) as cm:
            self.manager.restore_backup(version, b"plain text, not an archive")
        self.assertKind(cm, BackupErrorKind.ARCHIVE_ERROR)

    def test_empty_archive_bytes_are_rejected(self):
        created = self.manager.create_backup(make_payload())

        with self.assertRaises(BackupError) as cm:
            self.manager.restore_backup(created.version, b"")
        self.assertKind(cm, BackupErrorKind.ARCHIVE_ERROR)

        with self.assertRaises(BackupError) as cm:
            self.manager.export_backup_file(created.version, b"")
        self.assertKind(cm, BackupErrorKind.ARCHIVE_ERROR)

    def test_missing_backup_json(self):
        with self.assertRaises(BackupError) as cm:
            self.manager.restore_backup("x", make_zip({"other.json": b"{}"}))
        self.assertKind(cm, BackupErrorKind.INVALID_FORMAT)

    def test_corrupted_json(self):
        with self.assertRaises(BackupError) as cm:
            self.manager.restore_backup("x", make_zip({BACKUP_DATA_FILENAME: b'{"version": '}))
        self.assertKind(cm, BackupErrorKind.INVALID_FORMAT)

    def test_invalid_envelope(self):
        created = self.manager.create_backup(make_payload())
        data = json.loads(ZipArchiveCodec().unpack(created.archive)[BACKUP_DATA_FILENAME])
        data["user"]["streak"] = -4
        del data["settings"]["theme"]

        with self.assertRaises(BackupError) as cm:
            self.manager.restore_backup("x", make_zip({BACKUP_DATA_FILENAME: json.dumps(data).encode()}))
        self.assertKind(cm, BackupErrorKind.VALIDATION_ERROR)
        self.assertIn("user.streak must be a non-negative number", cm.exception.errors)
        self.assertIn('settings.theme must be "light" or "dark"', cm.exception.errors)

    def _tampered_archive(self, created) -> bytes:
        data = json.loads(ZipArchiveCodec().unpack(created.archive)[BACKUP_DATA_FILENAME])
        data["user"]["xp"] = 999999
        return make_zip({BACKUP_DATA_FILENAME: json.dumps(data, indent=2).encode()})

    def test_checksum_mismatch_is_logged(self):
        created = self.manager.create_backup(make_payload())
        tampered = self._tampered_archive(created)

        with self.assertLogs("nihongopro_backup.backup.manager", level="WARNING") as logs:
            envelope = self.manager.restore_backup(created.version, tampered)
        self.assertEqual(envelope.user["xp"], 999999)
        self.assertTrue(any("checksum mismatch" in line for line in logs.output))

    def test_checksum_mismatch_strict(self):
        created = self.manager.create_backup(make_payload())
        tampered = self._tampered_archive(created)
        strict = BackupManager(self.store, cache=self.cache, strict_checksum=True)

        with self.assertRaises(BackupError) as cm:
            strict.restore_backup(created.version, tampered)
        self.assertKind(cm, BackupErrorKind.VALIDATION_ERROR)

        # Untouched archives still pass
        strict.restore_backup(created.version)

    def test_tar_gz_round_trip(self):
        manager = BackupManager(self.store, codec=TarGzArchiveCodec(), cache=self.cache)
        payload = make_payload()
        created = manager.create_backup(payload)

        self.assertTrue(TarGzArchiveCodec().matches(created.archive))
        self.assertEqual(manager.restore_backup(created.version).payload.to_dict(), payload)


class TestImportBackup(ManagerTestCase):
    """Tests for import_backup."""

    def test_import_marks_source(self):
        version = self.manager.import_backup(make_foreign_archive(), "haruto.zip")

        self.assertEqual(version.id, "abc")
        self.assertEqual(version.version_number, 5)
        self.assertEqual(version.source, "imported")
        self.assertEqual(self.store.get_backup_metadata().find("abc").source, "imported")

    def test_import_caches_bytes(self):
        archive = make_foreign_archive()
        self.manager.import_backup(archive, "haruto.zip")

        self.assertTrue(self.manager.has_archive("abc"))
        envelope = self.manager.restore_backup("abc")
        self.assertEqual(envelope.user["name"], "Haruto")

    def test_numbering_continues_after_foreign_version(self):
        first = self.manager.create_backup(make_payload())
        self.assertEqual(first.version.version_number, 1)

        self.manager.import_backup(make_foreign_archive(version_number=5), "haruto.zip")
        self.assertEqual(len(self.store.get_backup_metadata().versions), 2)

        self.assertEqual(self.manager.create_backup(make_payload()).version.version_number, 6)

    def test_duplicate_rejected_without_mutation(self):
        archive = make_foreign_archive()
        self.manager.import_backup(archive, "haruto.zip")
        before = self.kv.get(METADATA_KEY)

        with self.assertRaises(BackupError) as cm:
            self.manager.import_backup(archive, "haruto-copy.zip")
        self.assertKind(cm, BackupErrorKind.DUPLICATE_VERSION)
        self.assertEqual(cm.exception.existing_version_number, 5)
        self.assertEqual(self.kv.get(METADATA_KEY), before)

    def test_reimport_of_own_backup_is_duplicate(self):
        created = self.manager.create_backup(make_payload())
        with self.assertRaises(BackupError) as cm:
            self.manager.import_backup(created.archive, "mine.zip")
        self.assertKind(cm, BackupErrorKind.DUPLICATE_VERSION)
        self.assertEqual(cm.exception.existing_version_number, 1)

    def test_duplicate_detection_uses_id_not_number(self):
        self.manager.create_backup(make_payload())
        version = self.manager.import_backup(
            make_foreign_archive(version_number=1, version_id="from-tablet"), "tablet.zip"
        )
        self.assertEqual(version.version_number, 1)
        self.assertEqual(len(self.manager.get_backup_history()), 2)

    def test_id_with_path_characters_in_directory_cache(self):
        manager = BackupManager(
            self.store, cache=DirectoryArchiveCache(Path(self.temp_dir) / "archives")
        )
        archive = make_foreign_archive(version_id="phone:2024/backup 1")

        version = manager.import_backup(archive, "phone.zip")
        self.assertEqual(version.id, "phone:2024/backup 1")
        self.assertTrue(manager.has_archive(version.id))
        self.assertEqual(manager.restore_backup(version.id).user["name"], "Haruto")

        with self.assertRaises(BackupError) as cm:
            manager.import_backup(archive, "phone.zip")
        self.assertKind(cm, BackupErrorKind.DUPLICATE_VERSION)

    def test_cache_failure_leaves_catalog_untouched(self):
        cache = MagicMock()
        cache.put.side_effect = OSError("disk full")
        manager = BackupManager(self.store, cache=cache)
        archive = make_foreign_archive()

        with self.assertRaises(BackupError) as cm:
            manager.import_backup(archive, "haruto.zip")
        self.assertKind(cm, BackupErrorKind.UNKNOWN)
        self.assertEqual(self.store.get_backup_metadata().versions, [])

        # Retrying with a working cache is not a duplicate
        self.assertEqual(self.manager.import_backup(archive, "haruto.zip").id, "abc")

    def test_rejects_non_archive_file(self):
        with self.assertRaises(BackupError) as cm:
            self.manager.import_backup(b"just some notes", "notes.txt")
        self.assertKind(cm, BackupErrorKind.INVALID_FORMAT)

    def test_accepts_archive_by_signature(self):
        version = self.manager.import_backup(make_foreign_archive(), "download")
        self.assertEqual(version.id, "abc")

    def test_accepts_other_archive_format(self):
        archive = make_foreign_archive(codec=TarGzArchiveCodec())
        version = self.manager.import_backup(archive, "haruto.tar.gz")
        self.assertEqual(version.id, "abc")
        self.assertEqual(self.manager.restore_backup("abc").user["name"], "Haruto")

    def test_unreadable_archive(self):
        with self.assertRaises(BackupError) as cm:
            self.manager.import_backup(b"PK\x03\x04 broken", "broken.zip")
        self.assertKind(cm, BackupErrorKind.ARCHIVE_ERROR)
        self.assertEqual(self.store.get_backup_metadata().versions, [])

    def test_invalid_envelope_not_cataloged(self):
        archive = make_zip({BACKUP_DATA_FILENAME: json.dumps({"version": "2.0"}).encode()})
        with self.assertRaises(BackupError) as cm:
            self.manager.import_backup(archive, "bad.zip")
        self.assertKind(cm, BackupErrorKind.VALIDATION_ERROR)
        self.assertEqual(self.store.get_backup_metadata().versions, [])


class TestLegacyImport(ManagerTestCase):
    """Tests for archives written before versioned backups."""

    def make_legacy_archive(self) -> bytes:
        payload = make_payload("Yuki")
        del payload["settings"]["ttsConfig"]
        legacy = {
            **payload,
            "exportDate": "2023-11-02T07:45:00.000Z",
            "version": "1.0",
        }
        return make_zip({LEGACY_DATA_FILENAME: json.dumps(legacy, indent=2).encode()})

    def test_parse_upgrades(self):
        envelope = self.manager.parse_backup_file(self.make_legacy_archive())

        self.assertEqual(envelope.version, "2.0")
        self.assertEqual(envelope.user["name"], "Yuki")
        self.assertEqual(envelope.backup_version.source, "imported")
        self.assertEqual(envelope.backup_version.timestamp, "2023-11-02T07:45:00.000Z")
        self.assertEqual(self.store.get_backup_metadata().versions, [])

    def test_import_upgrades_and_caches(self):
        self.manager.create_backup(make_payload())
        version = self.manager.import_backup(self.make_legacy_archive(), "kawaii_backup_2023-11-02.zip")

        self.assertEqual(version.version_number, 2)
        self.assertEqual(version.source, "imported")
        self.assertTrue(self.manager.has_archive(version.id))

        envelope = self.manager.restore_backup(version)
        self.assertEqual(envelope.version, "2.0")
        self.assertEqual(envelope.backup_version.id, version.id)
        self.assertEqual(envelope.user["name"], "Yuki")
        self.assertNotIn("ttsConfig", envelope.settings)

    def test_same_legacy_file_twice_is_duplicate(self):
        archive = self.make_legacy_archive()
        first = self.manager.import_backup(archive, "old.zip")

        with self.assertRaises(BackupError) as cm:
            self.manager.import_backup(archive, "old-copy.zip")
        self.assertKind(cm, BackupErrorKind.DUPLICATE_VERSION)
        self.assertEqual(cm.exception.existing_version_number, first.version_number)
        self.assertEqual(len(self.store.get_backup_metadata().versions), 1)

    def test_legacy_id_is_stable(self):
        archive = self.make_legacy_archive()
        first = self.manager.parse_backup_file(archive).backup_version.id
        self.assertEqual(self.manager.parse_backup_file(archive).backup_version.id, first)

    def test_upgraded_archive_is_exportable(self):
        version = self.manager.import_backup(self.make_legacy_archive(), "old.zip")
        filename = self.manager.export_backup_file(version)

        exported = (Path(self.temp_dir) / "exports" / filename).read_bytes()
        entries = ZipArchiveCodec().unpack(exported)
        self.assertIn(BACKUP_DATA_FILENAME, entries)


class TestExportBackup(ManagerTestCase):
    """Tests for export_backup_file."""

    def test_export_writes_archive(self):
        created = self.manager.create_backup(make_payload())

        filename = self.manager.export_backup_file(created.version)
        self.assertEqual(filename, self.manager.allocator.generate_backup_filename(created.version))
        self.assertRegex(filename, r"^nihongopro_backup_v1_\d{8}_\d{6}\.zip$")
        self.assertEqual((Path(self.temp_dir) / "exports" / filename).read_bytes(), created.archive)

    def test_export_by_id(self):
        created = self.manager.create_backup(make_payload())
        filename = self.manager.export_backup_file(created.version.id)
        self.assertTrue((Path(self.temp_dir) / "exports" / filename).exists())

    def test_export_explicit_bytes(self):
        version = BackupVersion(id="ext", version_number=9, timestamp="2024-01-01T00:00:00.000Z")
        filename = self.manager.export_backup_file(version, b"PK\x03\x04bytes")
        self.assertIn("_v9_", filename)

    def test_unknown_id(self):
        with self.assertRaises(BackupError) as cm:
            self.manager.export_backup_file("missing")
        self.assertKind(cm, BackupErrorKind.NOT_FOUND)

    def test_no_bytes(self):
        created = self.manager.create_backup(make_payload())
        self.cache.discard(created.version.id)
        with self.assertRaises(BackupError) as cm:
            self.manager.export_backup_file(created.version)
        self.assertKind(cm, BackupErrorKind.NOT_FOUND)

    def test_sink_failure_is_unknown(self):
        sink = MagicMock()
        sink.save.side_effect = SinkError("share endpoint down")
        manager = BackupManager(self.store, sink=sink, cache=self.cache)
        created = manager.create_backup(make_payload())

        with self.assertRaises(BackupError) as cm:
            manager.export_backup_file(created.version)
        self.assertKind(cm, BackupErrorKind.UNKNOWN)
        self.assertIsInstance(cm.exception.__cause__, SinkError)

    def test_no_sink_configured(self):
        manager = BackupManager(self.store, cache=self.cache)
        created = manager.create_backup(make_payload())
        with self.assertRaises(BackupError) as cm:
            manager.export_backup_file(created.version)
        self.assertKind(cm, BackupErrorKind.UNKNOWN)


class TestDeleteBackup(ManagerTestCase):
    """Tests for delete_backup."""

    def test_removes_only_target(self):
        created = [self.manager.create_backup(make_payload()) for _ in range(3)]
        before = {v.id: v.to_dict() for v in self.store.get_backup_metadata().versions}

        self.assertTrue(self.manager.delete_backup(created[1].version.id))

        after = {v.id: v.to_dict() for v in self.store.get_backup_metadata().versions}
        del before[created[1].version.id]
        self.assertEqual(after, before)

    def test_drops_cached_archive(self):
        first = self.manager.create_backup(make_payload())
        second = self.manager.create_backup(make_payload())

        self.manager.delete_backup(first.version.id)
        self.assertFalse(self.manager.has_archive(first.version.id))
        self.assertTrue(self.manager.has_archive(second.version.id))

    def test_missing_id(self):
        self.manager.create_backup(make_payload())
        before = self.kv.get(METADATA_KEY)

        with self.assertRaises(BackupError) as cm:
            self.manager.delete_backup("missing")
        self.assertKind(cm, BackupErrorKind.NOT_FOUND)
        self.assertEqual(self.kv.get(METADATA_KEY), before)


class TestHistoryAndReminder(ManagerTestCase):
    """Tests for history ordering and reminder delegates."""

    def test_history_newest_first(self):
        base = datetime(2024, 1, 1, tzinfo=UTC)
        for number, offset in ((1, 3), (2, 1), (3, 7)):
            self.store.add_backup_version(
                BackupVersion(
                    id=f"id-{number}",
                    version_number=number,
                    timestamp=format_iso(base + timedelta(days=offset)),
                    data_size=10,
                    checksum="00000001",
                )
            )

        history = self.manager.get_backup_history()
        self.assertEqual([v.version_number for v in history], [3, 1, 2])

    def test_history_empty(self):
        self.assertEqual(self.manager.get_backup_history(), [])

    def test_reminder_cadence(self):
        self.assertTrue(self.manager.should_show_backup_reminder())

        self.manager.create_backup(make_payload())
        self.assertFalse(self.manager.should_show_backup_reminder())

        later = datetime.now(UTC) + timedelta(days=8)
        self.assertTrue(self.manager.should_show_backup_reminder(later))

    def test_dismiss_and_clear(self):
        self.store.set_last_backup_date(datetime.now(UTC) - timedelta(days=10))
        self.assertTrue(self.manager.should_show_backup_reminder())

        self.manager.dismiss_backup_reminder()
        self.assertFalse(self.manager.should_show_backup_reminder())

        self.manager.clear_backup_reminder()
        self.assertTrue(self.manager.should_show_backup_reminder())


class TestParseBackupFile(ManagerTestCase):
    """Tests for parse_backup_file."""

    def test_parse_does_not_catalog(self):
        envelope = self.manager.parse_backup_file(make_foreign_archive())
        self.assertEqual(envelope.backup_version.id, "abc")
        self.assertEqual(self.store.get_backup_metadata().versions, [])
        self.assertFalse(self.manager.has_archive("abc"))

    def test_parse_invalid(self):
        with self.assertRaises(BackupError) as cm:
            self.manager.parse_backup_file(make_zip({"readme.txt": b"hi"}))
        self.assertKind(cm, BackupErrorKind.INVALID_FORMAT)

    def test_parse_keeps_unknown_payload_keys(self):
        payload = make_payload()
        payload["user"]["badges"] = ["first-week"]
        created = self.manager.create_backup(copy.deepcopy(payload))

        envelope = self.manager.parse_backup_file(created.archive)
        self.assertEqual(envelope.user["badges"], ["first-week"])


if __name__ == "__main__":
    unittest.main()
