"""Tests for backup orchestration.

Covers:
- Archive produced per backup, content identical to the live tree
- Global (tar.gz, whole data/) and scoped (zip, data/<scope>/) layouts
- Retention bound of 50 after 51 and 52 backups
- Name collisions within one second
- Failures reported in BackupResult, never raised from on_note_mutated
- Archive count query
"""

import logging
import tarfile
import zipfile
from datetime import datetime, timedelta

import pytest

from notekeeper.backup import archive_writer
from notekeeper.backup.backup_manager import BackupManager, BackupResult
from notekeeper.config import AppConfig

BASE_TIME = datetime(2025, 2, 1, 14, 30, 0)


def at(seconds):
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def data_root(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def scoped_mgr(tmp_path, data_root):
    config = AppConfig(
        data_root=data_root, backup_root=tmp_path / "backup", layout="scoped",
    )
    return BackupManager(config)


@pytest.fixture
def global_mgr(tmp_path, data_root):
    config = AppConfig(
        data_root=data_root, backup_root=tmp_path / "backup", layout="global",
    )
    return BackupManager(config)


def zip_contents(path):
    with zipfile.ZipFile(path) as zf:
        return {i.filename: zf.read(i) for i in zf.infolist() if not i.is_dir()}


def tar_contents(path):
    with tarfile.open(path, "r:gz") as tar:
        return {m.name: tar.extractfile(m).read() for m in tar.getmembers() if m.isfile()}


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

class TestPaths:
    def test_scoped_dirs(self, scoped_mgr, tmp_path):
        assert scoped_mgr.source_dir("work") == tmp_path / "data" / "work"
        assert scoped_mgr.backup_dir("work") == tmp_path / "backup" / "work"

    def test_unscoped_in_scoped_layout(self, scoped_mgr, tmp_path):
        assert scoped_mgr.source_dir(None) == tmp_path / "data"
        assert scoped_mgr.backup_dir(None) == tmp_path / "backup"

    def test_global_layout_ignores_scope(self, global_mgr, tmp_path):
        assert global_mgr.source_dir("work") == tmp_path / "data"
        assert global_mgr.backup_dir("work") == tmp_path / "backup"

    @pytest.mark.parametrize("scope", ["..", ".", "a/b", "a\\b", ""])
    def test_invalid_scope_rejected(self, scoped_mgr, scope):
        with pytest.raises(ValueError):
            scoped_mgr.backup_dir(scope)


# ---------------------------------------------------------------------------
# Archive creation
# ---------------------------------------------------------------------------

class TestBackupCreation:
    def test_scoped_note_archived(self, scoped_mgr, data_root, tmp_path):
        (data_root / "work").mkdir()
        (data_root / "work" / "todo.txt").write_text("buy milk")

        result = scoped_mgr.backup("work", timestamp=at(0))

        assert result.success is True
        expected = tmp_path / "backup" / "work" / "20250201_143000.zip"
        assert result.archive_path == str(expected)
        assert zip_contents(expected) == {"work/todo.txt": b"buy milk"}

    def test_scoped_archive_excludes_other_scopes(self, scoped_mgr, data_root):
        (data_root / "work").mkdir()
        (data_root / "home").mkdir()
        (data_root / "work" / "a.txt").write_text("a")
        (data_root / "home" / "b.txt").write_text("b")

        result = scoped_mgr.backup("work", timestamp=at(0))
        assert list(zip_contents(result.archive_path)) == ["work/a.txt"]

    def test_global_archive_covers_whole_tree(self, global_mgr, data_root, tmp_path):
        (data_root / "work").mkdir()
        (data_root / "top.txt").write_text("top")
        (data_root / "work" / "w.txt").write_text("w")

        result = global_mgr.backup("work", timestamp=at(0))

        assert result.archive_path == str(tmp_path / "backup" / "20250201_143000.tar.gz")
        assert tar_contents(result.archive_path) == {
            "data/top.txt": b"top",
            "data/work/w.txt": b"w",
        }

    def test_empty_scope_archive(self, scoped_mgr, data_root):
        (data_root / "empty").mkdir()
        result = scoped_mgr.backup("empty", timestamp=at(0))
        with zipfile.ZipFile(result.archive_path) as zf:
            assert zf.namelist() == ["empty/"]

    def test_snapshot_reflects_state_at_call(self, scoped_mgr, data_root):
        (data_root / "s").mkdir()
        note = data_root / "s" / "n.txt"
        note.write_text("v1")
        first = scoped_mgr.backup("s", timestamp=at(0))
        note.write_text("v2")
        second = scoped_mgr.backup("s", timestamp=at(1))

        assert zip_contents(first.archive_path) == {"s/n.txt": b"v1"}
        assert zip_contents(second.archive_path) == {"s/n.txt": b"v2"}

    def test_backup_dir_created(self, scoped_mgr, data_root, tmp_path):
        (data_root / "new").mkdir()
        assert not (tmp_path / "backup").exists()
        scoped_mgr.backup("new", timestamp=at(0))
        assert (tmp_path / "backup" / "new").is_dir()

    def test_same_second_gets_suffix(self, scoped_mgr, data_root):
        (data_root / "s").mkdir()
        names = [
            scoped_mgr.backup("s", timestamp=at(0)).archive_path.rsplit("/", 1)[-1]
            for _ in range(3)
        ]
        assert names == [
            "20250201_143000.zip",
            "20250201_143000_01.zip",
            "20250201_143000_02.zip",
        ]
        # Suffixed names still sort after the bare name and before the next second
        scoped_mgr.backup("s", timestamp=at(1))
        listed = [p.name for p in scoped_mgr.list_archives("s")]
        assert listed == sorted(listed)
        assert listed[-1] == "20250201_143001.zip"

    def test_default_timestamp_is_now(self, scoped_mgr, data_root):
        (data_root / "s").mkdir()
        before = datetime.now().replace(microsecond=0)
        result = scoped_mgr.backup("s")
        stamp = datetime.strptime(result.archive_path.rsplit("/", 1)[-1][:15], "%Y%m%d_%H%M%S")
        assert stamp >= before


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class TestRetentionBound:
    def test_51_backups_leave_50(self, scoped_mgr, data_root):
        (data_root / "x").mkdir()
        created = []
        for i in range(51):
            created.append(scoped_mgr.backup("x", timestamp=at(i)).archive_path)

        remaining = [str(p) for p in scoped_mgr.list_archives("x")]
        assert scoped_mgr.get_archive_count("x") == 50
        assert remaining == created[1:]

    def test_52_backups_drop_two_oldest(self, scoped_mgr, data_root):
        (data_root / "x").mkdir()
        results = [scoped_mgr.backup("x", timestamp=at(i)) for i in range(52)]

        names = {p.name for p in scoped_mgr.list_archives("x")}
        assert len(names) == 50
        assert "20250201_143000.zip" not in names
        assert "20250201_143001.zip" not in names
        assert results[-1].pruned == ["20250201_143001.zip"]

    def test_collections_are_independent(self, scoped_mgr, data_root):
        (data_root / "a").mkdir()
        (data_root / "b").mkdir()
        for i in range(55):
            scoped_mgr.backup("a", timestamp=at(i))
        for i in range(3):
            scoped_mgr.backup("b", timestamp=at(i))
        assert scoped_mgr.get_archive_count("a") == 50
        assert scoped_mgr.get_archive_count("b") == 3

    def test_configured_limit(self, tmp_path, data_root):
        mgr = BackupManager(AppConfig(
            data_root=data_root, backup_root=tmp_path / "backup",
            layout="global", retention_limit=3,
        ))
        for i in range(5):
            mgr.backup(timestamp=at(i))
        assert mgr.get_archive_count() == 3


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestFailures:
    def test_missing_source_reported(self, scoped_mgr):
        result = scoped_mgr.backup("ghost", timestamp=at(0))
        assert result.success is False
        assert result.stage == "archive"
        assert scoped_mgr.get_archive_count("ghost") == 0

    def test_invalid_scope_reported(self, scoped_mgr):
        result = scoped_mgr.backup("../escape")
        assert result.success is False
        assert result.stage == "prepare"

    def test_partial_archive_left_and_logged(self, scoped_mgr, data_root, monkeypatch, caplog):
        (data_root / "s").mkdir()
        (data_root / "s" / "n.txt").write_text("x")

        def failing_writer(source_dir, target):
            target.write_bytes(b"PK\x03\x04truncated")
            raise OSError("disk full")

        monkeypatch.setitem(archive_writer._WRITERS, "zip", failing_writer)
        with caplog.at_level(logging.WARNING, logger="notekeeper.backup.backup_manager"):
            result = scoped_mgr.backup("s", timestamp=at(0))

        assert result.success is False
        assert result.stage == "archive"
        assert "disk full" in result.error
        assert any("Partial archive" in r.getMessage() for r in caplog.records)
        # The partial file is not rolled back
        assert scoped_mgr.get_archive_count("s") == 1
        # Live data untouched
        assert (data_root / "s" / "n.txt").read_text() == "x"

    def test_retention_skipped_after_failed_write(self, scoped_mgr, data_root, monkeypatch):
        (data_root / "s").mkdir()
        for i in range(50):
            scoped_mgr.backup("s", timestamp=at(i))

        def failing_writer(source_dir, target):
            raise OSError("read error")

        monkeypatch.setitem(archive_writer._WRITERS, "zip", failing_writer)
        result = scoped_mgr.backup("s", timestamp=at(100))
        assert result.pruned == []
        assert scoped_mgr.get_archive_count("s") == 50

    def test_retention_listing_error_reported(self, scoped_mgr, data_root, monkeypatch):
        from notekeeper.backup import backup_manager as bm_module

        (data_root / "s").mkdir()

        def broken_retention(*args, **kwargs):
            raise PermissionError("cannot list")

        monkeypatch.setattr(bm_module, "enforce_retention", broken_retention)
        result = scoped_mgr.backup("s", timestamp=at(0))
        assert result.success is False
        assert result.stage == "retention"
        assert result.archive_path is not None

    def test_on_note_mutated_never_raises(self, scoped_mgr, monkeypatch, caplog):
        def explode(*args, **kwargs):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(scoped_mgr, "backup", explode)
        with caplog.at_level(logging.ERROR):
            assert scoped_mgr.on_note_mutated("s") is None
        assert any("Unexpected error" in r.getMessage() for r in caplog.records)

    def test_on_note_mutated_logs_failed_result(self, scoped_mgr, caplog):
        with caplog.at_level(logging.WARNING, logger="notekeeper.backup.backup_manager"):
            scoped_mgr.on_note_mutated("ghost")
        assert any("failed at archive" in r.getMessage() for r in caplog.records)


# ---------------------------------------------------------------------------
# Listeners and queries
# ---------------------------------------------------------------------------

class TestListenersAndCount:
    def test_listener_receives_result(self, scoped_mgr, data_root):
        (data_root / "s").mkdir()
        seen = []
        scoped_mgr.add_listener(seen.append)
        scoped_mgr.backup("s", timestamp=at(0))
        assert len(seen) == 1
        assert isinstance(seen[0], BackupResult)
        assert seen[0].to_dict()["archive"] == "20250201_143000.zip"

    def test_failing_listener_does_not_break_backup(self, scoped_mgr, data_root):
        (data_root / "s").mkdir()

        def bad_listener(result):
            raise RuntimeError("listener bug")

        scoped_mgr.add_listener(bad_listener)
        assert scoped_mgr.backup("s", timestamp=at(0)).success is True

    def test_count_missing_dir_is_zero(self, scoped_mgr):
        assert scoped_mgr.get_archive_count("never") == 0
        assert scoped_mgr.get_archive_count() == 0

    def test_unscoped_count_excludes_scope_dirs(self, scoped_mgr, data_root):
        (data_root / "s").mkdir()
        scoped_mgr.backup("s", timestamp=at(0))
        scoped_mgr.backup(None, timestamp=at(1))
        assert scoped_mgr.get_archive_count() == 1
        assert scoped_mgr.get_archive_count("s") == 1
