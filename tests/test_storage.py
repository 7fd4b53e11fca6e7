import pytest

from StudyBackEnd.core.errors import StorageUnavailable
from StudyBackEnd.repos.storage import MemoryStorage, SqliteStorage


class TestMemoryStorage:
    def test_get_missing_is_none(self):
        assert MemoryStorage().get("nope") is None

    def test_set_get_remove(self):
        storage = MemoryStorage()
        storage.set("k", "v")
        assert storage.get("k") == "v"
        storage.remove("k")
        assert storage.get("k") is None

    def test_remove_missing_is_noop(self):
        MemoryStorage().remove("nope")

    def test_failed_write_raises(self):
        storage = MemoryStorage({"k": "old"})
        storage.fail_writes = True
        with pytest.raises(StorageUnavailable) as excinfo:
            storage.set("k", "new")
        assert excinfo.value.key == "k"
        assert storage.get("k") == "old"


class TestSqliteStorage:
    def test_round_trip_and_upsert(self, tmp_path):
        storage = SqliteStorage(tmp_path / "study.db")
        storage.set("k", "one")
        storage.set("k", "two")
        assert storage.get("k") == "two"
        storage.remove("k")
        assert storage.get("k") is None

    def test_default_path_uses_data_dir(self, tmp_path):
        storage = SqliteStorage()
        assert storage.path == tmp_path / "data" / "study.db"

    def test_separate_instances_share_file(self, tmp_path):
        path = tmp_path / "study.db"
        SqliteStorage(path).set("k", "v")
        assert SqliteStorage(path).get("k") == "v"

    def test_unreadable_file_reads_as_absent(self, tmp_path):
        path = tmp_path / "broken.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        assert SqliteStorage(path).get("k") is None

    def test_unwritable_file_raises(self, tmp_path):
        path = tmp_path / "broken.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        with pytest.raises(StorageUnavailable):
            SqliteStorage(path).set("k", "v")
