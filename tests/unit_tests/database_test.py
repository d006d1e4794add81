from unittest.mock import MagicMock, patch
import pytest
from sqlalchemy.exc import OperationalError
from find_prints.core.database import FingerprintStore, InsertCounts, InsertStatus, open_store
from find_prints.core.errors import StorageError

HASH_A = "FFC0000000000000"
HASH_B = "003F000000000100"


class TestSongs:

    def test_new_song_is_created(self, store):
        song = store.insert_song("Blinding Lights", "The Weeknd")
        assert song.created is True
        assert store.find_song("Blinding Lights", "The Weeknd") == song.song_id

    def test_duplicate_song_returns_existing_id(self, store):
        first = store.insert_song("Blinding Lights", "The Weeknd")
        second = store.insert_song("Blinding Lights", "The Weeknd")
        assert second.created is False
        assert second.song_id == first.song_id

    def test_same_name_other_artist_is_a_new_song(self, store):
        first = store.insert_song("Intro", "Artist A")
        second = store.insert_song("Intro", "Artist B")
        assert second.created is True
        assert second.song_id != first.song_id

    def test_lookup_failure_is_a_storage_error(self, store):
        locked = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(store, "find_song", side_effect=locked):
            with pytest.raises(StorageError):
                store.insert_song("Blinding Lights", "The Weeknd")

    def test_missing_song(self, store):
        assert store.find_song("Ghost Song", "Nobody") is None


class TestFingerprints:

    def test_insert_then_duplicate(self, store):
        song_id = store.insert_song("Song", "Artist").song_id
        assert store.insert_fingerprint(HASH_A, 10, song_id) is InsertStatus.INSERTED
        assert store.insert_fingerprint(HASH_A, 10, song_id) is InsertStatus.DUPLICATE
        assert store.count_fingerprints(song_id) == 1

    def test_same_hash_at_other_offset_or_song_is_new(self, store):
        one = store.insert_song("One", "Artist").song_id
        two = store.insert_song("Two", "Artist").song_id
        assert store.insert_fingerprint(HASH_A, 10, one) is InsertStatus.INSERTED
        assert store.insert_fingerprint(HASH_A, 11, one) is InsertStatus.INSERTED
        assert store.insert_fingerprint(HASH_A, 10, two) is InsertStatus.INSERTED

    def test_bulk_insert_counts(self, store):
        song_id = store.insert_song("Song", "Artist").song_id
        counts = store.insert_fingerprints([
            (HASH_A, 1, song_id),
            (HASH_B, 1, song_id),
            (HASH_A, 1, song_id),
        ])
        assert counts == InsertCounts(inserted=2, duplicates=1, failed=0)
        assert counts.total == 3
        store.commit()
        assert store.get_fingerprints(song_id) == [(HASH_A, 1), (HASH_B, 1)]

    def test_bad_record_mid_batch_does_not_spoil_the_rest(self, store):
        song_id = store.insert_song("Song", "Artist").song_id
        store.commit()
        statuses = [
            store.insert_fingerprint(HASH_A, 1, song_id),
            store.insert_fingerprint(HASH_B, None, song_id),
            store.insert_fingerprint(HASH_B, 2, song_id),
        ]
        assert statuses == [InsertStatus.INSERTED, InsertStatus.ERROR, InsertStatus.INSERTED]

        store.commit()
        assert store.get_fingerprints(song_id) == [(HASH_A, 1), (HASH_B, 2)]

    def test_bulk_counts_survive_a_failing_record(self, store):
        song_id = store.insert_song("Song", "Artist").song_id
        counts = store.insert_fingerprints([
            (HASH_A, 1, song_id),
            (HASH_A, None, song_id),
            (HASH_A, 1, song_id),
            (HASH_B, 3, song_id),
        ])
        assert counts == InsertCounts(inserted=2, duplicates=1, failed=1)
        store.commit()
        assert store.count_fingerprints(song_id) == 2

    def test_driver_errors_are_reported_per_record(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "sqlite"
        session.execute.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        assert FingerprintStore(session).insert_fingerprint(HASH_A, 1, 1) is InsertStatus.ERROR

    def test_unsupported_dialect(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "mssql"
        with pytest.raises(StorageError):
            FingerprintStore(session).insert_fingerprint(HASH_A, 1, 1)


class TestCleanup:

    def test_delete_song_takes_its_fingerprints(self, store):
        song_id = store.insert_song("Song", "Artist").song_id
        store.insert_fingerprint(HASH_A, 1, song_id)
        store.delete_song(song_id)
        store.commit()
        assert store.find_song("Song", "Artist") is None
        assert store.count_fingerprints(song_id) == 0

    def test_purge_removes_only_songs_without_fingerprints(self, store):
        kept = store.insert_song("Kept", "Artist").song_id
        store.insert_fingerprint(HASH_A, 1, kept)
        store.insert_song("Empty", "Artist")
        store.commit()

        assert store.purge_incomplete_songs() == [("Empty", "Artist")]
        assert store.find_song("Kept", "Artist") == kept
        assert store.find_song("Empty", "Artist") is None


class TestOpenStore:

    def test_uncommitted_work_is_rolled_back_on_error(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'scoped.db'}"
        with open_store(url) as store:
            store.insert_song("Committed", "Artist")
            store.commit()

        with pytest.raises(RuntimeError):
            with open_store(url) as store:
                store.insert_song("Pending", "Artist")
                raise RuntimeError("worker crashed")

        with open_store(url) as store:
            assert store.find_song("Committed", "Artist") is not None
            assert store.find_song("Pending", "Artist") is None

    def test_bad_url_is_a_storage_error(self):
        with pytest.raises(StorageError):
            with open_store("definitely-not-a-dialect://nowhere"):
                pass
