"""Unit tests for the queue file codec and atomic store."""

import json
import os

import pytest

from core.errors import MalformedSnapshotError, PersistenceError
from core.waitlist import Waitlist
from utils.persistence import SnapshotStore, decode_snapshot, encode_snapshot


class TestCodec:
    """Tests for encode_snapshot / decode_snapshot."""

    @pytest.mark.parametrize(
        "entries, solo_run",
        [
            ((), False),
            (("111",), True),
            (("111", "111", "111"), True),
            (("111", "222", "111", "333"), False),
        ],
    )
    def test_round_trip(self, entries, solo_run) -> None:
        restored = decode_snapshot(encode_snapshot(Waitlist(entries, solo_run=solo_run)))
        assert restored.snapshot() == entries
        assert restored.solo_run is solo_run

    def test_broken_solo_run_survives_round_trip(self) -> None:
        # A alone in line after B cancelled: one owner, but no longer a solo run
        waitlist = Waitlist()
        waitlist.add("A")
        waitlist.add("B")
        waitlist.remove_self("B")

        restored = decode_snapshot(encode_snapshot(waitlist))
        assert restored.snapshot() == ("A",)
        assert restored.solo_run is False

    def test_encoding_is_readable_json(self) -> None:
        data = json.loads(encode_snapshot(Waitlist(["1", "2"])))
        assert data == {"queue": ["1", "2"], "solo_run": False}

    def test_long_run_left_by_a_cancel_is_accepted(self) -> None:
        waitlist = Waitlist()
        for identity in ("A", "A", "A", "B", "A"):
            assert waitlist.add(identity).ok
        waitlist.remove_self("B")

        restored = decode_snapshot(encode_snapshot(waitlist))

        assert restored.snapshot() == ("A", "A", "A", "A")
        assert restored.solo_run is False

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "not json",
            "[]",
            '{"entries": []}',
            '{"queue": "111"}',
            '{"queue": ["111", 5]}',
            '{"queue": ["111", "  "]}',
            '{"queue": [], "solo_run": "yes"}',
            '{"queue": ["111"]}',
            '{"queue": [], "solo_run": true}',
            '{"queue": ["A", "B"], "solo_run": true}',
            '{"queue": ["A", "A", "A", "A"], "solo_run": true}',
        ],
    )
    def test_malformed(self, text) -> None:
        with pytest.raises(MalformedSnapshotError):
            decode_snapshot(text)


class TestSnapshotStore:
    """Tests for reading and atomically replacing the queue file."""

    def test_load_missing_file(self, queue_path) -> None:
        assert SnapshotStore(queue_path).load() is None

    def test_save_creates_directory_and_loads_back(self, queue_path) -> None:
        store = SnapshotStore(queue_path)
        store.save(Waitlist(["1", "2", "1"]))

        assert queue_path.exists()
        assert store.load().snapshot() == ("1", "2", "1")

    def test_save_replaces_previous_snapshot(self, queue_path) -> None:
        store = SnapshotStore(queue_path)
        store.save(Waitlist(["1", "2"]))
        store.save(Waitlist(["2"]))
        assert store.load().snapshot() == ("2",)

    def test_no_temp_files_left_behind(self, queue_path) -> None:
        store = SnapshotStore(queue_path)
        store.save(Waitlist(["1"]))
        assert [p.name for p in queue_path.parent.iterdir()] == ["queue.json"]

    def test_corrupt_file_raises(self, queue_path) -> None:
        queue_path.parent.mkdir(parents=True)
        queue_path.write_text("{truncated", encoding="utf-8")
        with pytest.raises(MalformedSnapshotError):
            SnapshotStore(queue_path).load()

    def test_non_utf8_file_is_malformed(self, queue_path) -> None:
        queue_path.parent.mkdir(parents=True)
        queue_path.write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(MalformedSnapshotError):
            SnapshotStore(queue_path).load()

    def test_failed_replace_keeps_previous_snapshot(self, queue_path, monkeypatch) -> None:
        store = SnapshotStore(queue_path)
        store.save(Waitlist(["1"]))

        def broken_replace(self, target):
            raise OSError("disk full")

        monkeypatch.setattr("pathlib.Path.replace", broken_replace)
        with pytest.raises(PersistenceError):
            store.save(Waitlist(["1", "2"]))
        monkeypatch.undo()

        assert store.load().snapshot() == ("1",)
        assert [p.name for p in queue_path.parent.iterdir()] == ["queue.json"]

    def test_failed_fsync_raises(self, queue_path, monkeypatch) -> None:
        store = SnapshotStore(queue_path)

        def broken_fsync(fd):
            raise OSError("I/O error")

        monkeypatch.setattr(os, "fsync", broken_fsync)
        with pytest.raises(PersistenceError):
            store.save(Waitlist(["1"]))
        monkeypatch.undo()

        assert not queue_path.exists()
