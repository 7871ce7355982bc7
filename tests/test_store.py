import json
import tempfile
import threading
import unittest
from pathlib import Path
from watchprogress.state import ProgressStore
from fakes import ivs, pairs

class TestProgressStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "progress.json"
        self.store = ProgressStore(str(self.path), persist_enabled=True)

    def tearDown(self):
        self.tmp.cleanup()

    def test_unknown_record_is_zeroed(self):
        record = self.store.get("alice", "lecture-1")
        self.assertEqual(record.merged_intervals, [])
        self.assertEqual(record.progress_percentage, 0)
        self.assertEqual(record.last_known_position, 0)
        self.assertNotIn(ProgressStore.key("alice", "lecture-1"), self.store.state.records)

    def test_concurrent_saves_commute(self):
        for order in ([(0, 10)], [(8, 20)]), ([(8, 20)], [(0, 10)]):
            store = ProgressStore(str(self.path.with_name(f"p{id(order)}.json")), persist_enabled=False)
            for submitted in order:
                store.upsert_merge("alice", "lecture-1", ivs(*submitted), 5, 100)
            record = store.get("alice", "lecture-1")
            self.assertEqual(pairs(record.merged_intervals), [(0, 20)])
            self.assertEqual(record.progress_percentage, 20)

    def test_repeated_save_is_idempotent(self):
        first = self.store.upsert_merge("alice", "lecture-1", ivs((0, 15), (20, 25)), 25, 100)
        second = self.store.upsert_merge("alice", "lecture-1", ivs((0, 15), (20, 25)), 25, 100)
        self.assertEqual(pairs(first.merged_intervals), pairs(second.merged_intervals))
        self.assertEqual(second.total_unique_watched_seconds, 20)
        self.assertEqual(second.progress_percentage, 20)

    def test_partial_save_never_regresses(self):
        self.store.upsert_merge("alice", "lecture-1", ivs((0, 50)), 50, 100)
        record = self.store.upsert_merge("alice", "lecture-1", ivs((0, 10)), 10, 100)
        self.assertEqual(pairs(record.merged_intervals), [(0, 50)])
        self.assertEqual(record.progress_percentage, 50)

    def test_duration_never_shrinks(self):
        self.store.upsert_merge("alice", "lecture-1", ivs((0, 30)), 30, 120)
        record = self.store.upsert_merge("alice", "lecture-1", ivs((30, 40)), 40, 0)
        self.assertEqual(record.content_duration, 120)

    def test_position_kept_within_watched_content(self):
        record = self.store.upsert_merge("alice", "lecture-1", ivs((0, 30)), 90, 100)
        self.assertEqual(record.last_known_position, 30)
        record = self.store.upsert_merge("bob", "lecture-1", ivs((0, 60)), 12, 100)
        self.assertEqual(record.last_known_position, 12)

    def test_late_older_save_keeps_position(self):
        self.store.upsert_merge("alice", "lecture-1", ivs((0, 20)), 20, 100)
        record = self.store.upsert_merge("alice", "lecture-1", ivs((0, 10)), 10, 100)
        self.assertEqual(record.last_known_position, 20)
        self.assertEqual(record.progress_percentage, 20)

    def test_records_keyed_by_subject_and_content(self):
        self.store.upsert_merge("alice", "lecture-1", ivs((0, 10)), 10, 100)
        self.store.upsert_merge("bob", "lecture-1", ivs((50, 60)), 60, 100)
        self.assertEqual(pairs(self.store.get("alice", "lecture-1").merged_intervals), [(0, 10)])
        self.assertEqual(pairs(self.store.get("bob", "lecture-1").merged_intervals), [(50, 60)])
        self.assertEqual(self.store.get("alice", "lecture-2").merged_intervals, [])

    def test_persisted_and_reloaded(self):
        self.store.upsert_merge("alice", "lecture-1", ivs((0, 15), (20, 25)), 25, 100)
        data = json.loads(self.path.read_text())
        self.assertIn("alice:lecture-1", data["records"])

        reloaded = ProgressStore(str(self.path))
        record = reloaded.get("alice", "lecture-1")
        self.assertEqual(pairs(record.merged_intervals), [(0, 15), (20, 25)])
        self.assertEqual(record.last_known_position, 25)

    def test_corrupt_file_starts_fresh(self):
        self.path.write_text("{not json")
        store = ProgressStore(str(self.path))
        self.assertEqual(store.state.records, {})

    def test_threads_racing_on_one_key(self):
        chunks = [ivs((i * 10, i * 10 + 10)) for i in range(10)]
        threads = [
            threading.Thread(target=self.store.upsert_merge, args=("alice", "lecture-1", chunk, 0, 100))
            for chunk in chunks
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        record = self.store.get("alice", "lecture-1")
        self.assertEqual(pairs(record.merged_intervals), [(0, 100)])
        self.assertEqual(record.progress_percentage, 100)

if __name__ == '__main__':
    unittest.main()
