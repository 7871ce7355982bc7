import asyncio
import unittest
from watchprogress.clients.progress_client import ProgressAPIClient
from watchprogress.errors import ProgressAPIError
from watchprogress.models import NoticeKind
from watchprogress.sync import SyncClient
from fakes import FakeProgressServer, RecordingNotifier, ivs, pairs

class TestSyncClient(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.server = FakeProgressServer()
        self.notifier = RecordingNotifier()
        self.api = ProgressAPIClient(
            base_url="http://progress.test",
            token_provider=lambda: "token-alice",
            transport=self.server.transport(),
        )
        self.sync = SyncClient("lecture-1", api=self.api, notifier=self.notifier, debounce_seconds=0.05)

    async def asyncTearDown(self):
        await self.api.aclose()

    async def settle(self):
        await asyncio.sleep(0.2)

    async def test_burst_collapses_into_one_request(self):
        for i in range(5):
            self.sync.schedule_persist([], ivs((i * 10, i * 10 + 5)), i * 10 + 5, 100)
        await self.settle()

        self.assertEqual(len(self.server.posted), 1)
        self.assertEqual(pairs(self.server.posted[0].merged_intervals), [(0, 5), (10, 15), (20, 25), (30, 35), (40, 45)])
        self.assertEqual(self.server.posted[0].last_known_position, 45)

    async def test_success_applies_server_state(self):
        # Another tab already saved [0, 10]
        self.server.store.upsert_merge("alice", "lecture-1", ivs((0, 10)), 10, 100)
        self.sync.schedule_persist([], ivs((8, 20)), 20, 100)
        await self.settle()

        self.assertEqual(self.sync.pending, [])
        self.assertEqual(pairs(self.sync.merged), [(0, 20)])
        self.assertEqual(self.sync.progress_percentage, 20)
        self.assertEqual(self.sync.last_known_position, 20)

    async def test_bearer_token_sent(self):
        await self.sync.load()
        self.assertEqual(self.server.requests[0].headers["Authorization"], "Bearer token-alice")

    async def test_load_seeds_state(self):
        self.server.store.upsert_merge("alice", "lecture-1", ivs((0, 30)), 30, 60)
        record = await self.sync.load()
        self.assertEqual(record.progress_percentage, 50)
        self.assertEqual(pairs(self.sync.merged), [(0, 30)])
        self.assertEqual(self.sync.last_known_position, 30)
        self.assertEqual(self.sync.duration, 60)

    async def test_failure_keeps_segments_for_next_attempt(self):
        self.server.down = True
        self.sync.schedule_persist([], ivs((0, 10)), 10, 100)
        await self.settle()

        self.assertEqual(pairs(self.sync.pending), [(0, 10)])
        self.assertEqual([n.kind for n in self.notifier.notices], [NoticeKind.SAVE_FAILED])
        # No retry loop of its own
        self.assertEqual(len(self.server.requests), 1)

        self.server.down = False
        self.sync.schedule_persist([], ivs((10, 18)), 18, 100)
        await self.settle()
        self.assertEqual(pairs(self.server.posted[-1].merged_intervals), [(0, 18)])
        self.assertEqual(self.sync.pending, [])

    async def test_rejected_payload_not_retried(self):
        self.server.status_override = 422
        self.sync.schedule_persist([], ivs((0, 10)), 10, 100)
        await self.settle()
        await asyncio.sleep(0.1)
        self.assertEqual(len(self.server.requests), 1)
        self.assertEqual(pairs(self.sync.pending), [(0, 10)])
        self.assertEqual(self.notifier.notices[0].kind, NoticeKind.SAVE_FAILED)

    async def test_malformed_response_is_a_failed_save(self):
        self.server.body_override = b'{"subjectId": "alice", "contentId": "lecture-1", "mergedIntervals": [{"start": 0, "end": null}]}'
        with self.assertRaises(ProgressAPIError):
            await self.sync.load()

        self.sync.schedule_persist([], ivs((0, 10)), 10, 100)
        await self.settle()
        self.assertEqual(pairs(self.sync.pending), [(0, 10)])
        self.assertEqual(self.notifier.kinds(), [NoticeKind.SAVE_FAILED])

    async def test_flush_skips_debounce(self):
        self.sync.debounce_seconds = 60
        self.sync.schedule_persist([], ivs((0, 10)), 10, 100)
        record = await self.sync.flush()
        self.assertEqual(pairs(record.merged_intervals), [(0, 10)])
        self.assertEqual(len(self.server.posted), 1)

    async def test_segments_added_while_in_flight_are_kept(self):
        self.server.gate = asyncio.Event()
        self.sync.schedule_persist([], ivs((0, 10)), 10, 100)
        await asyncio.sleep(0.1)  # request now in flight and held
        self.sync.debounce_seconds = 60
        self.sync.schedule_persist([], ivs((30, 40)), 40, 100)
        self.server.gate.set()
        await asyncio.sleep(0.05)

        self.assertEqual(pairs(self.sync.pending), [(30, 40)])
        self.assertEqual(pairs(self.sync.merged), [(0, 10)])

    async def test_optimistic_state_includes_unsent_segments(self):
        self.server.down = True
        self.sync.schedule_persist(ivs((0, 10)), ivs((5, 30)), 30, 60)
        await self.settle()
        merged, total, percentage = self.sync.optimistic_state()
        self.assertEqual(pairs(merged), [(0, 30)])
        self.assertEqual(total, 30)
        self.assertEqual(percentage, 50)
        # Authoritative numbers only move on a successful save
        self.assertEqual(self.sync.progress_percentage, 0)

    async def test_close_is_best_effort(self):
        self.server.down = True
        self.sync.schedule_persist([], ivs((0, 10)), 10, 100)
        await self.sync.close()
        self.assertEqual(len(self.server.requests), 1)
        self.assertEqual(self.notifier.notices[0].kind, NoticeKind.SAVE_FAILED)

if __name__ == '__main__':
    unittest.main()
