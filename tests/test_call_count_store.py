import tempfile
import unittest
from pathlib import Path

from snoozebot.call_count_store import CallCountConflictError, CallCountStore


class DummyLogger:
    def __init__(self):
        self.lines = []

    def info(self, msg, *args, **kwargs):
        self.lines.append(msg % args if args else msg)

    def warning(self, *args, **kwargs):
        pass

    def error(self, *args, **kwargs):
        pass


class RacingStore(CallCountStore):
    """Loses the compare-and-swap a fixed number of times."""

    def __init__(self, *args, losses: int, **kwargs):
        super().__init__(*args, **kwargs)
        self.losses = losses
        self.cas_calls = 0

    def _compare_and_swap(self, conn, user_id, count, version):
        self.cas_calls += 1
        if self.losses > 0:
            self.losses -= 1
            # another client bumps the row between our read and write
            super()._compare_and_swap(conn, user_id, count, version)
            return False
        return super()._compare_and_swap(conn, user_id, count, version)


class CallCountStoreTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.db_path = Path(self.tmp.name) / "counts.db"
        self.logger = DummyLogger()

    async def test_increments_accumulate(self):
        store = CallCountStore(self.db_path, self.logger)

        self.assertEqual(store.get_call_count(5), 0)
        self.assertEqual(await store.increment_call_count(5), 1)
        self.assertEqual(await store.increment_call_count(5), 2)
        self.assertEqual(store.get_call_count(5), 2)
        self.assertEqual(store.get_call_count(6), 0)

    def test_conflict_is_retried_with_fresh_version(self):
        store = RacingStore(self.db_path, self.logger, losses=2)
        store.increment_call_count_sync(1)

        count = store.increment_call_count_sync(1)

        # two competing writes landed plus ours
        self.assertEqual(count, 4)
        self.assertEqual(store.get_call_count(1), 4)
        self.assertTrue(any(line.startswith("CALL_COUNT_CONFLICT") for line in self.logger.lines))

    def test_gives_up_after_max_retries(self):
        store = RacingStore(self.db_path, self.logger, losses=10, max_retries=3)
        store.increment_call_count_sync(1)

        with self.assertRaises(CallCountConflictError):
            store.increment_call_count_sync(1)
        self.assertEqual(store.cas_calls, 3)


if __name__ == "__main__":
    unittest.main()
