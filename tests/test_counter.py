"""Tests for meter.counter -- shared byte accounting and deadlines."""

import asyncio
import unittest
from concurrent.futures import ThreadPoolExecutor

from meter.counter import Deadline, TransferCounter


class TestTransferCounter(unittest.TestCase):
    def test_add_returns_total(self):
        c = TransferCounter()
        self.assertEqual(c.add(10), 10)
        self.assertEqual(c.add(5), 15)
        self.assertEqual(c.total, 15)

    def test_negative_delta_rejected(self):
        c = TransferCounter()
        c.add(10)
        with self.assertRaises(ValueError):
            c.add(-1)
        self.assertEqual(c.total, 10)

    def test_units_and_snapshot(self):
        c = TransferCounter()
        c.add(100)
        c.complete_unit()
        c.complete_unit()
        self.assertEqual(c.units, 2)
        self.assertEqual(c.snapshot(), (100, 2))

    def test_reset(self):
        c = TransferCounter()
        c.add(100)
        c.complete_unit()
        c.reset()
        self.assertEqual(c.snapshot(), (0, 0))

    def test_threads_never_lose_updates(self):
        c = TransferCounter()
        workers, repeats, unit = 8, 5_000, 1_500

        def hammer():
            for _ in range(repeats):
                c.add(unit)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            for f in [pool.submit(hammer) for _ in range(workers)]:
                f.result()

        self.assertEqual(c.total, workers * repeats * unit)


class TestTransferCounterAsync(unittest.IsolatedAsyncioTestCase):
    async def test_tasks_never_lose_updates(self):
        c = TransferCounter()
        workers, repeats, unit = 6, 500, 4096

        async def worker():
            for _ in range(repeats):
                c.add(unit)
                await asyncio.sleep(0)

        await asyncio.gather(*(worker() for _ in range(workers)))
        self.assertEqual(c.total, workers * repeats * unit)


class TestDeadline(unittest.TestCase):
    def test_after_uses_clock(self):
        now = [100.0]
        d = Deadline.after(4000, clock=lambda: now[0])
        self.assertAlmostEqual(d.at, 104.0)
        self.assertFalse(d.expired())
        self.assertAlmostEqual(d.remaining(), 4.0)

        now[0] = 104.0
        self.assertTrue(d.expired())
        self.assertEqual(d.remaining(), 0.0)

    def test_remaining_never_negative(self):
        d = Deadline(at=1.0, clock=lambda: 5.0)
        self.assertEqual(d.remaining(), 0.0)


if __name__ == "__main__":
    unittest.main()
