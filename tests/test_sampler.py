"""Tests for meter.sampler -- rate computation and the tick loop."""

import asyncio
import math
import unittest

from meter.sampler import RateSample, RateSampler, compute_mbps


class TestComputeMbps(unittest.TestCase):
    def test_exact_formula(self):
        self.assertEqual(compute_mbps(5_000_000, 4.0), 10.0)

    def test_matches_formula_for_other_pairs(self):
        for n_bytes, elapsed in [(1, 0.001), (125_000_000, 10.0), (3_333, 0.37)]:
            self.assertEqual(compute_mbps(n_bytes, elapsed), (n_bytes * 8) / (elapsed * 1_000_000))

    def test_zero_elapsed(self):
        self.assertEqual(compute_mbps(1_000_000, 0.0), 0.0)

    def test_negative_elapsed(self):
        self.assertEqual(compute_mbps(1_000_000, -1.0), 0.0)

    def test_zero_bytes(self):
        self.assertEqual(compute_mbps(0, 2.0), 0.0)

    def test_never_infinite(self):
        result = compute_mbps(1e308, 1e-300)
        self.assertTrue(math.isfinite(result))


class TestRateSamplerTick(unittest.TestCase):
    def test_first_tick_with_zero_elapsed_emits_zero(self):
        emitted = []
        sampler = RateSampler(source=lambda: (0, 0.0), on_sample=emitted.append, clock=lambda: 1.0)
        sample = sampler.tick()
        self.assertEqual(sample, RateSample(timestamp=1.0, mbps=0.0))
        self.assertEqual(emitted, [sample])

    def test_tick_uses_cumulative_rate(self):
        sampler = RateSampler(source=lambda: (1_250_000, 1.0))
        self.assertAlmostEqual(sampler.tick().mbps, 10.0)

    def test_callback_error_does_not_stop_sampling(self):
        def boom(_):
            raise RuntimeError("observer bug")

        sampler = RateSampler(source=lambda: (100, 1.0), on_sample=boom)
        with self.assertLogs("meter.sampler", level="ERROR"):
            sampler.tick()
        sampler.tick()
        self.assertEqual(len(sampler.samples), 2)

    def test_sample_to_dict(self):
        d = RateSample(timestamp=1.23456, mbps=9.876).to_dict()
        self.assertEqual(d, {"timestamp": 1.235, "mbps": 9.88})


class TestRateSamplerLoop(unittest.IsolatedAsyncioTestCase):
    async def test_runs_until_stopped(self):
        total = [0]
        emitted = []
        loop = asyncio.get_running_loop()
        start = loop.time()

        sampler = RateSampler(
            source=lambda: (total[0], loop.time() - start),
            on_sample=emitted.append,
            tick_ms=10,
        )
        sampler.start()
        for _ in range(5):
            total[0] += 10_000
            await asyncio.sleep(0.01)
        samples = await sampler.stop()

        self.assertGreater(len(samples), 0)
        self.assertEqual(samples, emitted)
        self.assertTrue(all(s.mbps >= 0 for s in samples))

    async def test_stop_before_first_tick(self):
        sampler = RateSampler(source=lambda: (0, 0.0), tick_ms=1000)
        sampler.start()
        samples = await sampler.stop()
        self.assertEqual(samples, [])

    async def test_cancel_event_ends_loop(self):
        cancel = asyncio.Event()
        cancel.set()
        sampler = RateSampler(source=lambda: (10, 1.0), tick_ms=5)
        samples = await asyncio.wait_for(sampler.run(cancel), timeout=1.0)
        self.assertEqual(samples, [])

    async def test_double_start_rejected(self):
        sampler = RateSampler(source=lambda: (0, 0.0), tick_ms=1000)
        sampler.start()
        with self.assertRaises(RuntimeError):
            sampler.start()
        await sampler.stop()


if __name__ == "__main__":
    unittest.main()
