"""Tests for meter.runner -- phase sequencing, failure policy and results."""

import asyncio
import random
import unittest

import aiohttp

from meter.config import SpeedTestConfig
from meter.engine import Direction, Provenance, ThroughputEngine, ThroughputResult
from meter.errors import (
    ChannelUnavailableError,
    ConfigError,
    InvalidPhaseTransition,
    MeasurementError,
    TestCancelledError,
)
from meter.fallback import FallbackSimulator
from meter.latency import LatencyProbe, LatencyResult
from meter.runner import (
    MeasurementPhase,
    RunContext,
    RunObserver,
    RunResult,
    SpeedTestRunner,
)

P = MeasurementPhase


async def _no_sleep(_seconds):
    return None


class Recorder(RunObserver):
    def __init__(self):
        self.phases = []
        self.samples = []
        self.results = []
        self.errors = []

    def on_phase(self, phase):
        self.phases.append(phase)

    def on_sample(self, phase, sample):
        self.samples.append((phase, sample))

    def on_result(self, result):
        self.results.append(result)

    def on_error(self, error):
        self.errors.append(error)


class FixedProbe:
    def __init__(self, result=None, error=None):
        self.result = result or _latency(12.0, 14.0)
        self.error = error

    async def measure(self, target, cancel=None):
        if self.error is not None:
            raise self.error
        return self.result


class FailingTransport:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def round_trip(self):
        raise aiohttp.ClientConnectionError("unreachable")


class SteadyUnit:
    async def __call__(self, report):
        await asyncio.sleep(0.002)
        report(1000)


class FailingUnit:
    def __init__(self, error):
        self.error = error

    async def __call__(self, report):
        await asyncio.sleep(0)
        raise self.error


def _latency(*samples):
    r = LatencyResult(target="https://ping.test/", samples=list(samples), attempts=len(samples))
    r.calculate()
    return r


def _config(**overrides):
    values = dict(
        download_duration_ms=100,
        upload_duration_cap_ms=100,
        download_parallelism=2,
        upload_parallelism=2,
        sample_interval_ms=10,
        settle_ms=(0, 0, 0),
    )
    values.update(overrides)
    return SpeedTestConfig(**values)


def _engine(download_unit=None, upload_unit=None):
    download_unit = download_unit or SteadyUnit()
    upload_unit = upload_unit or SteadyUnit()

    def factory(direction, _i):
        return download_unit if direction is Direction.DOWNLOAD else upload_unit

    return ThroughputEngine(
        tick_ms=10,
        simulator=FallbackSimulator(rng=random.Random(5), sleep=_no_sleep),
        unit_factory=factory,
    )


class TestRunSequence(unittest.IsolatedAsyncioTestCase):
    async def test_phases_in_order(self):
        obs = Recorder()
        runner = SpeedTestRunner(_config(), obs, probe=FixedProbe(), engine=_engine())

        result = await runner.run()

        self.assertEqual(obs.phases, [P.LATENCY, P.DOWNLOAD, P.UPLOAD, P.COMPLETE])
        self.assertEqual(obs.results, [result])
        self.assertTrue(result.success)
        self.assertAlmostEqual(result.ping_ms, 13.0)
        self.assertTrue(result.ping_has_data)
        self.assertFalse(result.upload_simulated)
        self.assertGreater(result.download_mbps, 0)
        self.assertGreater(result.upload_mbps, 0)

    async def test_samples_are_tagged_with_phase(self):
        obs = Recorder()
        runner = SpeedTestRunner(_config(), obs, probe=FixedProbe(), engine=_engine())
        await runner.run()

        phases = {phase for phase, _ in obs.samples}
        self.assertEqual(phases, {P.DOWNLOAD, P.UPLOAD})
        self.assertTrue(all(s.mbps >= 0 for _, s in obs.samples))

    async def test_gauge_reset_between_download_and_upload(self):
        obs = Recorder()
        runner = SpeedTestRunner(_config(), obs, probe=FixedProbe(), engine=_engine())
        result = await runner.run()

        download_samples = [s for phase, s in obs.samples if phase is P.DOWNLOAD]
        self.assertEqual(download_samples[-1].mbps, 0.0)
        self.assertNotIn(download_samples[-1], result.download.samples)

    async def test_settle_pauses(self):
        pauses = []

        async def sleep(seconds):
            pauses.append(seconds)

        runner = SpeedTestRunner(
            _config(settle_ms=(500, 800, 500)), probe=FixedProbe(), engine=_engine(), sleep=sleep,
        )
        await runner.run()
        self.assertEqual(pauses, [0.5, 0.8, 0.5])

    async def test_download_total_over_elapsed(self):
        class FixedEngine(ThroughputEngine):
            async def measure(self, direction, *args, **kwargs):
                r = ThroughputResult(direction=Direction(direction), bytes_total=5_000_000, elapsed_s=4.0)
                r.calculate()
                return r

        runner = SpeedTestRunner(_config(), probe=FixedProbe(), engine=FixedEngine())
        result = await runner.run()
        self.assertEqual(result.download_mbps, 10.0)


class TestNoData(unittest.IsolatedAsyncioTestCase):
    async def test_unreachable_ping_target_continues(self):
        probe = LatencyProbe(
            sample_count=5,
            transport_factory=lambda target, timeout: FailingTransport(),
            sleep=_no_sleep,
        )
        obs = Recorder()
        runner = SpeedTestRunner(_config(), obs, probe=probe, engine=_engine())

        result = await runner.run()

        self.assertEqual(result.ping_ms, 0.0)
        self.assertFalse(result.ping_has_data)
        self.assertEqual(result.latency.attempts, 5)
        self.assertEqual(obs.phases[-1], P.COMPLETE)
        self.assertIn(P.DOWNLOAD, obs.phases)


class TestUploadPolicy(unittest.IsolatedAsyncioTestCase):
    async def test_rejected_upload_is_simulated(self):
        obs = Recorder()
        engine = _engine(upload_unit=FailingUnit(ChannelUnavailableError("CORS", status=403)))
        runner = SpeedTestRunner(_config(), obs, probe=FixedProbe(), engine=engine)

        result = await runner.run()

        self.assertTrue(result.success)
        self.assertTrue(result.upload_simulated)
        self.assertIs(result.upload.provenance, Provenance.SIMULATED)
        upload_samples = [s for phase, s in obs.samples if phase is P.UPLOAD]
        self.assertGreaterEqual(len(upload_samples), 1)
        for s in upload_samples:
            self.assertTrue(15.0 <= s.mbps <= 35.0)
        self.assertEqual(result.upload_mbps, upload_samples[-1].mbps)
        self.assertEqual(obs.phases[-1], P.COMPLETE)

    async def test_unexpected_upload_error_is_simulated(self):
        engine = _engine(upload_unit=FailingUnit(RuntimeError("bug in upload path")))
        runner = SpeedTestRunner(_config(), probe=FixedProbe(), engine=engine)

        result = await runner.run()

        self.assertTrue(result.upload_simulated)
        self.assertIn("bug in upload path", result.upload.fallback_reason)

    async def test_run_result_to_dict_flags_provenance(self):
        engine = _engine(upload_unit=FailingUnit(ChannelUnavailableError("blocked")))
        result = await SpeedTestRunner(_config(), probe=FixedProbe(), engine=engine).run()
        d = result.to_dict()
        self.assertTrue(d["upload_simulated"])
        self.assertEqual(d["upload"]["provenance"], "simulated")
        self.assertTrue(d["success"])


class TestFailures(unittest.IsolatedAsyncioTestCase):
    async def test_unexpected_download_error_fails_run(self):
        obs = Recorder()
        engine = _engine(download_unit=FailingUnit(RuntimeError("clock unavailable")))
        runner = SpeedTestRunner(_config(), obs, probe=FixedProbe(), engine=engine)

        with self.assertRaises(MeasurementError) as ctx:
            await runner.run()

        self.assertEqual(ctx.exception.phase, "download")
        self.assertIn("clock unavailable", str(ctx.exception))
        self.assertEqual(obs.phases, [P.LATENCY, P.DOWNLOAD, P.FAILED])
        self.assertEqual(len(obs.errors), 1)
        self.assertEqual(obs.results, [])

    async def test_download_network_errors_do_not_fail_run(self):
        engine = _engine(download_unit=FailingUnit(aiohttp.ClientConnectionError("down")))
        result = await SpeedTestRunner(_config(), probe=FixedProbe(), engine=engine).run()
        self.assertEqual(result.download_mbps, 0.0)
        self.assertTrue(result.success)

    async def test_latency_error_fails_run(self):
        obs = Recorder()
        runner = SpeedTestRunner(
            _config(), obs, probe=FixedProbe(error=ValueError("bad target")), engine=_engine(),
        )
        with self.assertRaises(MeasurementError) as ctx:
            await runner.run()
        self.assertEqual(ctx.exception.phase, "latency")
        self.assertEqual(obs.phases, [P.LATENCY, P.FAILED])

    async def test_invalid_config_fails_before_measuring(self):
        obs = Recorder()
        runner = SpeedTestRunner(_config(download_parallelism=0), obs, probe=FixedProbe(), engine=_engine())
        with self.assertRaises(ConfigError):
            await runner.run()
        self.assertEqual(obs.phases, [P.FAILED])

    async def test_fractional_payload_fails_instead_of_simulating(self):
        obs = Recorder()
        runner = SpeedTestRunner(
            _config(upload_payload_bytes=2048.5), obs, probe=FixedProbe(), engine=_engine()
        )
        with self.assertRaises(ConfigError):
            await runner.run()
        self.assertEqual(obs.phases, [P.FAILED])
        self.assertEqual(obs.results, [])
        self.assertEqual(len(obs.errors), 1)

    async def test_cancel_before_start(self):
        cancel = asyncio.Event()
        cancel.set()
        obs = Recorder()
        runner = SpeedTestRunner(_config(), obs, probe=FixedProbe(), engine=_engine())
        with self.assertRaises(TestCancelledError):
            await runner.run(cancel)
        self.assertEqual(obs.phases, [P.FAILED])

    async def test_cancel_between_phases(self):
        cancel = asyncio.Event()

        class CancellingProbe(FixedProbe):
            async def measure(self, target, cancel=None):
                cancel.set()
                return await super().measure(target)

        obs = Recorder()
        runner = SpeedTestRunner(_config(), obs, probe=CancellingProbe(), engine=_engine())
        with self.assertRaises(TestCancelledError):
            await runner.run(cancel)
        self.assertEqual(obs.phases, [P.LATENCY, P.FAILED])


class TestRunContext(unittest.TestCase):
    def _ctx(self):
        return RunContext(config=SpeedTestConfig(), observer=RunObserver())

    def test_cannot_skip_phase(self):
        ctx = self._ctx()
        with self.assertRaises(InvalidPhaseTransition):
            ctx.enter(P.DOWNLOAD)

    def test_cannot_reenter(self):
        ctx = self._ctx()
        ctx.enter(P.LATENCY)
        with self.assertRaises(InvalidPhaseTransition):
            ctx.enter(P.LATENCY)

    def test_nothing_after_complete(self):
        ctx = self._ctx()
        for phase in (P.LATENCY, P.DOWNLOAD, P.UPLOAD, P.COMPLETE):
            ctx.enter(phase)
        with self.assertRaises(InvalidPhaseTransition):
            ctx.enter(P.FAILED)

    def test_fail_from_any_running_phase(self):
        ctx = self._ctx()
        ctx.enter(P.LATENCY)
        ctx.fail(RuntimeError("x"))
        self.assertIs(ctx.phase, P.FAILED)

    def test_result_requires_every_phase(self):
        with self.assertRaises(RuntimeError):
            self._ctx().result()


class TestRunResult(unittest.TestCase):
    def test_to_dict_minimal(self):
        d = RunResult(ping_ms=0.0, download_mbps=10.0, upload_mbps=20.0, ping_has_data=False).to_dict()
        self.assertFalse(d["ping_has_data"])
        self.assertEqual(d["download_mbps"], 10.0)
        self.assertNotIn("latency", d)


if __name__ == "__main__":
    unittest.main()
