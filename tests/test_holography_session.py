"""Tests for the session state machine, ownership rules and end-to-end behaviour."""

import asyncio

import numpy as np
import pytest

from fft_engine import ComplexField
from field_capture import encode_phase_hologram
from holography_session import (
    FieldArena,
    HolographyConfig,
    HolographySession,
    PipelineCancelled,
    SessionBusyError,
    SessionState,
    StageOrderError,
)


def _session(**kw):
    return HolographySession(HolographyConfig(**kw), log_events=False)


# ── End to end ──────────────────────────────────────────────────────────


class TestEndToEnd:

    def test_cosine_hologram_gives_flat_phase(self, cosine_hologram):
        s = _session(size=256, carrier_frequency=10.0)
        out = s.process(cosine_hologram(256, 10))

        assert out.state == SessionState.UNWRAPPED
        py, px = out.peak
        assert abs(py) <= 1 and abs(px - 10) <= 1
        assert s.unwrapped.flat
        np.testing.assert_allclose(out.unwrapped_phase, 0.5, atol=1e-6)
        np.testing.assert_allclose(s.unwrapped.cycles, s.unwrapped.cycles[0, 0], atol=1e-6)
        assert s.warnings == []

    def test_bump_hologram_is_recovered(self):
        n = 128
        yy, xx = np.mgrid[0:n, 0:n].astype(np.float64)
        bump = 2.5 * np.exp(-((xx - n / 2) ** 2 + (yy - n / 2) ** 2) / (2 * (0.15 * n) ** 2))
        s = _session(size=n, carrier_frequency=32.0)
        s.process(encode_phase_hologram(bump, 32.0))

        assert s.sideband.peak == (0, 32)
        corr = np.corrcoef(s.unwrapped.cycles.ravel(), bump.ravel())[0, 1]
        assert corr > 0.95

    @pytest.mark.parametrize("method", ["quality", "skimage"])
    def test_alternative_unwrappers_in_pipeline(self, method, cosine_hologram):
        s = _session(size=64, carrier_frequency=8.0, unwrap_method=method)
        out = s.process(cosine_hologram(64, 8))
        assert s.unwrapped.method == method
        assert np.all(np.isfinite(out.unwrapped_phase))

    def test_outputs_are_read_only_unit_range(self, cosine_hologram):
        s = _session(size=64, carrier_frequency=8.0)
        out = s.process(cosine_hologram(64, 8))
        for arr in (out.spectrum_magnitude, out.spectrum_phase, out.sideband_magnitude,
                    out.reconstructed_magnitude, out.wrapped_phase, out.unwrapped_phase):
            assert arr.shape == (64, 64)
            assert not arr.flags.writeable
            assert arr.min() >= 0.0 and arr.max() <= 1.0


# ── Degenerate input ────────────────────────────────────────────────────


class TestBoundary:

    @pytest.mark.parametrize("pattern", ["zeros", "uniform"])
    def test_flat_capture_stays_finite(self, pattern):
        s = _session(size=64, carrier_frequency=10.0)
        s.capture_test_pattern(pattern)
        out = s.process()

        for arr in (out.spectrum_magnitude, out.spectrum_phase, out.sideband_magnitude,
                    out.wrapped_phase, out.unwrapped_phase):
            assert np.all(np.isfinite(arr))
        assert np.all(out.unwrapped_phase == 0.5)

        stages = {(d.level, d.stage) for d in out.diagnostics}
        assert ("warning", "capture") in stages
        assert ("warning", "sideband") in stages
        assert ("info", "reconstruct") in stages
        assert s.sideband.fallback_used
        assert s.phase.all_masked

    def test_zero_capture_reports_no_content(self):
        s = _session(size=32)
        s.capture_test_pattern("zeros")
        s.process()
        assert any(d.stage == "spectrum" and d.level == "warning" for d in s.diagnostics)
        assert np.all(s.spectrum.display_magnitude == 0.5)


# ── State machine ───────────────────────────────────────────────────────


class TestStateMachine:

    def test_initial_state(self):
        s = _session(size=32)
        assert s.state == SessionState.IDLE
        assert s.outputs().unwrapped_phase is None

    def test_stage_before_capture(self):
        s = _session(size=32)
        with pytest.raises(StageOrderError):
            s.transform()
        with pytest.raises(StageOrderError):
            s.process()

    def test_isolate_before_analyze(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        s.capture(cosine_hologram(32, 4))
        s.transform()
        with pytest.raises(StageOrderError):
            s.isolate()
        assert s.state == SessionState.FORWARD_TRANSFORMED

    def test_manual_stepping(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        s.capture(cosine_hologram(32, 4))
        expected = [
            (s.transform, SessionState.FORWARD_TRANSFORMED),
            (s.analyze, SessionState.SPECTRUM_COMPUTED),
            (s.isolate, SessionState.SIDEBAND_FILTERED),
            (s.reconstruct, SessionState.PHASE_RECONSTRUCTED),
            (s.unwrap, SessionState.UNWRAPPED),
        ]
        for step, state in expected:
            step()
            assert s.state == state

    def test_rerun_discards_later_outputs(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        s.process(cosine_hologram(32, 4))
        s.analyze()
        assert s.state == SessionState.SPECTRUM_COMPUTED
        out = s.outputs()
        assert out.spectrum_magnitude is not None
        assert out.sideband_magnitude is None
        assert out.unwrapped_phase is None
        assert "sideband" not in s.arena
        # process() resumes from where the session stands
        assert s.process().state == SessionState.UNWRAPPED

    def test_new_capture_restarts(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        s.process(cosine_hologram(32, 4))
        s.capture(cosine_hologram(32, 4))
        assert s.state == SessionState.CAPTURED
        assert s.arena.names() == ()

    def test_bad_capture_keeps_previous_results(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        s.process(cosine_hologram(32, 4))
        with pytest.raises(ValueError):
            s.capture(np.zeros((0, 5)))
        assert s.state == SessionState.UNWRAPPED
        assert s.outputs().unwrapped_phase is not None
        assert "forward" in s.arena

    def test_reset(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        s.process(cosine_hologram(32, 4))
        s.reset()
        assert s.state == SessionState.IDLE
        assert s.intensity is None

    @pytest.mark.parametrize("kw", [
        {"size": 100},
        {"carrier_frequency": 0.0},
        {"mask_fraction": 2.0},
        {"unwrap_method": "magic"},
        {"peak_selection": "median"},
    ])
    def test_bad_config_fails_fast(self, kw):
        with pytest.raises(ValueError):
            HolographySession(HolographyConfig(**kw))


# ── Ownership ───────────────────────────────────────────────────────────


class TestOwnership:

    def test_forward_spectrum_never_changes(self, cosine_hologram):
        s = _session(size=64, carrier_frequency=8.0)
        s.capture(cosine_hologram(64, 8))
        s.transform()
        forward = s.arena.get("forward")
        before = forward.to_complex().copy()
        s.process()
        np.testing.assert_array_equal(s.arena.get("forward").to_complex(), before)
        with pytest.raises(ValueError):
            forward.real[0, 0] = 0.0

    def test_arena_snapshots_and_working_copies(self):
        arena = FieldArena()
        live = ComplexField.zeros(8)
        stored = arena.put("forward", live)
        live.real[0, 0] = 5.0
        assert stored.real[0, 0] == 0.0
        assert not stored.writable

        work = arena.working_copy("forward")
        work.real[1, 1] = 3.0
        assert arena.get("forward").real[1, 1] == 0.0

        arena.discard("forward")
        with pytest.raises(KeyError):
            arena.get("forward")


# ── Observability ───────────────────────────────────────────────────────


class TestEvents:

    def test_listener_receives_every_stage(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        events = []
        s.add_listener(events.append)
        s.process(cosine_hologram(32, 4))

        assert [e.stage for e in events] == [
            "capture", "forward_transform", "spectrum", "sideband", "reconstruct", "unwrap",
        ]
        assert events[-1].state == SessionState.UNWRAPPED
        for e in events:
            for stats in e.stats.values():
                assert set(stats) == {"min", "max", "mean"}

    def test_progress_percentages(self, cosine_hologram):
        seen = []
        s = _session(size=32, carrier_frequency=4.0, progress_callback=lambda st, p: seen.append((st, p)))
        s.process(cosine_hologram(32, 4))
        assert [p for _, p in seen] == [0, 25, 50, 75, 90, 100]


# ── Concurrency ─────────────────────────────────────────────────────────


class TestConcurrency:

    def test_async_progress_order(self, cosine_hologram):
        seen = []
        s = _session(size=32, carrier_frequency=4.0, progress_callback=lambda st, p: seen.append(st))
        out = asyncio.run(s.process_async(cosine_hologram(32, 4)))
        assert out.state == SessionState.UNWRAPPED
        assert seen == ["capture", "forward_transform", "spectrum", "sideband", "reconstruct", "unwrap"]

    def test_capture_while_running_is_rejected(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        holo = cosine_hologram(32, 4)

        async def scenario():
            task = asyncio.ensure_future(s.process_async(holo))
            await asyncio.sleep(0)
            with pytest.raises(SessionBusyError):
                s.capture(holo)
            with pytest.raises(SessionBusyError):
                s.reset()
            return await task

        out = asyncio.run(scenario())
        assert out.state == SessionState.UNWRAPPED
        # lock released afterwards
        s.capture(holo)

    def test_cancel_stops_at_stage_boundary(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)

        def on_progress(stage, pct):
            if stage == "spectrum":
                s.cancel()

        s.config.progress_callback = on_progress
        with pytest.raises(PipelineCancelled):
            s.process(cosine_hologram(32, 4))
        assert s.state == SessionState.SPECTRUM_COMPUTED
        assert s.outputs().spectrum_magnitude is not None
        assert s.outputs().sideband_magnitude is None

        s.config.progress_callback = None
        assert s.process().state == SessionState.UNWRAPPED

    def test_cancel_async(self, cosine_hologram):
        s = _session(size=32, carrier_frequency=4.0)
        holo = cosine_hologram(32, 4)

        async def scenario():
            task = asyncio.ensure_future(s.process_async(holo))
            await asyncio.sleep(0)
            s.cancel()
            with pytest.raises(PipelineCancelled):
                await task

        asyncio.run(scenario())
        assert SessionState.CAPTURED <= s.state < SessionState.UNWRAPPED

    def test_cancel_before_task_starts(self, cosine_hologram):
        """A cancel issued right after scheduling is honoured at the first boundary."""
        s = _session(size=32, carrier_frequency=4.0)
        holo = cosine_hologram(32, 4)

        async def scenario():
            task = asyncio.ensure_future(s.process_async(holo))
            s.cancel()
            with pytest.raises(PipelineCancelled):
                await task

        asyncio.run(scenario())
        assert s.state == SessionState.CAPTURED
        # the request is consumed; the next run completes
        assert s.process().state == SessionState.UNWRAPPED
