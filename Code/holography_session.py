# holography_session.py
#
# One reconstruction session: owns every field buffer for a single capture and
# drives the stages in order
#
#   capture -> forward_transform -> spectrum -> sideband -> reconstruct -> unwrap
#
#   - explicit state machine; out-of-order stage calls raise StageOrderError
#   - complex fields live in a FieldArena as read-only snapshots
#   - a non-blocking lock rejects overlapping calls (SessionBusyError)
#   - process_async() yields between stages only; cancel() is honoured there
#   - every finished stage emits a StageEvent (min/max/mean + diagnostics)

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

import holo_log
from fft_engine import ComplexField, forward_transform
from field_capture import (
    DEFAULT_SIZE,
    IntensityField,
    capture_intensity_field,
    generate_test_pattern,
    require_power_of_two,
)
from phase_reconstructor import MASK_FRACTION, PhaseField, reconstruct_phase
from phase_unwrapper import UNWRAP_METHOD, UNWRAP_METHODS, UnwrappedPhaseField, unwrap
from sideband_isolator import PEAK_SELECTION, SidebandDescriptor, isolate_sideband
from spectrum_analyzer import SpectrumView, compute_spectrum


# ===========================
# USER CONFIG
# ===========================
CARRIER_FREQUENCY = 10.0
INTERPOLATION = "nearest"
PEAK_POLICIES = ("max", "carrier")

# progress percentage reported when each stage completes
STAGE_PROGRESS = {
    "capture": 0,
    "forward_transform": 25,
    "spectrum": 50,
    "sideband": 75,
    "reconstruct": 90,
    "unwrap": 100,
}


class StageOrderError(RuntimeError):
    pass


class SessionBusyError(RuntimeError):
    pass


class PipelineCancelled(RuntimeError):
    pass


class SessionState(IntEnum):
    IDLE = 0
    CAPTURED = 1
    FORWARD_TRANSFORMED = 2
    SPECTRUM_COMPUTED = 3
    SIDEBAND_FILTERED = 4
    PHASE_RECONSTRUCTED = 5
    UNWRAPPED = 6


# stage name -> (state required before, state reached after)
STAGES = {
    "forward_transform": (SessionState.CAPTURED, SessionState.FORWARD_TRANSFORMED),
    "spectrum": (SessionState.FORWARD_TRANSFORMED, SessionState.SPECTRUM_COMPUTED),
    "sideband": (SessionState.SPECTRUM_COMPUTED, SessionState.SIDEBAND_FILTERED),
    "reconstruct": (SessionState.SIDEBAND_FILTERED, SessionState.PHASE_RECONSTRUCTED),
    "unwrap": (SessionState.PHASE_RECONSTRUCTED, SessionState.UNWRAPPED),
}
PIPELINE = tuple(STAGES)


@dataclass
class HolographyConfig:
    size: int = DEFAULT_SIZE
    carrier_frequency: float = CARRIER_FREQUENCY
    mask_fraction: float = MASK_FRACTION
    unwrap_method: str = UNWRAP_METHOD
    peak_selection: str = PEAK_SELECTION
    interpolation: str = INTERPOLATION
    progress_callback: Optional[Callable[[str, int], None]] = None

    def validate(self):
        require_power_of_two(self.size)
        c = float(self.carrier_frequency)
        if not np.isfinite(c) or c <= 0.0:
            raise ValueError(f"carrier_frequency must be a positive number, got {self.carrier_frequency}")
        if not 0.0 <= float(self.mask_fraction) <= 1.0:
            raise ValueError(f"mask_fraction must lie in [0, 1], got {self.mask_fraction}")
        if str(self.unwrap_method).lower() not in UNWRAP_METHODS:
            raise ValueError(f"Unknown unwrap method: {self.unwrap_method}")
        if str(self.peak_selection).lower() not in PEAK_POLICIES:
            raise ValueError(f"Unknown peak selection policy: {self.peak_selection}")
        return self


@dataclass(frozen=True)
class Diagnostic:
    level: str       # "warning" | "info"
    stage: str
    message: str


@dataclass(frozen=True)
class StageEvent:
    stage: str
    state: SessionState
    stats: Dict[str, Dict[str, float]]
    diagnostics: Tuple[Diagnostic, ...]


@dataclass(frozen=True)
class SessionOutputs:
    state: SessionState
    spectrum_magnitude: Optional[np.ndarray] = None
    spectrum_phase: Optional[np.ndarray] = None
    sideband_magnitude: Optional[np.ndarray] = None
    reconstructed_magnitude: Optional[np.ndarray] = None
    wrapped_phase: Optional[np.ndarray] = None
    unwrapped_phase: Optional[np.ndarray] = None
    peak: Optional[Tuple[int, int]] = None
    diagnostics: Tuple[Diagnostic, ...] = ()


class FieldArena:
    """Named complex fields, one per pipeline stage, kept as read-only snapshots."""

    def __init__(self):
        self._fields: Dict[str, ComplexField] = {}

    def put(self, name: str, value: ComplexField) -> ComplexField:
        snap = value if not value.writable else value.frozen()
        self._fields[name] = snap
        return snap

    def get(self, name: str) -> ComplexField:
        if name not in self._fields:
            raise KeyError(f"No field named '{name}' in arena")
        return self._fields[name]

    def working_copy(self, name: str) -> ComplexField:
        return self.get(name).copy()

    def discard(self, *names):
        for n in names:
            self._fields.pop(n, None)

    def clear(self):
        self._fields.clear()

    def names(self):
        return tuple(self._fields)

    def __contains__(self, name):
        return name in self._fields


def log_stage_event(event: StageEvent):
    holo_log.log(f"[SESSION] {event.stage} -> {event.state.name}")
    for name, s in event.stats.items():
        holo_log.log(f"  {name}: min={s['min']:.6g}, max={s['max']:.6g}, mean={s['mean']:.6g}")
    for d in event.diagnostics:
        tag = "[WARN]" if d.level == "warning" else "[INFO]"
        holo_log.log(f"{tag} {d.stage}: {d.message}")


class HolographySession:

    def __init__(self, config: Optional[HolographyConfig] = None, log_events=True):
        self.config = (config or HolographyConfig()).validate()
        self.size = int(self.config.size)
        self.arena = FieldArena()
        self.diagnostics: List[Diagnostic] = []

        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._listeners: List[Callable[[StageEvent], None]] = []
        if log_events:
            self._listeners.append(log_stage_event)

        self._clear()

    # ---------- bookkeeping ----------
    def _clear(self):
        self.state = SessionState.IDLE
        self.intensity: Optional[IntensityField] = None
        self.spectrum: Optional[SpectrumView] = None
        self.sideband: Optional[SidebandDescriptor] = None
        self.phase: Optional[PhaseField] = None
        self.unwrapped: Optional[UnwrappedPhaseField] = None
        self.arena.clear()
        self.diagnostics = []

    def _discard_after(self, state: SessionState):
        if state < SessionState.FORWARD_TRANSFORMED:
            self.arena.discard("forward")
        if state < SessionState.SPECTRUM_COMPUTED:
            self.spectrum = None
        if state < SessionState.SIDEBAND_FILTERED:
            self.sideband = None
            self.arena.discard("sideband")
        if state < SessionState.PHASE_RECONSTRUCTED:
            self.phase = None
            self.arena.discard("reconstructed")
        if state < SessionState.UNWRAPPED:
            self.unwrapped = None
        self.state = state

    def _acquire(self):
        if not self._lock.acquire(blocking=False):
            raise SessionBusyError("Session is busy with another stage or run")

    def _require(self, stage: str):
        needed, _ = STAGES[stage]
        if self.state < needed:
            raise StageOrderError(
                f"Stage '{stage}' needs state {needed.name}, session is {self.state.name}"
            )
        self._discard_after(needed)

    def add_listener(self, fn: Callable[[StageEvent], None]):
        self._listeners.append(fn)

    def remove_listener(self, fn: Callable[[StageEvent], None]):
        self._listeners.remove(fn)

    def _finish(self, stage: str, state: SessionState, stats, diags):
        self.state = state
        self.diagnostics.extend(diags)
        event = StageEvent(stage=stage, state=state, stats=stats, diagnostics=tuple(diags))
        for fn in list(self._listeners):
            fn(event)
        cb = self.config.progress_callback
        if cb is not None:
            cb(stage, STAGE_PROGRESS[stage])
        return event

    # ---------- stages (caller holds the lock) ----------
    def _capture(self, image) -> IntensityField:
        captured = capture_intensity_field(image, size=self.size, interpolation=self.config.interpolation)
        self._clear()
        self.intensity = captured
        diags = []
        if captured.low_variation:
            diags.append(Diagnostic(
                "warning", "capture",
                f"capture has almost no intensity variation (range={captured.value_range:.3g})",
            ))
        self._finish("capture", SessionState.CAPTURED,
                     {"intensity": holo_log.field_stats(captured.samples)}, diags)
        return captured

    def _forward(self) -> ComplexField:
        self._require("forward_transform")
        spec = self.arena.put("forward", forward_transform(self.intensity.samples))
        self._finish("forward_transform", SessionState.FORWARD_TRANSFORMED,
                     {"forward_magnitude": holo_log.field_stats(spec.magnitude())}, [])
        return spec

    def _analyze(self) -> SpectrumView:
        self._require("spectrum")
        view = compute_spectrum(self.arena.get("forward"))
        self.spectrum = view
        diags = []
        if view.no_content:
            diags.append(Diagnostic("warning", "spectrum",
                                    "spectrum has no content; display set to neutral 0.5"))
        self._finish("spectrum", SessionState.SPECTRUM_COMPUTED, {
            "magnitude": holo_log.field_stats(view.magnitude),
            "display_magnitude": holo_log.field_stats(view.display_magnitude),
        }, diags)
        return view

    def _isolate(self) -> SidebandDescriptor:
        self._require("sideband")
        desc = isolate_sideband(
            self.arena.get("forward"),
            self.config.carrier_frequency,
            magnitude=self.spectrum.magnitude,
            peak_selection=self.config.peak_selection,
        )
        self.sideband = desc
        self.arena.put("sideband", desc.field)
        diags = []
        if desc.fallback_used:
            diags.append(Diagnostic(
                "warning", "sideband",
                f"no peak above {desc.detect_threshold:.3g}; using expected carrier peak {desc.peak}",
            ))
        self._finish("sideband", SessionState.SIDEBAND_FILTERED, {
            "sideband_magnitude": holo_log.field_stats(desc.display_magnitude),
        }, diags)
        return desc

    def _reconstruct(self) -> PhaseField:
        self._require("reconstruct")
        phase = reconstruct_phase(self.arena.get("sideband"), mask_fraction=self.config.mask_fraction)
        self.phase = phase
        self.arena.put("reconstructed", phase.field)
        diags = []
        if phase.all_masked:
            diags.append(Diagnostic("info", "reconstruct",
                                    "every sample below the magnitude threshold; phase set to zero"))
        self._finish("reconstruct", SessionState.PHASE_RECONSTRUCTED, {
            "magnitude": holo_log.field_stats(phase.magnitude),
            "wrapped_phase": holo_log.field_stats(phase.wrapped, phase.valid),
        }, diags)
        return phase

    def _unwrap(self) -> UnwrappedPhaseField:
        self._require("unwrap")
        result = unwrap(self.phase, method=self.config.unwrap_method)
        self.unwrapped = result
        diags = []
        if result.flat:
            diags.append(Diagnostic("info", "unwrap", "unwrapped phase is flat; output set to 0.5"))
        self._finish("unwrap", SessionState.UNWRAPPED, {
            "unwrapped_cycles": holo_log.field_stats(result.cycles),
        }, diags)
        return result

    def _step(self, stage: str):
        if stage == "forward_transform":
            return self._forward()
        if stage == "spectrum":
            return self._analyze()
        if stage == "sideband":
            return self._isolate()
        if stage == "reconstruct":
            return self._reconstruct()
        return self._unwrap()

    def _guarded(self, fn, *args):
        self._acquire()
        try:
            return fn(*args)
        finally:
            self._lock.release()

    # ---------- public API ----------
    def capture(self, image) -> IntensityField:
        return self._guarded(self._capture, image)

    def capture_test_pattern(self, pattern="single-wave", frequency=None) -> IntensityField:
        if frequency is None:
            frequency = self.config.carrier_frequency
        return self.capture(generate_test_pattern(self.size, pattern, frequency))

    def transform(self) -> ComplexField:
        return self._guarded(self._forward)

    def analyze(self) -> SpectrumView:
        return self._guarded(self._analyze)

    def isolate(self) -> SidebandDescriptor:
        return self._guarded(self._isolate)

    def reconstruct(self) -> PhaseField:
        return self._guarded(self._reconstruct)

    def unwrap(self) -> UnwrappedPhaseField:
        return self._guarded(self._unwrap)

    def reset(self):
        self._guarded(self._clear)

    def cancel(self):
        """Request a stop at the next stage boundary of the running (or next) process()/process_async()."""
        self._cancel.set()

    def _remaining(self):
        if self.state < SessionState.CAPTURED:
            raise StageOrderError("Nothing captured; call capture() first")
        return [s for s in PIPELINE if STAGES[s][1] > self.state]

    def _check_cancel(self, next_stage):
        if self._cancel.is_set():
            self._cancel.clear()
            raise PipelineCancelled(f"Cancelled before '{next_stage}' (state {self.state.name})")

    def process(self, image=None) -> SessionOutputs:
        """Run every remaining stage (capturing ``image`` first when given)."""
        self._acquire()
        try:
            if image is not None:
                self._capture(image)
            for stage in self._remaining():
                self._check_cancel(stage)
                self._step(stage)
            return self._outputs()
        finally:
            self._cancel.clear()
            self._lock.release()

    async def process_async(self, image=None) -> SessionOutputs:
        """Same as process(), suspending between stages (never inside one)."""
        self._acquire()
        try:
            if image is not None:
                self._capture(image)
            for stage in self._remaining():
                await asyncio.sleep(0)
                self._check_cancel(stage)
                self._step(stage)
            return self._outputs()
        finally:
            self._cancel.clear()
            self._lock.release()

    def _outputs(self) -> SessionOutputs:
        kw = {}
        if self.spectrum is not None:
            kw["spectrum_magnitude"] = self.spectrum.display_magnitude
            kw["spectrum_phase"] = self.spectrum.display_phase
        if self.sideband is not None:
            kw["sideband_magnitude"] = self.sideband.display_magnitude
            kw["peak"] = self.sideband.peak
        if self.phase is not None:
            kw["reconstructed_magnitude"] = self.phase.display_magnitude
            kw["wrapped_phase"] = self.phase.normalized
        if self.unwrapped is not None:
            kw["unwrapped_phase"] = self.unwrapped.normalized
        return SessionOutputs(state=self.state, diagnostics=tuple(self.diagnostics), **kw)

    def outputs(self) -> SessionOutputs:
        return self._outputs()

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.level == "warning"]
