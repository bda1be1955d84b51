# phase_reconstructor.py
#
# Inverse-transforms the isolated sideband and keeps phase only where the
# reconstructed magnitude is trustworthy (>= MASK_FRACTION * max magnitude).
# Masked samples get phase 0 so they do not inject noise into the unwrap.

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from fft_engine import ComplexField, inverse_transform


# ===========================
# RECONSTRUCTION CONFIG
# ===========================
MASK_FRACTION = 0.10
MIN_SIGNAL_MAGNITUDE = 1e-12      # below this everything is masked
NEUTRAL_VALUE = 0.5


@dataclass(frozen=True)
class PhaseField:
    wrapped: np.ndarray          # radians in (-pi, pi], 0 where masked
    normalized: np.ndarray       # (wrapped + pi) / 2pi in [0, 1]
    valid: np.ndarray            # bool, magnitude >= threshold
    magnitude: np.ndarray        # raw reconstructed |g|
    display_magnitude: np.ndarray
    threshold: float
    max_magnitude: float
    field: ComplexField          # reconstructed complex field (read-only)

    @property
    def masked_count(self) -> int:
        return int(self.valid.size - np.count_nonzero(self.valid))

    @property
    def all_masked(self) -> bool:
        return not bool(np.any(self.valid))

    @property
    def masked_fraction(self) -> float:
        return self.masked_count / float(self.valid.size)


def _readonly(arr, dtype=np.float64):
    arr = np.ascontiguousarray(arr, dtype=dtype)
    arr.setflags(write=False)
    return arr


def wrap_to_pi(phase):
    """Map radians into (-pi, pi]."""
    wrapped = np.angle(np.exp(1j * np.asarray(phase, dtype=np.float64)))
    return np.where(wrapped <= -np.pi, np.pi, wrapped)


def reconstruct_phase(sideband: ComplexField, mask_fraction=MASK_FRACTION) -> PhaseField:
    if not 0.0 <= float(mask_fraction) <= 1.0:
        raise ValueError(f"mask_fraction must lie in [0, 1], got {mask_fraction}")

    recon = inverse_transform(sideband)
    magnitude = np.hypot(recon.real, recon.imag)
    max_mag = float(magnitude.max())

    if max_mag < MIN_SIGNAL_MAGNITUDE:
        threshold = float("inf")
        valid = np.zeros(magnitude.shape, dtype=bool)
        display = np.full(magnitude.shape, NEUTRAL_VALUE)
    else:
        threshold = float(mask_fraction) * max_mag
        valid = magnitude >= threshold
        display = magnitude / max_mag

    wrapped = np.zeros(magnitude.shape)
    phase = np.arctan2(recon.imag, recon.real)
    phase[phase <= -np.pi] = np.pi
    wrapped[valid] = phase[valid]

    normalized = (wrapped + np.pi) / (2.0 * np.pi)

    return PhaseField(
        wrapped=_readonly(wrapped),
        normalized=_readonly(normalized),
        valid=_readonly(valid, dtype=bool),
        magnitude=_readonly(magnitude),
        display_magnitude=_readonly(display),
        threshold=threshold,
        max_magnitude=max_mag,
        field=recon.frozen(),
    )
