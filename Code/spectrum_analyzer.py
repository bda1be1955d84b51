# spectrum_analyzer.py
#
# Raw (authoritative, unshifted) magnitude/phase of a complex field, plus a
# separate display variant: log-compressed, min-max normalized, fftshifted.
# Downstream numeric stages only ever read the raw arrays.

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from fft_engine import ComplexField


# ===========================
# DISPLAY CONFIG
# ===========================
DISPLAY_LOG_OFFSET = 0.01         # log(|F| + offset) avoids log(0)
NO_CONTENT_EPS = 1e-10            # raw magnitude range below this -> "no content"
LOG_RANGE_EPS = 1e-6
NEUTRAL_VALUE = 0.5


@dataclass(frozen=True)
class SpectrumView:
    magnitude: np.ndarray           # raw |F|, unshifted
    phase: np.ndarray               # raw atan2(im, re), unshifted
    display_magnitude: np.ndarray   # log, [0, 1], DC at grid center
    display_phase: np.ndarray       # (phase + pi) / 2pi, DC at grid center
    no_content: bool

    @property
    def size(self) -> int:
        return int(self.magnitude.shape[0])


def fftshift_grid(arr) -> np.ndarray:
    """Move index (0, 0) to (N/2, N/2) by a modular index shift (diagonal quadrant swap)."""
    arr = np.asarray(arr)
    h, w = arr.shape
    return np.roll(arr, (h // 2, w // 2), axis=(0, 1))


def ifftshift_grid(arr) -> np.ndarray:
    arr = np.asarray(arr)
    h, w = arr.shape
    return np.roll(arr, (-(h // 2), -(w // 2)), axis=(0, 1))


def normalize_minmax(arr, eps=LOG_RANGE_EPS, neutral=NEUTRAL_VALUE):
    """Scale to [0, 1]; a range below ``eps`` yields a flat ``neutral`` field instead of dividing."""
    arr = np.asarray(arr, dtype=np.float64)
    lo = float(arr.min())
    hi = float(arr.max())
    if not np.isfinite(lo) or not np.isfinite(hi) or (hi - lo) < eps:
        return np.full(arr.shape, float(neutral)), False
    return (arr - lo) / (hi - lo), True


def _readonly(arr):
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    arr.setflags(write=False)
    return arr


def compute_spectrum(field: ComplexField) -> SpectrumView:
    magnitude = np.hypot(field.real, field.imag)
    phase = np.arctan2(field.imag, field.real)

    mag_range = float(magnitude.max() - magnitude.min())
    if mag_range < NO_CONTENT_EPS:
        neutral = np.full(magnitude.shape, NEUTRAL_VALUE)
        return SpectrumView(
            magnitude=_readonly(magnitude),
            phase=_readonly(phase),
            display_magnitude=_readonly(neutral),
            display_phase=_readonly(neutral),
            no_content=True,
        )

    log_mag = np.log(magnitude + DISPLAY_LOG_OFFSET)
    disp_mag, _ = normalize_minmax(log_mag, eps=LOG_RANGE_EPS)
    disp_phase = (phase + np.pi) / (2.0 * np.pi)

    return SpectrumView(
        magnitude=_readonly(magnitude),
        phase=_readonly(phase),
        display_magnitude=_readonly(fftshift_grid(disp_mag)),
        display_phase=_readonly(fftshift_grid(disp_phase)),
        no_content=False,
    )
