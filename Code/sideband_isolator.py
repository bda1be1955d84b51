# sideband_isolator.py
#
# Locates the off-axis signal sideband in the raw (unshifted) forward spectrum
# and cuts it out with a directional band-pass window:
#   - Gaussian falloff along x (carrier axis), full pass along y
#   - small notch on the source DC term
#   - peak moved to frequency (0, 0) so the inverse transform is demodulated
#
# Peak search covers rows [0, N/2) and columns [dc_exclusion, N/2); a ranked
# candidate list is kept so callers can re-pick with the carrier hint.

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from fft_engine import ComplexField
from spectrum_analyzer import fftshift_grid


# ===========================
# SIDEBAND CONFIG
# ===========================
DC_EXCLUSION_BINS = 10
MIN_DC_EXCLUSION_BINS = 2
SIDEBAND_N_CANDIDATES = 12

# a peak must beat max(SIDEBAND_MIN_MAGNITUDE, SIDEBAND_MIN_RELATIVE * max|F|)
SIDEBAND_MIN_MAGNITUDE = 1e-9
SIDEBAND_MIN_RELATIVE = 1e-6

FILTER_WIDTH_FRACTION = 0.4
MIN_FILTER_WIDTH_BINS = 4.0       # small floor; DC leakage is handled by the notch below
DC_NOTCH_RADIUS_BINS = 2

PEAK_SELECTION = "max"            # "max" or "carrier"
CARRIER_POLICY_MIN_CONFIDENCE = 0.5

DISPLAY_EPS = 1e-10


@dataclass(frozen=True)
class SidebandCandidate:
    row: int
    col: int
    magnitude: float
    confidence: float       # magnitude / strongest candidate
    carrier_offset: float   # bins from the carrier-derived expected peak


@dataclass(frozen=True)
class SidebandDescriptor:
    peak: Tuple[int, int]
    frequency: Tuple[int, int]
    peak_magnitude: float
    detect_threshold: float
    fallback_used: bool
    candidates: Tuple[SidebandCandidate, ...]
    field: ComplexField
    window: np.ndarray
    display_magnitude: np.ndarray
    filter_width: float
    dc_exclusion: int
    recentered: bool


def _circular_distance(k, n):
    k = np.asarray(k) % n
    return np.minimum(k, n - k).astype(np.float64)


def _signed_bin(k, n):
    k = int(k) % n
    return k if k < n // 2 else k - n


def dc_exclusion_for(carrier_frequency) -> int:
    half_carrier = int(np.floor(abs(float(carrier_frequency)) / 2.0))
    return int(max(MIN_DC_EXCLUSION_BINS, min(DC_EXCLUSION_BINS, half_carrier)))


def expected_peak(size, carrier_frequency) -> Tuple[int, int]:
    """Theoretical sideband bin (row, col) for a carrier running along x."""
    return 0, int(round(float(carrier_frequency))) % int(size)


def filter_width_for(carrier_frequency) -> float:
    return float(max(FILTER_WIDTH_FRACTION * abs(float(carrier_frequency)), MIN_FILTER_WIDTH_BINS))


def find_sideband_candidates(magnitude, carrier_frequency, dc_exclusion=None,
                             n_candidates=SIDEBAND_N_CANDIDATES) -> List[SidebandCandidate]:
    mag = np.asarray(magnitude, dtype=np.float64)
    n = mag.shape[0]
    half = n // 2
    if dc_exclusion is None:
        dc_exclusion = dc_exclusion_for(carrier_frequency)

    region = mag[:half, dc_exclusion:half]
    if region.size == 0:
        return []

    flat = region.ravel()
    k = min(int(n_candidates), flat.size)
    idx = np.argpartition(flat, -k)[-k:]
    idx = idx[np.argsort(flat[idx])[::-1]]

    strongest = float(flat[idx[0]])
    ey, ex = expected_peak(n, carrier_frequency)

    candidates = []
    for i in idx:
        r, c = np.unravel_index(i, region.shape)
        row, col = int(r), int(c) + int(dc_exclusion)
        m = float(region[r, c])
        candidates.append(SidebandCandidate(
            row=row,
            col=col,
            magnitude=m,
            confidence=(m / strongest) if strongest > 0 else 0.0,
            carrier_offset=float(np.hypot(row - ey, col - ex)),
        ))
    return candidates


def choose_sideband_peak(candidates, policy=PEAK_SELECTION) -> Optional[SidebandCandidate]:
    if not candidates:
        return None
    p = str(policy).lower().strip()
    if p == "max":
        return candidates[0]
    if p == "carrier":
        strong = [c for c in candidates if c.confidence >= CARRIER_POLICY_MIN_CONFIDENCE]
        if not strong:
            strong = list(candidates)
        return min(strong, key=lambda c: (c.carrier_offset, -c.magnitude))
    raise ValueError(f"Unknown peak selection policy: {policy}")


def bandpass_window(size, carrier_frequency) -> np.ndarray:
    """Weights centred on frequency (0, 0): Gaussian along x, 1 along y."""
    n = int(size)
    sigma = filter_width_for(carrier_frequency) / 2.0
    d = _circular_distance(np.arange(n), n)
    wx = np.exp(-(d * d) / (2.0 * sigma * sigma))
    return np.tile(wx[None, :], (n, 1))


def _dc_notch(rows, cols, n, radius=DC_NOTCH_RADIUS_BINS):
    dy = _circular_distance(rows, n)
    dx = _circular_distance(cols, n)
    return ((dy[:, None] ** 2 + dx[None, :] ** 2) > float(radius) ** 2).astype(np.float64)


def _display_magnitude(field):
    mag = field.magnitude()
    max_mag = float(mag.max())
    if max_mag < DISPLAY_EPS:
        disp = np.full(mag.shape, 0.5)
    else:
        disp = np.log1p(mag) / np.log1p(max_mag)
    disp = np.ascontiguousarray(fftshift_grid(disp))
    disp.setflags(write=False)
    return disp


def isolate_sideband(forward: ComplexField, carrier_frequency, magnitude=None,
                     peak_selection=PEAK_SELECTION, recenter=True, dc_exclusion=None) -> SidebandDescriptor:
    """
    Band-pass the sideband out of ``forward`` (never modified) into a new read-only field.

    With ``recenter`` the detected peak is moved to frequency (0, 0); without it the
    window is applied around the peak in place and the carrier ramp is kept.
    """
    n = forward.size
    mag = forward.magnitude() if magnitude is None else np.asarray(magnitude, dtype=np.float64)
    if dc_exclusion is None:
        dc_exclusion = dc_exclusion_for(carrier_frequency)

    candidates = find_sideband_candidates(mag, carrier_frequency, dc_exclusion=dc_exclusion)
    chosen = choose_sideband_peak(candidates, policy=peak_selection)
    threshold = max(SIDEBAND_MIN_MAGNITUDE, SIDEBAND_MIN_RELATIVE * float(mag.max()))

    if chosen is not None and chosen.magnitude > threshold:
        peak = (chosen.row, chosen.col)
        fallback = False
    else:
        peak = expected_peak(n, carrier_frequency)
        fallback = True
    py, px = peak

    base = bandpass_window(n, carrier_frequency)
    axis = np.arange(n)

    if recenter:
        src_rows = (axis + py) % n
        src_cols = (axis + px) % n
        weights = base * _dc_notch(src_rows, src_cols, n)
        re = forward.real[np.ix_(src_rows, src_cols)] * weights
        im = forward.imag[np.ix_(src_rows, src_cols)] * weights
    else:
        weights = np.roll(base, px, axis=1) * _dc_notch(axis, axis, n)
        re = forward.real * weights
        im = forward.imag * weights

    filtered = ComplexField(re, im).frozen()
    weights.setflags(write=False)

    return SidebandDescriptor(
        peak=(int(py), int(px)),
        frequency=(_signed_bin(py, n), _signed_bin(px, n)),
        peak_magnitude=float(mag[py, px]),
        detect_threshold=float(threshold),
        fallback_used=fallback,
        candidates=tuple(candidates),
        field=filtered,
        window=weights,
        display_magnitude=_display_magnitude(filtered),
        filter_width=filter_width_for(carrier_frequency),
        dc_exclusion=int(dc_exclusion),
        recentered=bool(recenter),
    )
