# phase_unwrapper.py
#
# Removes whole-cycle jumps from the wrapped phase map.
#
#   raster  - row-by-row scan: column 0 follows the row above, every other
#             sample follows its left neighbour; jumps beyond half a cycle are
#             corrected by one full cycle. Not branch-cut aware.
#   quality - quality-guided flood fill (priority = reconstructed magnitude)
#   skimage - skimage.restoration.unwrap_phase
#
# All methods sit behind unwrap(phase, method) and work in cycles
# (1.0 == 2*pi); the result is min-max normalized to [0, 1].

from __future__ import annotations

import heapq
from dataclasses import dataclass

import numpy as np
from skimage.restoration import unwrap_phase

from phase_reconstructor import PhaseField, wrap_to_pi


# ===========================
# UNWRAP CONFIG
# ===========================
UNWRAP_METHOD = "raster"
UNWRAP_METHODS = ("raster", "quality", "skimage")
HALF_CYCLE = 0.5
FLAT_RANGE_EPS = 1e-9            # cycles
NEUTRAL_VALUE = 0.5


@dataclass(frozen=True)
class UnwrappedPhaseField:
    cycles: np.ndarray           # continuous relative phase, 1.0 per 2*pi
    normalized: np.ndarray       # min-max to [0, 1]
    method: str
    flat: bool

    @property
    def radians(self) -> np.ndarray:
        return 2.0 * np.pi * self.cycles


def _correct_jumps(d):
    d = np.asarray(d, dtype=np.float64).copy()
    d[d > HALF_CYCLE] -= 1.0
    d[d < -HALF_CYCLE] += 1.0
    return d


def unwrap_raster(wrapped_cycles) -> np.ndarray:
    w = np.asarray(wrapped_cycles, dtype=np.float64)
    if w.ndim != 2:
        raise ValueError(f"unwrap_raster expects a 2-D array, got shape {w.shape}")
    h, wd = w.shape

    first_col = np.empty(h)
    first_col[0] = w[0, 0]
    if h > 1:
        first_col[1:] = w[0, 0] + np.cumsum(_correct_jumps(np.diff(w[:, 0])))

    along_row = np.zeros((h, wd))
    if wd > 1:
        along_row[:, 1:] = np.cumsum(_correct_jumps(np.diff(w, axis=1)), axis=1)

    return first_col[:, None] + along_row


def _fill_unreached(unwrapped):
    out = unwrapped.copy()
    reached = np.isfinite(out)
    out[~reached] = float(out[reached].mean()) if np.any(reached) else 0.0
    return out


def unwrap_quality_guided(wrapped, mask, quality) -> np.ndarray:
    """Flood-fill unwrap in radians, highest-quality neighbours first."""
    phi = np.asarray(wrapped, dtype=np.float64)
    rows, cols = phi.shape
    allowed = np.asarray(mask, dtype=bool)
    out = np.full(phi.shape, np.nan)
    if not allowed.any():
        return _fill_unreached(out)

    prio = np.where(allowed, np.asarray(quality, dtype=np.float64), -np.inf)
    seed = np.unravel_index(int(np.argmax(prio)), phi.shape)
    out[seed] = phi[seed]
    done = ~allowed
    done[seed] = True

    # 8-connected; heap entries are (-quality, pixel, already-unwrapped neighbour)
    offsets = [(dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if dy or dx]
    frontier = []

    def grow(r, c):
        for dy, dx in offsets:
            nr, nc = r + dy, c + dx
            if 0 <= nr < rows and 0 <= nc < cols and not done[nr, nc]:
                heapq.heappush(frontier, (-prio[nr, nc], (nr, nc), (r, c)))

    grow(*seed)
    while frontier:
        _, pix, src = heapq.heappop(frontier)
        if done[pix]:
            continue
        done[pix] = True
        out[pix] = out[src] + float(wrap_to_pi(phi[pix] - phi[src]))
        grow(*pix)

    return _fill_unreached(out)


def unwrap_skimage(wrapped, mask=None) -> np.ndarray:
    wrapped = np.asarray(wrapped, dtype=np.float64)
    if mask is None or np.all(mask):
        return np.asarray(unwrap_phase(wrapped), dtype=np.float64)
    m = np.asarray(mask).astype(bool)
    if not np.any(m):
        return np.zeros_like(wrapped)
    out = unwrap_phase(np.ma.masked_array(wrapped, mask=~m))
    return _fill_unreached(np.ma.filled(out.astype(np.float64), np.nan))


def normalize_unwrapped(cycles):
    cycles = np.asarray(cycles, dtype=np.float64)
    lo = float(cycles.min())
    hi = float(cycles.max())
    if (hi - lo) < FLAT_RANGE_EPS:
        return np.full(cycles.shape, NEUTRAL_VALUE), True
    return (cycles - lo) / (hi - lo), False


def _readonly(arr):
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    arr.setflags(write=False)
    return arr


def unwrap(phase, method=UNWRAP_METHOD) -> UnwrappedPhaseField:
    """
    Unwrap a PhaseField, or a plain array of normalized wrapped phase in [0, 1]
    (treated as valid everywhere with uniform quality).
    """
    if isinstance(phase, PhaseField):
        normalized = np.asarray(phase.normalized, dtype=np.float64)
        radians = np.asarray(phase.wrapped, dtype=np.float64)
        valid = np.asarray(phase.valid, dtype=bool)
        quality = np.asarray(phase.magnitude, dtype=np.float64)
    else:
        normalized = np.asarray(phase, dtype=np.float64)
        radians = 2.0 * np.pi * normalized - np.pi
        valid = np.ones(normalized.shape, dtype=bool)
        quality = np.ones(normalized.shape)

    kind = str(method).lower().strip()
    if kind == "raster":
        cycles = unwrap_raster(normalized)
    elif kind == "quality":
        cycles = unwrap_quality_guided(radians, valid, quality) / (2.0 * np.pi)
    elif kind == "skimage":
        cycles = unwrap_skimage(radians, valid) / (2.0 * np.pi)
    else:
        raise ValueError(f"Unknown unwrap method: {method} (choose from {', '.join(UNWRAP_METHODS)})")

    norm, flat = normalize_unwrapped(cycles)
    return UnwrappedPhaseField(
        cycles=_readonly(cycles),
        normalized=_readonly(norm),
        method=kind,
        flat=flat,
    )
