# field_capture.py
#
# Turns an externally rendered interference image into the square,
# power-of-two grid of grayscale intensities the FFT stages consume.
#   - center crop + downsample (nearest sampling or OpenCV area resampling)
#   - degenerate ("no fringes") capture detection
#   - synthetic sanity patterns and phase-encoded fringe holograms

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


# ===========================
# USER CONFIG
# ===========================
DEFAULT_SIZE = 256

# Intensity range below which the capture has "almost no variation"
CAPTURE_MIN_RANGE = 0.01

TEST_PATTERN_FREQUENCY = 10
CHECKERBOARD_CELL_PX = 8

TEST_PATTERNS = ("single-wave", "stripes", "checkerboard", "gradient", "gaussian", "uniform", "zeros")


@dataclass(frozen=True)
class IntensityField:
    samples: np.ndarray
    low_variation: bool
    source_shape: tuple

    @property
    def size(self) -> int:
        return int(self.samples.shape[0])

    @property
    def value_range(self) -> float:
        return float(self.samples.max() - self.samples.min())


def is_power_of_two(n) -> bool:
    n = int(n)
    return n >= 1 and (n & (n - 1)) == 0


def require_power_of_two(n, what="grid size"):
    if not is_power_of_two(n):
        raise ValueError(f"{what} must be a power of two, got {n}")
    return int(n)


def load_image(path: str) -> np.ndarray:
    img_bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if img_bgr is None:
        raise RuntimeError(f"Could not read image: {path}")
    return cv2.cvtColor(img_bgr, cv2.COLOR_BGR2RGB)


def _to_gray01(image) -> np.ndarray:
    img = np.asarray(image)
    scale = 255.0 if img.dtype == np.uint8 else 1.0
    img = img.astype(np.float64) / scale

    if img.ndim == 3:
        # plain channel mean, so RGB/BGR order does not matter
        gray = img[:, :, :3].mean(axis=2) if img.shape[2] >= 3 else img[:, :, 0]
    elif img.ndim == 2:
        gray = img
    else:
        raise ValueError(f"Expected a 2-D or 3-D image, got shape {img.shape}")

    gray = np.nan_to_num(gray, nan=0.0, posinf=1.0, neginf=0.0)
    return np.clip(gray, 0.0, 1.0)


def _center_crop_square(gray):
    h, w = gray.shape
    min_dim = min(h, w)
    y0 = (h - min_dim) // 2
    x0 = (w - min_dim) // 2
    return gray[y0:y0 + min_dim, x0:x0 + min_dim]


def capture_intensity_field(image, size=DEFAULT_SIZE, interpolation="nearest") -> IntensityField:
    n = require_power_of_two(size)
    src = np.asarray(image)
    if src.ndim < 2 or src.shape[0] == 0 or src.shape[1] == 0:
        raise ValueError(f"Cannot capture from an empty image of shape {src.shape}")

    gray = _to_gray01(src)
    square = _center_crop_square(gray)
    min_dim = square.shape[0]

    mode = str(interpolation).lower().strip()
    if mode == "nearest":
        idx = (np.arange(n) * min_dim) // n
        samples = square[np.ix_(idx, idx)]
    elif mode == "area":
        samples = cv2.resize(square.astype(np.float32), (n, n), interpolation=cv2.INTER_AREA).astype(np.float64)
    else:
        raise ValueError(f"Unknown interpolation: {interpolation}")

    samples = np.ascontiguousarray(np.clip(samples, 0.0, 1.0), dtype=np.float64)
    low_variation = float(samples.max() - samples.min()) < CAPTURE_MIN_RANGE
    samples.setflags(write=False)
    return IntensityField(samples=samples, low_variation=low_variation, source_shape=tuple(src.shape))


# ===========================
# SYNTHETIC INPUTS
# ===========================
def generate_test_pattern(size=DEFAULT_SIZE, pattern="single-wave", frequency=TEST_PATTERN_FREQUENCY) -> np.ndarray:
    n = require_power_of_two(size)
    yy, xx = np.mgrid[0:n, 0:n].astype(np.float64)
    kind = str(pattern).lower().strip()

    if kind == "single-wave":
        # DC + two sidebands at +/- frequency
        return 0.5 + 0.5 * np.cos(2.0 * np.pi * frequency * xx / n)
    if kind == "stripes":
        return (np.cos(2.0 * np.pi * frequency * xx / n) >= 0.0).astype(np.float64)
    if kind == "checkerboard":
        cx = (xx // CHECKERBOARD_CELL_PX).astype(int) % 2
        cy = (yy // CHECKERBOARD_CELL_PX).astype(int) % 2
        return (cx ^ cy).astype(np.float64)
    if kind == "gradient":
        return xx / n
    if kind == "gaussian":
        sigma = n / 8.0
        r2 = (xx - n / 2) ** 2 + (yy - n / 2) ** 2
        return np.exp(-r2 / (2.0 * sigma * sigma))
    if kind == "uniform":
        return np.full((n, n), 0.5)
    if kind == "zeros":
        return np.zeros((n, n))
    raise ValueError(f"Unknown test pattern: {pattern} (choose from {', '.join(TEST_PATTERNS)})")


def encode_phase_hologram(phase, carrier_frequency, visibility=1.0) -> np.ndarray:
    """
    Off-axis fringe image 0.5 + 0.5*V*cos(2*pi*f*x/N + phase) for a known phase map.
    The phase map must be square with a power-of-two side.
    """
    phase = np.asarray(phase, dtype=np.float64)
    if phase.ndim != 2 or phase.shape[0] != phase.shape[1]:
        raise ValueError(f"phase must be a square 2-D array, got shape {phase.shape}")
    n = require_power_of_two(phase.shape[0])
    xx = np.arange(n, dtype=np.float64)[None, :]
    fringe = np.cos(2.0 * np.pi * float(carrier_frequency) * xx / n + phase)
    return np.clip(0.5 + 0.5 * float(visibility) * fringe, 0.0, 1.0)
