# fft_engine.py
#
# Radix-2 complex FFT written out by hand (bit-reversal permutation followed by
# iterative Cooley-Tukey decimation-in-time butterflies).
#
#   transform1d(real, imag, inverse)  -> in place on 1-D float arrays
#   transform2d(field, inverse)       -> in place, rows then columns
#   forward_transform(samples)        -> read-only spectrum snapshot
#   inverse_transform(field)          -> new writable spatial field
#
# Sign convention: forward exp(-2*pi*i*k/n), inverse exp(+2*pi*i*k/n) with 1/n.

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(eq=False)
class ComplexField:
    """Two parallel N x N float arrays (real part, imaginary part)."""
    real: np.ndarray
    imag: np.ndarray

    def __post_init__(self):
        self.real = np.asarray(self.real)
        self.imag = np.asarray(self.imag)
        if self.real.shape != self.imag.shape:
            raise ValueError(f"real/imag shape mismatch: {self.real.shape} vs {self.imag.shape}")
        if self.real.ndim != 2 or self.real.shape[0] != self.real.shape[1]:
            raise ValueError(f"ComplexField must be square 2-D, got shape {self.real.shape}")

    @property
    def size(self) -> int:
        return int(self.real.shape[0])

    @property
    def writable(self) -> bool:
        return bool(self.real.flags.writeable and self.imag.flags.writeable)

    @classmethod
    def zeros(cls, size: int) -> "ComplexField":
        return cls(np.zeros((size, size)), np.zeros((size, size)))

    @classmethod
    def from_real(cls, samples) -> "ComplexField":
        re = np.array(samples, dtype=np.float64)
        return cls(re, np.zeros_like(re))

    @classmethod
    def from_complex(cls, z) -> "ComplexField":
        z = np.asarray(z)
        return cls(np.array(z.real, dtype=np.float64), np.array(z.imag, dtype=np.float64))

    def copy(self) -> "ComplexField":
        return ComplexField(np.array(self.real, dtype=np.float64), np.array(self.imag, dtype=np.float64))

    def frozen(self) -> "ComplexField":
        snap = self.copy()
        snap.real.setflags(write=False)
        snap.imag.setflags(write=False)
        return snap

    def to_complex(self) -> np.ndarray:
        return self.real + 1j * self.imag

    def magnitude(self) -> np.ndarray:
        return np.hypot(self.real, self.imag)


def _require_transformable(real, imag):
    if not isinstance(real, np.ndarray) or not isinstance(imag, np.ndarray):
        raise ValueError("real and imag must be numpy arrays")
    if real.shape != imag.shape:
        raise ValueError(f"real/imag shape mismatch: {real.shape} vs {imag.shape}")
    if not (np.issubdtype(real.dtype, np.floating) and np.issubdtype(imag.dtype, np.floating)):
        raise ValueError(f"in-place transform needs floating arrays, got {real.dtype}/{imag.dtype}")
    if not (real.flags.writeable and imag.flags.writeable):
        raise ValueError("in-place transform on a read-only array; transform a copy instead")
    n = real.shape[-1] if real.ndim else 0
    if n < 1 or (n & (n - 1)) != 0:
        raise ValueError(f"transform length must be a power of two, got {n}")
    return n


def _bit_reversed_indices(n):
    bits = n.bit_length() - 1
    idx = np.arange(n)
    rev = np.zeros(n, dtype=np.intp)
    for _ in range(bits):
        rev = (rev << 1) | (idx & 1)
        idx >>= 1
    return rev


def _butterflies(re, im, inverse):
    # re/im: contiguous (batch, n), already in bit-reversed order
    batch, n = re.shape
    sign = 1.0 if inverse else -1.0

    size = 2
    while size <= n:
        half = size // 2
        angle = sign * 2.0 * np.pi * np.arange(half) / size
        w_re = np.cos(angle)
        w_im = np.sin(angle)

        r = re.reshape(batch, n // size, size)
        i = im.reshape(batch, n // size, size)

        odd_re = r[..., half:]
        odd_im = i[..., half:]
        t_re = odd_re * w_re - odd_im * w_im
        t_im = odd_re * w_im + odd_im * w_re

        even_re = r[..., :half].copy()
        even_im = i[..., :half].copy()
        r[..., :half] = even_re + t_re
        i[..., :half] = even_im + t_im
        r[..., half:] = even_re - t_re
        i[..., half:] = even_im - t_im

        size *= 2


def _transform_last_axis(real, imag, inverse):
    n = real.shape[-1]
    if n == 1:
        return

    perm = _bit_reversed_indices(n)
    work_re = np.ascontiguousarray(real[..., perm], dtype=np.float64).reshape(-1, n)
    work_im = np.ascontiguousarray(imag[..., perm], dtype=np.float64).reshape(-1, n)

    _butterflies(work_re, work_im, inverse)

    if inverse:
        work_re /= n
        work_im /= n

    real[...] = work_re.reshape(real.shape)
    imag[...] = work_im.reshape(imag.shape)


def transform1d(real, imag, inverse=False):
    if isinstance(real, np.ndarray) and real.ndim != 1:
        raise ValueError(f"transform1d expects 1-D arrays, got shape {real.shape}")
    _require_transformable(real, imag)
    _transform_last_axis(real, imag, inverse)


def transform2d(field: ComplexField, inverse=False):
    """Separable 2-D transform of ``field`` in place: every row, then every column."""
    _require_transformable(field.real, field.imag)
    _transform_last_axis(field.real, field.imag, inverse)
    # transposed views write straight back into the field
    _transform_last_axis(field.real.T, field.imag.T, inverse)


def forward_transform(samples) -> ComplexField:
    """Forward 2-D spectrum of a real N x N grid, returned as a read-only snapshot."""
    work = ComplexField.from_real(samples)
    transform2d(work, inverse=False)
    return work.frozen()


def inverse_transform(field: ComplexField) -> ComplexField:
    """Inverse 2-D transform of a stage-owned working copy; ``field`` is left untouched."""
    work = field.copy()
    transform2d(work, inverse=True)
    return work
