"""
Radix-2 FFT used by the spectrogram builder.

fft() works in place on the last axis of a complex128 array, so a single
frame (shape (n,)) and a whole stack of frames (shape (frames, n)) go through
the same code path: one bit-reversal permutation, then log2(n) butterfly
stages, each stage vectorised across all butterfly groups.
"""

from functools import lru_cache
import numpy as np


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


@lru_cache(maxsize=16)
def bit_reverse_indices(n: int) -> np.ndarray:
    """
    Index i maps to i with its log2(n) bits reversed. The mapping is an
    involution, so applying it as a permutation swaps every pair exactly once.
    """
    bits = n.bit_length() - 1
    indices = np.arange(n)
    reversed_indices = np.zeros(n, dtype=np.int64)
    for _ in range(bits):
        reversed_indices = (reversed_indices << 1) | (indices & 1)
        indices = indices >> 1
    reversed_indices.flags.writeable = False
    return reversed_indices


@lru_cache(maxsize=64)
def _stage_twiddles(length: int) -> np.ndarray:
    """
    Twiddles e^{-2πik/len} for k < len/2, built by the recurrence w <- w * wlen
    starting at w = 1. cumprod is that recurrence, without a trig call per k.
    """
    half = length // 2
    angle = -2.0 * np.pi / length
    wlen = complex(np.cos(angle), np.sin(angle))
    steps = np.full(half, wlen, dtype=np.complex128)
    steps[0] = 1.0
    twiddles = np.cumprod(steps)
    twiddles.flags.writeable = False
    return twiddles


def _check_buffer(x: np.ndarray) -> int:
    if not isinstance(x, np.ndarray) or not np.iscomplexobj(x):
        raise ValueError("fft expects a complex numpy array")
    if not x.flags.c_contiguous:
        # the butterfly stages write through a reshaped view
        raise ValueError("fft expects a C-contiguous buffer")
    n = x.shape[-1]
    if not is_power_of_two(n):
        raise ValueError(f"fft length must be a power of two, got {n}")
    return n


def fft(x: np.ndarray) -> np.ndarray:
    """
    In-place iterative Cooley-Tukey FFT over the last axis.
    Output ends up in natural frequency order in the same buffer, which is
    also returned.
    """
    n = _check_buffer(x)
    if n == 1:
        return x

    x[...] = x[..., bit_reverse_indices(n)]

    length = 2
    while length <= n:
        half = length // 2
        w = _stage_twiddles(length)
        # (..., groups, length) view over the same memory
        blocks = x.reshape(x.shape[:-1] + (n // length, length))
        u = blocks[..., :half].copy()
        v = blocks[..., half:] * w
        blocks[..., :half] = u + v
        blocks[..., half:] = u - v
        length <<= 1

    return x


def ifft(x: np.ndarray) -> np.ndarray:
    """Inverse transform via the conjugate trick, also in place."""
    n = _check_buffer(x)
    np.conjugate(x, out=x)
    fft(x)
    np.conjugate(x, out=x)
    x /= n
    return x


def magnitude_spectrum(x: np.ndarray) -> np.ndarray:
    """|X[k]| for the first n/2 bins, the rest mirrors them for real input."""
    half = x.shape[-1] // 2
    return np.abs(x[..., :half])
