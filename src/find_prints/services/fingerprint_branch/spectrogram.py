from dataclasses import dataclass
import numpy as np
import librosa
from loguru import logger
from find_prints.core.config import SAMPLE_RATE, FRAME_SIZE, HOP_SIZE
from find_prints.core.errors import InvalidInputError
from find_prints.services.fingerprint_branch.fft import fft, is_power_of_two, magnitude_spectrum

# frames transformed per batch, bounds the complex scratch buffer (~8 MB at 2048)
FRAMES_PER_BLOCK = 256


@dataclass
class Spectrogram:
    """
    Magnitudes indexed [frame][bin], one contiguous (num_frames, num_bins) block.
    Rows are time frames hop_size samples apart, columns are the frame_size/2
    non-redundant frequency bins.
    """
    magnitudes: np.ndarray
    sample_rate: int
    frame_size: int
    hop_size: int

    @property
    def num_frames(self) -> int:
        return self.magnitudes.shape[0]

    @property
    def num_bins(self) -> int:
        return self.magnitudes.shape[1]

    @property
    def frequencies(self) -> np.ndarray:
        """Centre frequency in Hz of every bin."""
        return librosa.fft_frequencies(sr=self.sample_rate, n_fft=self.frame_size)[: self.num_bins]

    @property
    def frame_times(self) -> np.ndarray:
        """Start time in seconds of every frame."""
        return np.arange(self.num_frames) * self.hop_size / self.sample_rate


def hann_window(size: int) -> np.ndarray:
    i = np.arange(size)
    return 0.5 * (1.0 - np.cos(2.0 * np.pi * i / (size - 1)))


def expected_frame_count(num_samples: int, frame_size: int = FRAME_SIZE, hop_size: int = HOP_SIZE) -> int:
    return 1 + (num_samples - frame_size) // hop_size


def build_spectrogram(samples: np.ndarray, sample_rate: int,
                      frame_size: int = FRAME_SIZE, hop_size: int = HOP_SIZE) -> Spectrogram:
    """
    Short-time Fourier transform of a mono, normalised buffer.

    Frame f covers samples [f * hop_size, f * hop_size + frame_size); every
    frame is Hann-windowed, transformed, and its magnitude spectrum becomes
    row f. Frame count follows 1 + (num_samples - frame_size) // hop_size
    exactly, peak time indices downstream depend on it.
    """
    if samples is None:
        raise InvalidInputError("No samples given to build_spectrogram")
    if not is_power_of_two(frame_size) or frame_size < 2:
        raise InvalidInputError(f"Frame size must be a power of two >= 2, got {frame_size}")
    if hop_size <= 0:
        raise InvalidInputError(f"Hop size must be positive, got {hop_size}")
    if sample_rate != SAMPLE_RATE:
        raise InvalidInputError(
            f"Sample rate mismatch: expected {SAMPLE_RATE}, got {sample_rate}",
            data={"expected": SAMPLE_RATE, "got": sample_rate},
        )

    samples = np.asarray(samples, dtype=np.float64)
    num_samples = len(samples)
    if num_samples < frame_size:
        raise InvalidInputError(
            f"Need at least {frame_size} samples for one frame, got {num_samples}",
            data={"num_samples": num_samples, "frame_size": frame_size},
        )

    num_frames = expected_frame_count(num_samples, frame_size, hop_size)

    num_bins = frame_size // 2
    window = hann_window(frame_size)
    magnitudes = np.empty((num_frames, num_bins), dtype=np.float64)

    # (num_frames, frame_size) view, nothing copied until a block is windowed
    frames = np.lib.stride_tricks.sliding_window_view(samples, frame_size)[::hop_size][:num_frames]

    for start in range(0, num_frames, FRAMES_PER_BLOCK):
        block = frames[start:start + FRAMES_PER_BLOCK]
        fft_buffer = np.empty(block.shape, dtype=np.complex128)
        fft_buffer.real = block * window
        fft_buffer.imag = 0.0
        fft(fft_buffer)
        magnitudes[start:start + len(block)] = magnitude_spectrum(fft_buffer)

    logger.debug(f"Spectrogram: {num_frames} frames x {frame_size // 2} bins from {num_samples} samples")
    return Spectrogram(magnitudes=magnitudes, sample_rate=sample_rate, frame_size=frame_size, hop_size=hop_size)
