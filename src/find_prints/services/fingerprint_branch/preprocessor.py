import numpy as np
from loguru import logger
from find_prints.core.config import SAMPLE_RATE
from find_prints.core.errors import InvalidInputError


def mix_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    """
    Unweighted mean across channels for every sample frame.
    Accepts an interleaved 1-D buffer or a (frames, channels) array.
    """
    samples = np.asarray(samples, dtype=np.float64)
    if channels < 1:
        raise InvalidInputError(f"Channel count must be positive, got {channels}")

    if samples.ndim == 2:
        if samples.shape[1] != channels:
            raise InvalidInputError(
                f"Buffer has {samples.shape[1]} channels, expected {channels}"
            )
        frames = samples
    elif samples.ndim == 1:
        if samples.size % channels != 0:
            raise InvalidInputError(
                f"Interleaved buffer of {samples.size} samples can't hold {channels} channels"
            )
        frames = samples.reshape(-1, channels)
    else:
        raise InvalidInputError(f"Unsupported sample buffer shape {samples.shape}")

    if channels == 1:
        return frames[:, 0].copy()
    return frames.mean(axis=1)


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int = SAMPLE_RATE) -> np.ndarray:
    """
    Linear interpolation between neighbouring source samples.
    Output length is len * target / source rounded to nearest; positions past the end of
    the source read as zero, no wraparound and no reflection.
    """
    if source_rate <= 0 or target_rate <= 0:
        raise InvalidInputError(f"Sample rates must be positive, got {source_rate} -> {target_rate}")
    if source_rate == target_rate:
        return samples

    total = len(samples)
    # half rounds up, round() would round half to even
    new_length = int(np.floor(total * target_rate / source_rate + 0.5))

    src_index = np.arange(new_length, dtype=np.float64) * source_rate / target_rate
    idx = np.floor(src_index).astype(np.int64)
    frac = src_index - idx

    # one trailing zero stands in for everything past the end
    padded = np.concatenate([samples, [0.0]])
    a = padded[np.minimum(idx, total)]
    b = padded[np.minimum(idx + 1, total)]
    return a + frac * (b - a)


def normalize_peak(samples: np.ndarray) -> np.ndarray:
    """Scales so the loudest sample hits exactly 1.0. Silence stays silence."""
    max_amp = np.max(np.abs(samples)) if len(samples) else 0.0
    if max_amp > 0.0:
        return samples / max_amp
    return np.zeros_like(samples)


def preprocess(samples, channels: int, sample_rate: int, target_rate: int = SAMPLE_RATE) -> np.ndarray:
    """
    Raw PCM (any channel count, any rate) -> mono, target rate, peak-normalised.
    """
    if samples is None or len(samples) == 0:
        raise InvalidInputError("Sample buffer is empty")
    if sample_rate <= 0:
        raise InvalidInputError(f"Sample rate must be positive, got {sample_rate}")

    mono = mix_to_mono(samples, channels)
    resampled = resample_linear(mono, sample_rate, target_rate)
    if len(resampled) == 0:
        raise InvalidInputError("Resampling produced an empty buffer")

    normalized = normalize_peak(resampled)
    logger.debug(
        f"Preprocessed {len(mono)} frames @ {sample_rate} Hz x{channels} ch -> "
        f"{len(normalized)} samples @ {target_rate} Hz"
    )
    return normalized
