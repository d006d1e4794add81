from typing import NamedTuple
import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError
from loguru import logger
from find_prints.core.errors import AudioDecodeError


class PCMBuffer(NamedTuple):
    samples: np.ndarray  # interleaved, frames * channels, floats in [-1, 1]
    channels: int
    sample_rate: int


def _segment_to_floats(audio: AudioSegment) -> np.ndarray:
    """
    pydub hands back interleaved integers (int16 for most files).
    Scale them to [-1.0, 1.0] based on the sample width.
    """
    samples = np.array(audio.get_array_of_samples())
    full_scale = float(2 ** (8 * audio.sample_width - 1))
    return samples.astype(np.float64) / full_scale


def load_pcm(file_path: str) -> PCMBuffer:
    """
    Decodes an audio file into raw PCM. No resampling and no channel mixing
    happens here, the preprocessor owns that.
    """
    try:
        audio = AudioSegment.from_file(str(file_path))
    except (CouldntDecodeError, OSError) as e:
        logger.error(f"❌ Failed to decode {file_path}: {e}")
        raise AudioDecodeError(f"Cannot decode audio file: {file_path}", data={"cause": str(e)}) from e

    samples = _segment_to_floats(audio)
    if samples.size == 0:
        raise AudioDecodeError(f"Audio file is empty: {file_path}")

    logger.debug(
        f"Decoded {file_path}: {audio.channels} ch, {audio.frame_rate} Hz, "
        f"{samples.size // audio.channels} frames"
    )
    return PCMBuffer(samples=samples, channels=audio.channels, sample_rate=audio.frame_rate)
