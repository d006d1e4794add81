from typing import List, NamedTuple, Union
import numpy as np
from scipy.ndimage import maximum_filter
from loguru import logger
from find_prints.core.config import THRESHOLD_DB, NEIGHBORHOOD_SIZE, DB_EPSILON
from find_prints.core.errors import InvalidInputError
from find_prints.services.fingerprint_branch.spectrogram import Spectrogram


class Peak(NamedTuple):
    time_index: int
    freq_bin: int
    magnitude_db: float


def magnitude_to_db(magnitudes):
    return 20.0 * np.log10(np.maximum(magnitudes, DB_EPSILON))


def detect_peaks(spectrogram: Union[Spectrogram, np.ndarray],
                 threshold_db: float = THRESHOLD_DB,
                 neighborhood: int = NEIGHBORHOOD_SIZE) -> List[Peak]:
    """
    Finds the constellation: bins that are at least threshold_db loud and that
    no other bin in the surrounding (2N+1) x (2N+1) square strictly exceeds.

    - Ties count as maxima.
    - Neighbours outside the matrix are skipped, which is what padding the
      max filter with -inf amounts to.
    - The first and last frequency bin never qualify.

    Peaks come back in (time_index, freq_bin) scan order. The hasher's fan-out
    pairs peaks by position in this list, so the order matters.
    """
    magnitudes = spectrogram.magnitudes if isinstance(spectrogram, Spectrogram) else spectrogram
    if magnitudes is None:
        raise InvalidInputError("No spectrogram given to detect_peaks")
    magnitudes = np.asarray(magnitudes, dtype=np.float64)
    if magnitudes.ndim != 2 or magnitudes.shape[0] == 0 or magnitudes.shape[1] == 0:
        raise InvalidInputError(f"Spectrogram must be a non-empty 2-D matrix, got shape {magnitudes.shape}")
    if neighborhood < 0:
        raise InvalidInputError(f"Neighborhood half-width must be >= 0, got {neighborhood}")

    num_bins = magnitudes.shape[1]
    size = 2 * neighborhood + 1
    local_max = maximum_filter(magnitudes, size=(size, size), mode="constant", cval=-np.inf)

    db = magnitude_to_db(magnitudes)
    peak_mask = (magnitudes >= local_max) & (db >= threshold_db)

    # spectrum edges are excluded
    peak_mask[:, 0] = False
    peak_mask[:, num_bins - 1] = False

    # argwhere walks the mask row-major: ascending time, then ascending freq
    coords = np.argwhere(peak_mask)
    peaks = [Peak(int(t), int(f), float(db[t, f])) for t, f in coords]

    logger.debug(f"Detected {len(peaks)} peaks in {magnitudes.shape[0]} frames (threshold {threshold_db} dB)")
    return peaks
