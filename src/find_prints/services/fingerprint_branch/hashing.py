"""
Anchor/target fan-out hashing into a 64-bit bit-packed integer.

    bits 63..54  anchor frequency bin      (10 bits)
    bits 53..48  target - anchor freq bin  (6 bits, two's complement)
    bits 47..36  target - anchor time      (12 bits)
    bits 35..28  magnitude byte            (8 bits: anchor nibble | target nibble)
    bits 27..8   anchor time index         (20 bits)
    bits  7..0   reserved, always zero
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence
from loguru import logger
from find_prints.core.config import (
    FAN_VALUE,
    ANCHOR_FREQ_BITS,
    DELTA_FREQ_BITS,
    DELTA_TIME_BITS,
    MAGNITUDE_BITS,
    ANCHOR_TIME_BITS,
    RESERVED_BITS,
    HASH_HEX_LENGTH,
    MAGNITUDE_DB_RANGE,
)
from find_prints.core.errors import InvalidInputError
from find_prints.services.fingerprint_branch.peaks import Peak

ANCHOR_TIME_SHIFT = RESERVED_BITS
MAGNITUDE_SHIFT = ANCHOR_TIME_SHIFT + ANCHOR_TIME_BITS
DELTA_TIME_SHIFT = MAGNITUDE_SHIFT + MAGNITUDE_BITS
DELTA_FREQ_SHIFT = DELTA_TIME_SHIFT + DELTA_TIME_BITS
ANCHOR_FREQ_SHIFT = DELTA_FREQ_SHIFT + DELTA_FREQ_BITS

ANCHOR_FREQ_MASK = (1 << ANCHOR_FREQ_BITS) - 1
DELTA_FREQ_MASK = (1 << DELTA_FREQ_BITS) - 1
DELTA_TIME_MASK = (1 << DELTA_TIME_BITS) - 1
MAGNITUDE_MASK = (1 << MAGNITUDE_BITS) - 1
ANCHOR_TIME_MASK = (1 << ANCHOR_TIME_BITS) - 1

MAX_FREQ_BIN = ANCHOR_FREQ_MASK             # 1023
MAX_TIME_DELTA = DELTA_TIME_MASK            # 4095
MAX_ANCHOR_TIME = ANCHOR_TIME_MASK          # 1048575
MIN_DELTA_FREQ = -(1 << (DELTA_FREQ_BITS - 1))   # -32
MAX_DELTA_FREQ = (1 << (DELTA_FREQ_BITS - 1)) - 1  # 31


class FingerprintHash(NamedTuple):
    hash: int
    time_offset: int
    song_id: int

    @property
    def hex(self) -> str:
        return hash_to_hex(self.hash)


class HashFields(NamedTuple):
    anchor_freq: int
    delta_freq: int
    delta_time: int
    magnitude_byte: int
    anchor_time: int


def quantize_magnitude(mag_db: float) -> int:
    """Clamp dB into [0, 60] and scale linearly onto 0..255."""
    low, high = MAGNITUDE_DB_RANGE
    mag_db = min(max(mag_db, low), high)
    return int((mag_db - low) / (high - low) * MAGNITUDE_MASK)


def pack_magnitudes(anchor_q: int, target_q: int) -> int:
    """High nibble of each quantized magnitude: anchor on top, target below."""
    return ((anchor_q >> 4) << 4) | ((target_q >> 4) & 0x0F)


def pack_hash(anchor_freq: int, delta_freq: int, delta_time: int,
              magnitude_byte: int, anchor_time: int) -> int:
    # every field masked to its width, nothing can bleed into a neighbour
    return (
        ((anchor_freq & ANCHOR_FREQ_MASK) << ANCHOR_FREQ_SHIFT)
        | ((delta_freq & DELTA_FREQ_MASK) << DELTA_FREQ_SHIFT)
        | ((delta_time & DELTA_TIME_MASK) << DELTA_TIME_SHIFT)
        | ((magnitude_byte & MAGNITUDE_MASK) << MAGNITUDE_SHIFT)
        | ((anchor_time & ANCHOR_TIME_MASK) << ANCHOR_TIME_SHIFT)
    )


def unpack_hash(value: int) -> HashFields:
    delta_freq = (value >> DELTA_FREQ_SHIFT) & DELTA_FREQ_MASK
    if delta_freq > MAX_DELTA_FREQ:
        delta_freq -= 1 << DELTA_FREQ_BITS
    return HashFields(
        anchor_freq=(value >> ANCHOR_FREQ_SHIFT) & ANCHOR_FREQ_MASK,
        delta_freq=delta_freq,
        delta_time=(value >> DELTA_TIME_SHIFT) & DELTA_TIME_MASK,
        magnitude_byte=(value >> MAGNITUDE_SHIFT) & MAGNITUDE_MASK,
        anchor_time=(value >> ANCHOR_TIME_SHIFT) & ANCHOR_TIME_MASK,
    )


def hash_to_hex(value: int) -> str:
    """Fixed-width upper-case hex, the form that gets persisted."""
    return f"{value:0{HASH_HEX_LENGTH}X}"


def hex_to_hash(text: str) -> int:
    if len(text) != HASH_HEX_LENGTH:
        raise ValueError(f"Hash hex must be {HASH_HEX_LENGTH} characters, got {len(text)}")
    return int(text, 16)


def deduplicate(records: Iterable[FingerprintHash]) -> List[FingerprintHash]:
    """Collapses records sharing (hash, time_offset). First one wins, order kept."""
    seen = set()
    unique = []
    for record in records:
        key = (record.hash, record.time_offset)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def _pair_hash(anchor: Peak, anchor_q: int, target: Peak) -> Optional[int]:
    """Hash for one anchor/target pair, or None when a field would not fit."""
    dt = target.time_index - anchor.time_index
    if dt <= 0 or dt > MAX_TIME_DELTA:
        return None
    if target.freq_bin > MAX_FREQ_BIN:
        return None

    df = target.freq_bin - anchor.freq_bin
    if df < MIN_DELTA_FREQ or df > MAX_DELTA_FREQ:
        return None

    mag_byte = pack_magnitudes(anchor_q, quantize_magnitude(target.magnitude_db))
    return pack_hash(anchor.freq_bin, df, dt, mag_byte, anchor.time_index)


def generate_fingerprint_hashes(peaks: Sequence[Peak], song_id: int,
                                fan_value: int = FAN_VALUE) -> List[FingerprintHash]:
    """
    Pairs every anchor peak with the next fan_value peaks in scan order and
    packs each pair into one hash. Pairs whose fields don't fit their bit
    ranges are skipped, that's a data-quality filter rather than an error.
    """
    if not peaks:
        raise InvalidInputError("No peaks to hash")
    if song_id is None:
        raise InvalidInputError("song_id is required")

    records = []
    skipped = 0
    num_peaks = len(peaks)

    for i, anchor in enumerate(peaks):
        if anchor.freq_bin > MAX_FREQ_BIN or anchor.time_index > MAX_ANCHOR_TIME:
            continue
        anchor_q = quantize_magnitude(anchor.magnitude_db)

        for k in range(i + 1, min(i + fan_value, num_peaks - 1) + 1):
            h = _pair_hash(anchor, anchor_q, peaks[k])
            if h is None:
                skipped += 1
                continue
            records.append(FingerprintHash(hash=h, time_offset=anchor.time_index, song_id=song_id))

    unique = deduplicate(records)
    logger.debug(
        f"Hashed {num_peaks} peaks: {len(records)} pairs, {skipped} out of range, "
        f"{len(records) - len(unique)} duplicates dropped"
    )
    return unique
