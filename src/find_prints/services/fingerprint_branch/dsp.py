from dataclasses import dataclass, field
from typing import List
import numpy as np
from loguru import logger

from find_prints.core.audio import load_pcm
from find_prints.core.config import SAMPLE_RATE, FRAME_SIZE, HOP_SIZE, THRESHOLD_DB, NEIGHBORHOOD_SIZE, FAN_VALUE
from find_prints.services.fingerprint_branch.preprocessor import preprocess
from find_prints.services.fingerprint_branch.spectrogram import build_spectrogram
from find_prints.services.fingerprint_branch.peaks import detect_peaks
from find_prints.services.fingerprint_branch.hashing import FingerprintHash, generate_fingerprint_hashes


@dataclass
class FingerprintResult:
    hashes: List[FingerprintHash] = field(default_factory=list)
    num_samples: int = 0
    num_frames: int = 0
    num_peaks: int = 0
    duration: float = 0.0

    @property
    def hashes_per_second(self) -> float:
        return len(self.hashes) / self.duration if self.duration else 0.0


# DSP = digital signal processing
class DSPFingerprinter:
    """
    Raw PCM -> mono 44.1 kHz -> STFT magnitudes -> peak constellation -> 64-bit hashes.

    Each call owns every buffer it creates (samples, spectrogram, peaks,
    hashes) and shares nothing with other calls, so separate files can be
    fingerprinted in separate processes with separate instances.

    Changing any of these parameters changes the fingerprint space; hashes
    built with different settings don't match.
    """

    def __init__(self):
        # 1. FFT Configuration
        self.sample_rate = SAMPLE_RATE  # 44.1 kHz, bins are 44100 / 2048 ≈ 21.5 Hz wide
        self.frame_size = FRAME_SIZE    # 2048 samples ≈ 46 ms per frame
        self.hop_size = HOP_SIZE        # 1024 samples ≈ 23 ms between frames

        # 2. Peak Configuration
        self.threshold_db = THRESHOLD_DB
        self.neighborhood = NEIGHBORHOOD_SIZE

        # 3. Hashing Configuration
        self.fan_value = FAN_VALUE

    # --- ENTRY POINT 1: FOR DATABASE INGESTION (FILES) ---
    def process_file(self, file_path: str, song_id: int) -> FingerprintResult:
        """Decode a file through the audio source, then fingerprint it."""
        pcm = load_pcm(file_path)
        logger.info(f"🎵 Fingerprinting {file_path}")
        return self.fingerprint_samples(pcm.samples, pcm.channels, pcm.sample_rate, song_id)

    # --- ENTRY POINT 2: FOR RAW BUFFERS ---
    def fingerprint_samples(self, samples: np.ndarray, channels: int, sample_rate: int,
                            song_id: int) -> FingerprintResult:
        """
        The pure logic: takes numbers, returns hashes. Does not care where
        the audio came from. Stages run strictly one after another.
        """
        # Step A: Normalise
        mono = preprocess(samples, channels, sample_rate, self.sample_rate)

        # Step B: Spectrogram
        spectrogram = build_spectrogram(mono, self.sample_rate, self.frame_size, self.hop_size)

        # Step C: Peaks
        peaks = detect_peaks(spectrogram, self.threshold_db, self.neighborhood)

        # Step D: Hashes
        hashes = generate_fingerprint_hashes(peaks, song_id, self.fan_value)

        result = FingerprintResult(
            hashes=hashes,
            num_samples=len(mono),
            num_frames=spectrogram.num_frames,
            num_peaks=len(peaks),
            duration=len(mono) / self.sample_rate,
        )
        logger.info(
            f"  Duration: {result.duration:.2f}s | Frames: {result.num_frames} | "
            f"Peaks: {result.num_peaks} | Hashes: {len(hashes)} ({result.hashes_per_second:.1f}/s)"
        )
        return result
