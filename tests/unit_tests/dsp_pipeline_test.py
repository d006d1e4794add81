from unittest.mock import patch
import numpy as np
import pytest
from find_prints.core.audio import PCMBuffer
from find_prints.core.config import SAMPLE_RATE, FRAME_SIZE
from find_prints.core.errors import AudioDecodeError, InvalidInputError
from find_prints.services.fingerprint_branch.dsp import DSPFingerprinter
from find_prints.services.fingerprint_branch.hashing import unpack_hash
from find_prints.services.fingerprint_branch.peaks import detect_peaks
from find_prints.services.fingerprint_branch.preprocessor import preprocess
from find_prints.services.fingerprint_branch.spectrogram import build_spectrogram

engine = DSPFingerprinter()

BIN_WIDTH = SAMPLE_RATE / FRAME_SIZE  # ≈ 21.5 Hz


def near_tone(freq_bin, tone_hz):
    return abs(freq_bin * BIN_WIDTH - tone_hz) <= BIN_WIDTH


class TestTwoToneScenario:
    """2 s of 440 Hz + 880 Hz through every stage."""

    def test_peaks_sit_on_both_tones_across_many_frames(self, two_tone_buffer):
        mono = preprocess(two_tone_buffer, channels=1, sample_rate=SAMPLE_RATE)
        spectrogram = build_spectrogram(mono, SAMPLE_RATE)
        peaks = detect_peaks(spectrogram)

        assert peaks
        assert all(near_tone(p.freq_bin, 440.0) or near_tone(p.freq_bin, 880.0) for p in peaks)

        low_frames = {p.time_index for p in peaks if near_tone(p.freq_bin, 440.0)}
        high_frames = {p.time_index for p in peaks if near_tone(p.freq_bin, 880.0)}
        assert len(low_frames) >= 3
        assert len(high_frames) >= 3

    def test_hashes_are_unique_and_anchor_on_the_tones(self, two_tone_buffer):
        result = engine.fingerprint_samples(two_tone_buffer, channels=1, sample_rate=SAMPLE_RATE, song_id=42)

        assert result.num_frames == 1 + (len(two_tone_buffer) - FRAME_SIZE) // 1024
        assert result.num_peaks > 0
        assert result.hashes
        keys = [(h.hash, h.time_offset) for h in result.hashes]
        assert len(keys) == len(set(keys))
        assert all(h.song_id == 42 for h in result.hashes)

        for h in result.hashes:
            fields = unpack_hash(h.hash)
            assert fields.anchor_time == h.time_offset
            assert near_tone(fields.anchor_freq, 440.0) or near_tone(fields.anchor_freq, 880.0)

    def test_same_audio_gives_same_fingerprints(self, two_tone_buffer):
        first = engine.fingerprint_samples(two_tone_buffer, 1, SAMPLE_RATE, song_id=1)
        second = engine.fingerprint_samples(two_tone_buffer.copy(), 1, SAMPLE_RATE, song_id=1)
        assert first.hashes == second.hashes

    def test_duration_and_density(self, two_tone_buffer):
        result = engine.fingerprint_samples(two_tone_buffer, 1, SAMPLE_RATE, song_id=1)
        assert result.duration == pytest.approx(2.0)
        assert result.hashes_per_second == pytest.approx(len(result.hashes) / 2.0)


class TestFailures:

    def test_silence_has_no_peaks_to_hash(self):
        with pytest.raises(InvalidInputError):
            engine.fingerprint_samples(np.zeros(SAMPLE_RATE), 1, SAMPLE_RATE, song_id=1)

    def test_too_short_input(self):
        with pytest.raises(InvalidInputError):
            engine.fingerprint_samples(np.ones(FRAME_SIZE // 2), 1, SAMPLE_RATE, song_id=1)


class TestProcessFile:

    @patch("find_prints.services.fingerprint_branch.dsp.load_pcm")
    def test_decoded_stereo_48k_is_fingerprinted(self, mock_load, two_tone_buffer):
        # 2 s of stereo at 48 kHz, same tones on both channels
        t = np.arange(2 * 48000) / 48000
        mono = 0.8 * np.sin(2 * np.pi * 440.0 * t) + 0.8 * np.sin(2 * np.pi * 880.0 * t)
        mock_load.return_value = PCMBuffer(samples=np.column_stack([mono, mono]).reshape(-1), channels=2, sample_rate=48000)

        result = engine.process_file("song.wav", song_id=3)

        mock_load.assert_called_once_with("song.wav")
        assert result.num_samples == SAMPLE_RATE * 2
        assert result.hashes
        assert all(h.song_id == 3 for h in result.hashes)

    @patch("find_prints.services.fingerprint_branch.dsp.load_pcm")
    def test_decode_errors_propagate(self, mock_load):
        mock_load.side_effect = AudioDecodeError("Cannot decode audio file: broken.mp3")
        with pytest.raises(AudioDecodeError):
            engine.process_file("broken.mp3", song_id=3)
