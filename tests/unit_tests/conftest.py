import numpy as np
import pytest
from find_prints.core.config import SAMPLE_RATE
from find_prints.core.database import open_store


def sine(freq_hz, seconds=2.0, amplitude=0.8, sample_rate=SAMPLE_RATE):
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return amplitude * np.sin(2.0 * np.pi * freq_hz * t)


@pytest.fixture
def two_tone_buffer():
    """2 s of mono 44.1 kHz audio holding 440 Hz and 880 Hz at 0.8 amplitude each."""
    return sine(440.0) + sine(880.0)


@pytest.fixture
def store(tmp_path):
    with open_store(f"sqlite:///{tmp_path / 'fingerprints.db'}") as handle:
        yield handle
