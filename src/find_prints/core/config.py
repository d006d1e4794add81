# src/find_prints/core/config.py

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Audio Params
SAMPLE_RATE = 44100
FRAME_SIZE = 2048   # STFT frame, must be a power of two
HOP_SIZE = 1024     # 50% overlap

# Peak Detection
THRESHOLD_DB = 27.0
NEIGHBORHOOD_SIZE = 3  # half-width of the square neighborhood, sensitivity vs hash load
DB_EPSILON = 1e-10

# Hashing
FAN_VALUE = 5

# 64-bit layout, MSB first:
# [63..54 anchor freq][53..48 delta freq][47..36 delta time][35..28 magnitudes][27..8 anchor time][7..0 reserved]
ANCHOR_FREQ_BITS = 10
DELTA_FREQ_BITS = 6
DELTA_TIME_BITS = 12
MAGNITUDE_BITS = 8
ANCHOR_TIME_BITS = 20
RESERVED_BITS = 8
HASH_BITS = 64
HASH_HEX_LENGTH = HASH_BITS // 4

MAGNITUDE_DB_RANGE = (0.0, 60.0)

# Every constant above defines the fingerprint space. Bump this whenever one of them
# changes: stored fingerprints from another version can't be compared.
FINGERPRINT_VERSION = "fp64-v1"

# Paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent  # repo root
DATA_DIR = BASE_DIR / "data"
SONGS_FOLDER = Path(os.getenv("SONGS_FOLDER", str(BASE_DIR / "songs")))
LOG_FILE_PATH = Path(os.getenv("LOG_FILE_PATH", str(BASE_DIR / "logs" / "app_debug.log")))

INGEST_WORKERS = int(os.getenv("INGEST_WORKERS", "1"))


def ensure_directories():
    """Creates necessary local storage folders before a run."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    SONGS_FOLDER.mkdir(parents=True, exist_ok=True)
    LOG_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)


# Database Connection
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'audio_fingerprint.db'}")
