from pathlib import Path
from typing import List, Tuple

SUPPORTED_FORMATS = {".wav", ".mp3"}
UNKNOWN_ARTIST = "Unknown"


def is_audio_file(path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_FORMATS


def discover_audio_files(folder) -> List[Path]:
    """Regular audio files directly inside folder, sorted by name."""
    folder = Path(folder)
    return sorted(p for p in folder.iterdir() if p.is_file() and is_audio_file(p))


def parse_song_metadata(path) -> Tuple[str, str]:
    """
    'Artist - Title.mp3' -> ('Title', 'Artist').
    Anything else is catalogued under its file stem with an unknown artist.
    """
    stem = Path(path).stem.strip()
    if " - " in stem:
        artist, name = (part.strip() for part in stem.split(" - ", 1))
        if artist and name:
            return name, artist
    return stem, UNKNOWN_ARTIST
