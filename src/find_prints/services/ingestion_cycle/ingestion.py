from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from loguru import logger
from tqdm import tqdm

from find_prints.core.database import FingerprintStore, InsertCounts
from find_prints.core.errors import FingerprintError
from find_prints.services.fingerprint_branch.dsp import DSPFingerprinter, FingerprintResult
from find_prints.services.fingerprint_branch.hashing import FingerprintHash
from find_prints.services.ingestion_cycle.catalog import discover_audio_files, parse_song_metadata

dsp_engine = DSPFingerprinter()

"""
Input: (audio file, name, artist)
   ↓
Register song (skip duplicates)
   ↓
DSP Fingerprinting
   ↓
Per-record insert of hex hashes
   ↓
Commit, report inserted / duplicate / failed counts

Song rows are committed before the heavy work so their id can be stamped into
every hash. If fingerprinting fails the row is deleted again, so a later run
retries the file instead of seeing a duplicate.
"""

STATUS_INDEXED = "indexed"
STATUS_DUPLICATE = "duplicate"
STATUS_FAILED = "failed"


@dataclass
class IngestionReport:
    path: str
    name: str
    artist: str
    status: str = STATUS_FAILED
    song_id: Optional[int] = None
    hashes: int = 0
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0
    error: Optional[str] = None


def store_fingerprints(store: FingerprintStore, song_id: int, hashes: Sequence[FingerprintHash]) -> InsertCounts:
    """Writes every record, counting per-record outcomes, then commits once."""
    counts = store.insert_fingerprints((h.hex, h.time_offset, song_id) for h in hashes)
    store.commit()
    if counts.failed:
        logger.warning(f"⚠️ {counts.failed}/{counts.total} fingerprints failed to insert for song {song_id}")
    return counts


def _register_song(store: FingerprintStore, report: IngestionReport) -> Optional[int]:
    """Returns the new song id, or None when the song is a duplicate or can't be created."""
    try:
        song = store.insert_song(report.name, report.artist)
        if not song.created:
            report.status = STATUS_DUPLICATE
            report.song_id = song.song_id
            return None
        store.commit()
    except FingerprintError as e:
        report.error = e.message
        logger.error(f"❌ Could not register '{report.name}' by '{report.artist}': {e.message}")
        return None

    report.song_id = song.song_id
    return song.song_id


def _discard_song(store: FingerprintStore, report: IngestionReport, error: Exception):
    report.status = STATUS_FAILED
    report.error = str(error)
    logger.error(f"❌ Fingerprinting failed for {report.path}: {error}")
    try:
        store.rollback()
        store.delete_song(report.song_id)
        store.commit()
    except FingerprintError as cleanup_error:
        logger.warning(f"⚠️ Could not remove song {report.song_id} after failure: {cleanup_error.message}")


def _finish_song(store: FingerprintStore, report: IngestionReport, result: FingerprintResult) -> IngestionReport:
    try:
        counts = store_fingerprints(store, report.song_id, result.hashes)
    except FingerprintError as e:
        _discard_song(store, report, e)
        return report

    report.status = STATUS_INDEXED
    report.hashes = len(result.hashes)
    report.inserted = counts.inserted
    report.duplicates = counts.duplicates
    report.failed = counts.failed
    logger.success(
        f"✅ Inserted {counts.inserted}/{len(result.hashes)} hashes for '{report.name}' "
        f"({counts.duplicates} duplicates skipped)"
    )
    return report


def process_single_song(file_path, name: str, artist: str, store: FingerprintStore,
                        fingerprinter: Optional[DSPFingerprinter] = None) -> IngestionReport:
    fingerprinter = fingerprinter or dsp_engine
    report = IngestionReport(path=str(file_path), name=name, artist=artist)
    logger.info(f"🚀 Starting ingestion for: {name} by {artist}")

    song_id = _register_song(store, report)
    if song_id is None:
        return report

    try:
        result = fingerprinter.process_file(str(file_path), song_id)
    except MemoryError:
        raise
    except Exception as e:
        _discard_song(store, report, e)
        return report

    return _finish_song(store, report, result)


def _fingerprint_job(file_path: str, song_id: int) -> FingerprintResult:
    # runs in a worker process, one fresh pipeline per file
    return DSPFingerprinter().process_file(file_path, song_id)


def _ingest_parallel(files: List[Path], store: FingerprintStore, workers: int) -> List[IngestionReport]:
    """
    CPU-heavy pipelines run in worker processes; the store handle never leaves
    this process, so all writes stay on one session.
    """
    reports = []
    with ProcessPoolExecutor(max_workers=workers) as pool:
        pending: Dict = {}
        for path in files:
            name, artist = parse_song_metadata(path)
            report = IngestionReport(path=str(path), name=name, artist=artist)
            reports.append(report)
            try:
                song_id = _register_song(store, report)
            except MemoryError:
                raise
            except Exception as e:
                logger.exception(f"❌ Unexpected failure registering {path}: {e}")
                store.rollback()
                report.error = str(e)
                continue
            if song_id is not None:
                pending[pool.submit(_fingerprint_job, str(path), song_id)] = report

        for future in tqdm(as_completed(pending), total=len(pending), desc="Fingerprinting", unit="song"):
            report = pending[future]
            try:
                result = future.result()
            except MemoryError:
                raise
            except Exception as e:
                _discard_song(store, report, e)
                continue
            _finish_song(store, report, result)

    return reports


def ingest_folder(folder, store: FingerprintStore, workers: int = 1,
                  fingerprinter: Optional[DSPFingerprinter] = None) -> List[IngestionReport]:
    """
    Fingerprints every audio file in folder. A failing file is reported and
    skipped, it never aborts the batch.
    """
    files = discover_audio_files(folder)
    logger.info(f"📂 Found {len(files)} audio files in {folder}")

    if workers > 1:
        return _ingest_parallel(files, store, workers)

    reports = []
    for index, path in enumerate(files, start=1):
        name, artist = parse_song_metadata(path)
        logger.info(f"--- Processing {index}/{len(files)}: {path.name} ---")
        try:
            reports.append(process_single_song(path, name, artist, store, fingerprinter))
        except MemoryError:
            raise
        except Exception as e:
            logger.exception(f"❌ Unexpected failure on {path}: {e}")
            store.rollback()
            reports.append(IngestionReport(path=str(path), name=name, artist=artist, error=str(e)))
    return reports


def summarize(reports: Sequence[IngestionReport]) -> Dict[str, int]:
    return {
        "indexed": sum(r.status == STATUS_INDEXED for r in reports),
        "duplicate_songs": sum(r.status == STATUS_DUPLICATE for r in reports),
        "failed_songs": sum(r.status == STATUS_FAILED for r in reports),
        "hashes_inserted": sum(r.inserted for r in reports),
        "hashes_duplicate": sum(r.duplicates for r in reports),
        "hashes_failed": sum(r.failed for r in reports),
    }
