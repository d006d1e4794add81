import argparse
import sys
from pathlib import Path
from loguru import logger
from find_prints.core.config import (
    DATABASE_URL,
    FINGERPRINT_VERSION,
    INGEST_WORKERS,
    LOG_FILE_PATH,
    SONGS_FOLDER,
    ensure_directories,
)
from find_prints.core.database import open_store
from find_prints.core.errors import StorageError
from find_prints.scripts.cleanup_DB import sanitize_database
from find_prints.services.ingestion_cycle.ingestion import ingest_folder, summarize


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Fingerprint a folder of songs into the database.")
    parser.add_argument("--folder", type=Path, default=SONGS_FOLDER, help="folder holding .wav/.mp3 files")
    parser.add_argument("--database-url", default=DATABASE_URL, help="SQLAlchemy database URL")
    parser.add_argument("--workers", type=int, default=INGEST_WORKERS, help="parallel fingerprinting processes")
    parser.add_argument(
        "--purge-incomplete",
        action="store_true",
        help="drop songs without fingerprints before ingesting so they get retried",
    )
    return parser.parse_args(argv)


def seed_database(argv=None) -> int:
    args = parse_args(argv)

    ensure_directories()
    logger.add(str(LOG_FILE_PATH), rotation="10 MB", retention="10 days", level="INFO")

    if not args.folder.is_dir():
        logger.error(f"❌ Songs folder not found at {args.folder}")
        return 1

    logger.info(f"🚀 Starting bulk ingestion from {args.folder} (fingerprint space {FINGERPRINT_VERSION})")

    try:
        if args.purge_incomplete:
            sanitize_database(args.database_url)

        with open_store(args.database_url) as store:
            reports = ingest_folder(args.folder, store, workers=args.workers)
    except StorageError as e:
        logger.error(f"❌ Failed to open/create DB at {args.database_url}: {e.message}")
        return 1
    except KeyboardInterrupt:
        logger.warning("🛑 Seeding interrupted by user. Safe exit triggered.")
        return 130

    summary = summarize(reports)
    logger.info("==========================================")
    logger.info(
        f"🏁 Seeding Complete. Indexed: {summary['indexed']} | "
        f"Duplicates: {summary['duplicate_songs']} | Failed: {summary['failed_songs']}"
    )
    logger.info(
        f"   Hashes inserted: {summary['hashes_inserted']} | "
        f"duplicate: {summary['hashes_duplicate']} | failed: {summary['hashes_failed']}"
    )
    logger.info("==========================================")
    return 0


if __name__ == "__main__":
    sys.exit(seed_database())
