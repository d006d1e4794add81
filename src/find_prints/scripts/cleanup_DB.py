from loguru import logger
from find_prints.core.config import DATABASE_URL
from find_prints.core.database import open_store


def sanitize_database(database_url: str = DATABASE_URL):
    """
    Removes songs that were registered but never got a fingerprint stored,
    e.g. when a run was killed mid-file. The next ingestion retries them.
    """
    logger.info("Starting Database Sanity Check (songs without fingerprints)...")

    with open_store(database_url) as store:
        purged = store.purge_incomplete_songs()

    if not purged:
        logger.success("✅ Database is healthy. No incomplete records found.")
    else:
        logger.success(f"🧹 Cleanup complete. {len(purged)} incomplete songs removed.")
    return purged


if __name__ == "__main__":
    sanitize_database()
