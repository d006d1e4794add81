import enum
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, create_engine, delete, event, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from find_prints.core.config import DATABASE_URL, HASH_HEX_LENGTH
from find_prints.core.errors import StorageError

Base = declarative_base()


class Song(Base):
    __tablename__ = "songs"
    __table_args__ = (UniqueConstraint("name", "artist", name="uq_song_name_artist"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    artist = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    fingerprints = relationship("Fingerprint", back_populates="song", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Song(name={self.name}, artist={self.artist})>"


class Fingerprint(Base):
    __tablename__ = "fingerprints"
    __table_args__ = (
        UniqueConstraint("hash", "time_offset", "song_id", name="uq_fingerprint_hash_offset_song"),
    )

    id = Column(Integer, primary_key=True)
    # fixed-width upper-case hex of the packed 64-bit hash, index=True for lookups by hash
    hash = Column(String(HASH_HEX_LENGTH), index=True, nullable=False)
    time_offset = Column(Integer, nullable=False)
    song_id = Column(Integer, ForeignKey("songs.id", ondelete="CASCADE"), nullable=False)

    song = relationship("Song", back_populates="fingerprints")

    def __repr__(self):
        return f"<Fingerprint(hash={self.hash}, offset={self.time_offset})>"


class InsertStatus(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    ERROR = "error"


@dataclass
class SongInsert:
    song_id: int
    created: bool


@dataclass
class InsertCounts:
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0

    def add(self, status: InsertStatus):
        if status is InsertStatus.INSERTED:
            self.inserted += 1
        elif status is InsertStatus.DUPLICATE:
            self.duplicates += 1
        else:
            self.failed += 1

    @property
    def total(self) -> int:
        return self.inserted + self.duplicates + self.failed


def _insert_ignoring_conflicts(session: Session, model, index_elements):
    """INSERT ... ON CONFLICT DO NOTHING for the dialects we run on."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise StorageError(f"Unsupported database dialect: {dialect}")
    return stmt.on_conflict_do_nothing(index_elements=index_elements)


class FingerprintStore:
    """
    Explicit handle over one database session. Every storage operation goes
    through an instance, there is no process-wide connection.
    Use open_store() to get one with guaranteed cleanup.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_song(self, name: str, artist: str) -> Optional[int]:
        return self.session.execute(
            select(Song.id).where(Song.name == name, Song.artist == artist)
        ).scalar_one_or_none()

    def insert_song(self, name: str, artist: str) -> SongInsert:
        """
        Returns the existing id with created=False if (name, artist) is already
        catalogued. The unique constraint settles races between writers.
        """
        try:
            existing_id = self.find_song(name, artist)
            if existing_id is not None:
                logger.warning(f"⚠️ Duplicate song: '{name}' by '{artist}', ID={existing_id}")
                return SongInsert(song_id=existing_id, created=False)

            stmt = _insert_ignoring_conflicts(self.session, Song, ["name", "artist"]).values(
                name=name, artist=artist
            )
            result = self.session.execute(stmt)
            song_id = self.find_song(name, artist)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to insert song '{name}' by '{artist}'", data={"cause": str(e)}) from e

        if song_id is None:
            raise StorageError(f"Song row missing after insert: '{name}' by '{artist}'")

        return SongInsert(song_id=song_id, created=result.rowcount > 0)

    def insert_fingerprint(self, hash_hex: str, time_offset: int, song_id: int) -> InsertStatus:
        stmt = _insert_ignoring_conflicts(
            self.session, Fingerprint, ["hash", "time_offset", "song_id"]
        ).values(hash=hash_hex, time_offset=time_offset, song_id=song_id)
        try:
            # one savepoint per record, a failed row only rolls back itself
            with self.session.begin_nested():
                result = self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to insert fingerprint {hash_hex}@{time_offset} for song {song_id}: {e}")
            return InsertStatus.ERROR

        return InsertStatus.INSERTED if result.rowcount > 0 else InsertStatus.DUPLICATE

    def insert_fingerprints(self, records: Iterable[Tuple[str, int, int]]) -> InsertCounts:
        """records: (hash_hex, time_offset, song_id) triples."""
        counts = InsertCounts()
        for hash_hex, time_offset, song_id in records:
            counts.add(self.insert_fingerprint(hash_hex, time_offset, song_id))
        return counts

    def get_fingerprints(self, song_id: int) -> List[Tuple[str, int]]:
        rows = self.session.execute(
            select(Fingerprint.hash, Fingerprint.time_offset)
            .where(Fingerprint.song_id == song_id)
            .order_by(Fingerprint.id)
        ).all()
        return [(h, t) for h, t in rows]

    def count_fingerprints(self, song_id: int) -> int:
        return self.session.execute(
            select(func.count(Fingerprint.id)).where(Fingerprint.song_id == song_id)
        ).scalar_one()

    def delete_song(self, song_id: int):
        try:
            self.session.execute(delete(Fingerprint).where(Fingerprint.song_id == song_id))
            self.session.execute(delete(Song).where(Song.id == song_id))
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to delete song {song_id}", data={"cause": str(e)}) from e

    def purge_incomplete_songs(self) -> List[Tuple[str, str]]:
        """Deletes songs that never got a single fingerprint stored. Returns their (name, artist)."""
        to_purge = self.session.query(Song).filter(~Song.fingerprints.any()).all()
        purged = []
        for song in to_purge:
            logger.info(f"   🗑️ Deleting {song.name} by {song.artist} | Reason: no fingerprints")
            purged.append((song.name, song.artist))
            self.session.delete(song)
        self.commit()
        return purged

    def commit(self):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError("DB transaction failed", data={"cause": str(e)}) from e

    def rollback(self):
        self.session.rollback()


def _enable_sqlite_savepoints(engine):
    # pysqlite defers BEGIN on its own and breaks SAVEPOINT; let SQLAlchemy emit it
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_db(engine):
    Base.metadata.create_all(bind=engine)


@contextmanager
def open_store(database_url: str = DATABASE_URL):
    """
    Opens the database, makes sure the tables exist and yields a FingerprintStore.
    The session is closed and the engine disposed on every exit path.
    """
    try:
        engine = create_engine(database_url, pool_pre_ping=True)
        if engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(engine)
        init_db(engine)
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to open database at {database_url}", data={"cause": str(e)}) from e

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield FingerprintStore(session)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
        engine.dispose()
