"""
SQL ledger of processed feed items.

Table:
  - news_analysis: one row per item identifier with its latest verdict

An identifier present in the table has been classified and persisted; the
pipeline never evaluates it again. Upserts are single statements, so a row
is never observed half-written and created_at survives every overwrite.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Union

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, Text, create_engine, select, text,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config.settings import Settings
from ..news.models import FeedItem, PersistedRecord, Verdict

logger = logging.getLogger(__name__)

Base = declarative_base()

# Microsecond precision on MySQL so updated_at moves within the same second.
_Timestamp = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")


class LedgerError(Exception):
    """A ledger read or write failed."""


# ── Models ───────────────────────────────────────────────────────────────────

class NewsAnalysisModel(Base):
    """Classified feed item, keyed by identifier."""
    __tablename__ = "news_analysis"
    __table_args__ = {"mysql_charset": "utf8mb4", "mysql_collate": "utf8mb4_unicode_ci"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    guid = Column(String(255), nullable=False, unique=True)
    title = Column(Text, nullable=False)
    link = Column(Text)
    published_at = Column(_Timestamp, nullable=True)
    summary = Column(Text)
    relevant = Column(Boolean, nullable=False)
    category = Column(String(255), nullable=False, default="")
    reason = Column(Text)
    tags = Column(Text)  # JSON array
    created_at = Column(_Timestamp, nullable=False)
    updated_at = Column(_Timestamp, nullable=False)


_UPDATABLE = (
    "title", "link", "published_at", "summary", "relevant",
    "category", "reason", "tags", "updated_at",
)


def _utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Datetimes are stored as naive UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc)


# ── Ledger ───────────────────────────────────────────────────────────────────

class Ledger:
    """Dedup ledger backed by any SQLAlchemy database with upsert support."""

    def __init__(
        self,
        database_url: Union[str, URL],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        url = make_url(database_url)
        engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise each thread sees its own empty database
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "Ledger":
        """Connect, create the database and table if missing, and return a ready ledger.

        Raises:
            LedgerError: If the database is unreachable or the schema cannot be created
        """
        url = settings.sqlalchemy_url()
        try:
            if url.get_backend_name() == "mysql" and url.database:
                _ensure_mysql_database(url)
            ledger = cls(url)
            ledger.create_tables()
        except SQLAlchemyError as e:
            raise LedgerError(f"init ledger: {e}") from e
        logger.info("[LEDGER] Ready on %s", url.render_as_string(hide_password=True))
        return ledger

    def create_tables(self) -> None:
        """Create the table if absent (safe to call multiple times)."""
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def exists(self, guid: str) -> bool:
        """Report whether an identifier has already been persisted."""
        try:
            with self.get_session() as session:
                found = session.execute(
                    select(NewsAnalysisModel.id).where(NewsAnalysisModel.guid == guid).limit(1)
                ).first()
        except SQLAlchemyError as e:
            raise LedgerError(f"check exists {guid}: {e}") from e
        return found is not None

    def upsert(self, item: FeedItem, verdict: Verdict) -> None:
        """Insert or replace the record for item.guid.

        All mutable fields and updated_at are overwritten; created_at is only
        written on insert.
        """
        now = _utc_naive(self._clock())
        row = {
            "guid": item.guid,
            "title": item.title,
            "link": item.link,
            "published_at": _utc_naive(item.published),
            "summary": item.summary,
            "relevant": verdict.relevant,
            "category": verdict.category or "",
            "reason": verdict.reason or "",
            "tags": json.dumps(list(verdict.tags), ensure_ascii=False),
            "created_at": now,
            "updated_at": now,
        }
        try:
            stmt = self._upsert_statement(row)
            with self.get_session() as session:
                session.execute(stmt)
        except SQLAlchemyError as e:
            raise LedgerError(f"save analysis {item.guid}: {e}") from e

    def _upsert_statement(self, row: dict):
        table = NewsAnalysisModel.__table__
        dialect = self.engine.dialect.name
        if dialect == "mysql":
            stmt = mysql.insert(table).values(**row)
            return stmt.on_duplicate_key_update(
                {name: stmt.inserted[name] for name in _UPDATABLE}
            )
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(table).values(**row)
            return stmt.on_conflict_do_update(
                index_elements=[table.c.guid],
                set_={name: stmt.excluded[name] for name in _UPDATABLE},
            )
        raise LedgerError(f"upsert is not supported on {dialect}")

    def get(self, guid: str) -> Optional[PersistedRecord]:
        """Load a single record by identifier."""
        try:
            with self.get_session() as session:
                row = session.execute(
                    select(NewsAnalysisModel).where(NewsAnalysisModel.guid == guid)
                ).scalar_one_or_none()
                return self._to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise LedgerError(f"get {guid}: {e}") from e

    def list_recent(self, relevant_only: bool = True, limit: int = 50) -> list[PersistedRecord]:
        """Most recent records, newest publish time first, later inserts first on ties."""
        query = select(NewsAnalysisModel)
        if relevant_only:
            query = query.where(NewsAnalysisModel.relevant.is_(True))
        # Undated rows sort last. MySQL has no NULLS LAST.
        query = query.order_by(
            NewsAnalysisModel.published_at.is_(None),
            NewsAnalysisModel.published_at.desc(),
            NewsAnalysisModel.id.desc(),
        ).limit(limit)
        try:
            with self.get_session() as session:
                rows = session.execute(query).scalars().all()
                return [self._to_record(r) for r in rows]
        except SQLAlchemyError as e:
            raise LedgerError(f"list recent: {e}") from e

    @staticmethod
    def _to_record(row: NewsAnalysisModel) -> PersistedRecord:
        tags: list[str] = []
        if row.tags:
            try:
                parsed = json.loads(row.tags)
                if isinstance(parsed, list):
                    tags = [str(t) for t in parsed]
            except json.JSONDecodeError:
                logger.warning("[LEDGER] Bad tags JSON for %s", row.guid)
        return PersistedRecord(
            guid=row.guid,
            title=row.title,
            link=row.link or "",
            published=_utc_aware(row.published_at),
            relevant=bool(row.relevant),
            category=row.category or "",
            reason=row.reason or "",
            tags=tags,
            first_seen=_utc_aware(row.created_at),
            last_updated=_utc_aware(row.updated_at),
            summary=row.summary or "",
        )


def _ensure_mysql_database(url: URL) -> None:
    """CREATE DATABASE IF NOT EXISTS, connecting to the server without a schema."""
    server = create_engine(url.set(database=None), pool_pre_ping=True)
    try:
        with server.begin() as conn:
            conn.execute(text(
                f"CREATE DATABASE IF NOT EXISTS `{url.database}` "
                "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            ))
    finally:
        server.dispose()
