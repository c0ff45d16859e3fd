"""Two-tier parse result cache keyed by text fingerprint.

The fast tier is the ephemeral store (24h TTL); the durable tier is the
``parse_cache`` table. Entries are content-addressed: the only mutation after
creation is the hit-count and last-hit bump.
"""

from datetime import timedelta

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import ParseCacheORM
from app.core.models import CachedParseResult, ParsedTransaction
from app.core.utils import get_logger, isoformat_utc, utcnow
from app.services.store import EphemeralStore

logger = get_logger("spend-parser.cache")

CACHE_TTL_SECONDS = 24 * 60 * 60
CACHE_PREFIX = "llm:parse:"


class ParseCache:
    """Write-through cache over an ephemeral store and the database."""

    def __init__(
        self,
        store: EphemeralStore,
        session_factory: sessionmaker,
        ttl_seconds: int = CACHE_TTL_SECONDS,
    ) -> None:
        """Initialize with the fast-tier store and a session factory for the durable tier."""
        self.store = store
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(text_hash: str) -> str:
        return f"{CACHE_PREFIX}{text_hash}"

    def _read_fast(self, text_hash: str) -> CachedParseResult | None:
        raw = self.store.get(self._key(text_hash))
        if raw is None:
            return None
        try:
            return CachedParseResult.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Dropping unreadable cache entry {text_hash[:12]}")
            self.store.delete(self._key(text_hash))
            return None

    def _write_fast(self, text_hash: str, result: CachedParseResult) -> None:
        self.store.set(self._key(text_hash), result.model_dump_json(), self.ttl_seconds)

    def get(self, text_hash: str) -> CachedParseResult | None:
        """Look up the fast tier, then the durable tier (bumping its hit count and backfilling)."""
        cached = self._read_fast(text_hash)
        if cached is not None:
            return cached

        with self.session_factory() as session:
            row = session.scalar(select(ParseCacheORM).where(ParseCacheORM.text_hash == text_hash))
            if row is None:
                return None
            row.hit_count += 1
            row.last_hit_at = utcnow()
            session.commit()
            result = CachedParseResult(
                transaction=ParsedTransaction.model_validate_json(row.result_json),
                provider=row.provider,
                cached_at=isoformat_utc(row.created_at),
            )

        self._write_fast(text_hash, result)
        return result

    def set(self, text_hash: str, transaction: ParsedTransaction, provider: str) -> CachedParseResult:
        """Store in both tiers; the durable write is an upsert that bumps the hit count on update."""
        now = utcnow()
        result = CachedParseResult(transaction=transaction, provider=provider, cached_at=isoformat_utc(now))
        self._write_fast(text_hash, result)

        payload = transaction.model_dump_json()
        with self.session_factory() as session:
            if self._update_durable(session, text_hash, payload, provider):
                return result
            session.add(ParseCacheORM(text_hash=text_hash, result_json=payload, provider=provider, last_hit_at=now))
            try:
                session.commit()
            except IntegrityError:
                # Another writer inserted the same fingerprint first.
                session.rollback()
                self._update_durable(session, text_hash, payload, provider)
        return result

    def _update_durable(self, session: Session, text_hash: str, payload: str, provider: str) -> bool:
        """Overwrite an existing durable entry and bump its hit count; False when there is none."""
        row = session.scalar(select(ParseCacheORM).where(ParseCacheORM.text_hash == text_hash))
        if row is None:
            return False
        row.result_json = payload
        row.provider = provider
        row.hit_count += 1
        row.last_hit_at = utcnow()
        session.commit()
        return True

    def invalidate(self, text_hash: str) -> None:
        """Remove an entry from both tiers."""
        self.store.delete(self._key(text_hash))
        with self.session_factory() as session:
            session.execute(delete(ParseCacheORM).where(ParseCacheORM.text_hash == text_hash))
            session.commit()

    def cleanup(self, max_age_days: int = 30) -> int:
        """Delete durable entries not hit for ``max_age_days``; returns the count removed."""
        cutoff = utcnow() - timedelta(days=max_age_days)
        with self.session_factory() as session:
            result = session.execute(delete(ParseCacheORM).where(ParseCacheORM.last_hit_at < cutoff))
            session.commit()
            removed = result.rowcount or 0
        logger.info(f"Cache cleanup removed {removed} entries older than {max_age_days} days")
        return removed

    def get_stats(self) -> dict[str, float]:
        """Entry count and hit statistics of the durable tier."""
        with self.session_factory() as session:
            total, hits, avg = session.execute(
                select(
                    func.count(ParseCacheORM.id),
                    func.coalesce(func.sum(ParseCacheORM.hit_count), 0),
                    func.coalesce(func.avg(ParseCacheORM.hit_count), 0),
                )
            ).one()
        return {"total_entries": int(total), "total_hits": int(hits), "avg_hits_per_entry": float(avg)}
