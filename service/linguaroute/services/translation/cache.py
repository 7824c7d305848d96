"""Two-tier cache for routed translations.

L1: in-memory LRU (cachetools) for hot entries, carrying the L2 expiry
L2: SQLite table with per-entry expiry, surviving restarts

Cache hits never reach a provider and are therefore never charged.
"""

import hashlib
import json
import logging
import sqlite3
import time
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from cachetools import LRUCache  # type: ignore[import-untyped]
from linguaroute.metrics.translation_metrics import translation_cache_total
from linguaroute.models.glossary import (
    GlossaryCandidate,
    GlossaryDecisionKind,
    GlossaryMatch,
    GlossaryScope,
    GlossaryStrategy,
)
from linguaroute.models.translation import RoutedTranslation, TranslationRequest

logger = logging.getLogger(__name__)


def make_cache_key(request: TranslationRequest) -> str:
    """Hash every request field that can change the routed output."""
    content = json.dumps(
        {
            "text": request.text,
            "source": request.declared_source_language,
            "targets": request.target_languages,
            "tenant": request.tenant_id,
            "channel": request.channel_id,
            "user": request.user_id,
            "tone": request.tone,
            "glossary": request.use_glossary,
            "decisions": {
                key: decision.model_dump(mode="json")
                for key, decision in sorted(request.glossary_decisions.items())
            },
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _serialize(translation: RoutedTranslation) -> str:
    return json.dumps(asdict(translation), ensure_ascii=False, default=str)


def _deserialize(payload: str) -> RoutedTranslation:
    data: Dict[str, Any] = json.loads(payload)
    matches = []
    for raw in data.pop("glossary_matches", []):
        candidates = [
            GlossaryCandidate(
                target=c["target"],
                scope=GlossaryScope(c["scope"]),
                priority=int(c["priority"]),
                strategy=GlossaryStrategy(c["strategy"]),
            )
            for c in raw.pop("candidates", [])
        ]
        raw["resolution"] = GlossaryDecisionKind(raw["resolution"])
        matches.append(GlossaryMatch(candidates=candidates, **raw))
    return RoutedTranslation(glossary_matches=matches, **data)


class TranslationCache:
    """LRU in front of a SQLite TTL store."""

    def __init__(
        self,
        db_path: str,
        l1_size: int = 1000,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            db_path: Path to the SQLite database file
            l1_size: Maximum entries kept in memory
            ttl_seconds: Lifetime of entries in both tiers
            clock: Wall clock in epoch seconds
        """
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._l1: LRUCache = LRUCache(maxsize=l1_size)
        self._init_db()

    def _now(self) -> int:
        return int(self._clock())

    def _init_db(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS routed_translations (
                    cache_key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    expires_at INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_routed_translations_expires_at
                ON routed_translations(expires_at)
            """)
            conn.commit()
        finally:
            conn.close()

    def get(self, request: TranslationRequest) -> Optional[RoutedTranslation]:
        key = make_cache_key(request)
        now = self._now()
        entry: Optional[Tuple[str, int]] = self._l1.get(key)
        if entry is not None:
            payload, expires_at = entry
            if expires_at > now:
                translation_cache_total.labels(tier="l1", result="hit").inc()
                return replace(_deserialize(payload), cached=True)
            self._l1.pop(key, None)

        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload, expires_at FROM routed_translations"
                " WHERE cache_key = ? AND expires_at > ?",
                (key, now),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            translation_cache_total.labels(tier="l2", result="miss").inc()
            return None

        translation_cache_total.labels(tier="l2", result="hit").inc()
        self._l1[key] = (row[0], row[1])
        return replace(_deserialize(row[0]), cached=True)

    def set(self, request: TranslationRequest, translation: RoutedTranslation) -> None:
        key = make_cache_key(request)
        payload = _serialize(replace(translation, cached=False))
        now = self._now()
        self._l1[key] = (payload, now + self.ttl_seconds)
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO routed_translations
                (cache_key, payload, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (key, payload, now, now + self.ttl_seconds),
            )
            conn.commit()
        finally:
            conn.close()

    def cleanup_expired(self) -> int:
        """Remove expired rows from the SQLite tier.

        Returns:
            Number of rows removed
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM routed_translations WHERE expires_at <= ?",
                (self._now(),),
            )
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        if deleted:
            logger.info(f"Removed {deleted} expired cached translations")
        return deleted

    def clear(self) -> None:
        self._l1.clear()
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("DELETE FROM routed_translations")
            conn.commit()
        finally:
            conn.close()

    def get_stats(self) -> dict:
        conn = sqlite3.connect(self.db_path)
        try:
            total = conn.execute("SELECT COUNT(*) FROM routed_translations").fetchone()[0]
        finally:
            conn.close()
        return {"l1_size": len(self._l1), "l1_maxsize": self._l1.maxsize, "l2_entries": total}
