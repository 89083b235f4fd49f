"""Two-tier cache for context mirror payloads.

Tier 1 is process memory, keyed by owner + assessment. Tier 2 is the
``context_mirror`` column on the assessment row. Freshness is judged by the
persisted timestamp, so a payload older than the TTL is never served even if
this process has only just seen it.

Concurrent misses for the same key share one in-flight generation task.
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol

from cortex_insights.core.insight_errors import MissingProfileError, NotFoundError, PersistenceError
from cortex_insights.core.insight_orchestrator import InsightOrchestrator
from cortex_insights.core.logging import get_logger, log_with_context
from cortex_insights.core.schemas_context_mirror import (
    AssessmentRecord,
    GenerationDiagnostics,
    InsightPayload,
    parse_stored_payload,
    to_stored_payload,
)

logger = get_logger(__name__)

DEFAULT_TTL = timedelta(hours=24)


class AssessmentStoreProtocol(Protocol):
    def get_assessment(self, assessment_id: str) -> AssessmentRecord | None: ...

    def save_context_mirror(
        self, assessment_id: str, stored_payload: dict, updated_at: datetime
    ) -> None: ...


class CacheSource(str, Enum):
    MEMORY = "memory"
    PERSISTED = "persisted"
    GENERATED = "generated"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: InsightPayload
    diagnostics: GenerationDiagnostics | None
    expires_at: datetime
    stored_at: datetime


@dataclass(frozen=True)
class CachedInsight:
    payload: InsightPayload
    diagnostics: GenerationDiagnostics | None
    source: CacheSource


def cache_key(owner_id: str, assessment_id: str) -> str:
    return f"{owner_id}:{assessment_id}"


def _as_utc(value: datetime) -> datetime:
    # Rows written without an offset are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class MemoryTier:
    """Thread-safe map of whole entries. Entries are replaced, never mutated."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, entry: CacheEntry) -> None:
        """Store an entry and sweep out every entry already expired at its store time."""
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= entry.stored_at]
            for k in expired:
                del self._entries[k]
            self._entries[entry.key] = entry

    def pop(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class InsightCache:
    """Cache manager: memory tier, then persisted tier, then the orchestrator."""

    def __init__(
        self,
        orchestrator: InsightOrchestrator,
        store: AssessmentStoreProtocol,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] | None = None,
        memory: MemoryTier | None = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now(UTC))
        self.memory = memory or MemoryTier()
        self._inflight: dict[str, asyncio.Task] = {}

    async def get(
        self,
        owner_id: str,
        assessment_id: str,
        assessment: AssessmentRecord | None = None,
        refresh: bool = False,
    ) -> CachedInsight:
        """
        Return the payload for (owner, assessment), generating it if needed.

        Args:
            owner_id: Owner of the assessment, part of the cache key
            assessment_id: Assessment id, part of the cache key
            assessment: Already-loaded record, to skip a store read
            refresh: Skip both tiers and regenerate

        Raises:
            NotFoundError: No assessment with this id
            MissingProfileError: Regeneration needed but no profile exists
        """
        key = cache_key(owner_id, assessment_id)

        if refresh:
            self.invalidate(owner_id, assessment_id)
        else:
            entry = self.memory.get(key)
            if entry is not None and self._clock() >= entry.expires_at:
                self.memory.pop(key)
                entry = None
            if entry is not None:
                log_with_context(
                    logger, logging.DEBUG, "Context mirror cache hit",
                    assessment_id=assessment_id, tier=CacheSource.MEMORY.value,
                )
                return CachedInsight(entry.payload, entry.diagnostics, CacheSource.MEMORY)

        if assessment is None:
            assessment = self.store.get_assessment(assessment_id)
            if assessment is None:
                raise NotFoundError(f"Assessment {assessment_id} not found")

        if not refresh:
            promoted = self._promote_persisted(key, assessment)
            if promoted is not None:
                return promoted

        if assessment.context_profile is None:
            raise MissingProfileError(f"Assessment {assessment_id} has no context profile")

        task = self._inflight.get(key)
        if task is None:
            log_with_context(
                logger, logging.INFO, "Context mirror cache miss, generating",
                assessment_id=assessment_id, refresh=refresh,
            )
            task = asyncio.create_task(self._generate(key, assessment))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._release(key, t))
        else:
            log_with_context(
                logger, logging.INFO, "Joining in-flight context mirror generation",
                assessment_id=assessment_id,
            )

        # Shielded so a disconnecting caller never cancels the shared generation
        return await asyncio.shield(task)

    def invalidate(self, owner_id: str, assessment_id: str) -> None:
        """Drop the memory entry for a key. The persisted row is left alone."""
        self.memory.pop(cache_key(owner_id, assessment_id))

    def _promote_persisted(self, key: str, assessment: AssessmentRecord) -> CachedInsight | None:
        updated_at = assessment.context_mirror_updated_at
        if updated_at is None or assessment.context_mirror is None:
            return None

        updated_at = _as_utc(updated_at)
        now = self._clock()
        if now - updated_at >= self.ttl:
            log_with_context(
                logger, logging.INFO, "Persisted context mirror is stale",
                assessment_id=assessment.id, updated_at=updated_at.isoformat(),
            )
            return None

        payload = parse_stored_payload(assessment.context_mirror)
        if payload is None:
            log_with_context(
                logger, logging.WARNING, "Persisted context mirror has an outdated or invalid shape",
                assessment_id=assessment.id,
            )
            return None

        # Expiry follows the persisted age, not the promotion time
        self.memory.put(
            CacheEntry(
                key=key,
                payload=payload,
                diagnostics=None,
                expires_at=updated_at + self.ttl,
                stored_at=now,
            )
        )
        log_with_context(
            logger, logging.DEBUG, "Context mirror cache hit",
            assessment_id=assessment.id, tier=CacheSource.PERSISTED.value,
        )
        return CachedInsight(payload, None, CacheSource.PERSISTED)

    async def _generate(self, key: str, assessment: AssessmentRecord) -> CachedInsight:
        result = await self.orchestrator.run(assessment.context_profile, assessment_id=assessment.id)
        now = self._clock()

        try:
            self.store.save_context_mirror(assessment.id, to_stored_payload(result.payload), now)
        except PersistenceError as e:
            log_with_context(
                logger, logging.WARNING, f"Context mirror not persisted: {e}",
                assessment_id=assessment.id,
            )

        self.memory.put(
            CacheEntry(
                key=key,
                payload=result.payload,
                diagnostics=result.diagnostics,
                expires_at=now + self.ttl,
                stored_at=now,
            )
        )
        return CachedInsight(result.payload, result.diagnostics, CacheSource.GENERATED)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Context mirror generation failed for {key}: {task.exception()}")
