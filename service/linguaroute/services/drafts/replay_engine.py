"""Background replay of offline drafts.

The engine polls the draft store on a fixed interval, claims each eligible
draft with a status compare-and-set, and runs it through the translation
pipeline. Failures are retried with a backoff that depends on the error;
terminal outcomes are reported to the notifier exactly once.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Protocol

from linguaroute.core.config import Settings
from linguaroute.core.exceptions import (
    BudgetExceededError,
    ComplianceBlockedError,
    DraftPermanentFailure,
)
from linguaroute.metrics.translation_metrics import draft_replay_total
from linguaroute.models.draft import DraftStatus, OfflineDraft
from linguaroute.models.translation import RoutedTranslation, TranslationRequest
from linguaroute.services.drafts.draft_store import DraftStore, InMemoryDraftStore
from linguaroute.services.drafts.sqlite_draft_store import SQLiteDraftStore
from linguaroute.services.translation.router import error_code_of

if TYPE_CHECKING:
    from linguaroute.services.translation.pipeline import TranslationPipeline

logger = logging.getLogger(__name__)

REPLAY_ORIGIN = "offline_replay"
BUDGET_BACKOFF_MS = 15_000
COMPLIANCE_BACKOFF_MS = 30_000
MAX_BACKOFF_MS = 60_000

BackoffStrategy = Callable[[int, BaseException], float]


class DraftNotifier(Protocol):
    """Receives terminal draft outcomes. Either method may be a coroutine."""

    def notify_draft_completed(
        self, draft: OfflineDraft, translation: RoutedTranslation
    ) -> Any: ...

    def notify_draft_failed(self, draft: OfflineDraft, failure: DraftPermanentFailure) -> Any: ...


def exponential_backoff_ms(attempt: int) -> float:
    return min(1000 * 2 ** max(attempt - 1, 0), MAX_BACKOFF_MS)


def default_backoff_ms(attempt: int, error: BaseException) -> float:
    """Delay before the next attempt of a draft.

    Budget and compliance failures wait a fixed interval since they depend on
    the spend window or policy rather than on provider health.
    """
    if isinstance(error, BudgetExceededError):
        return BUDGET_BACKOFF_MS
    if isinstance(error, ComplianceBlockedError):
        return COMPLIANCE_BACKOFF_MS
    return exponential_backoff_ms(attempt)


def draft_to_request(draft: OfflineDraft) -> TranslationRequest:
    return TranslationRequest(
        text=draft.original_text,
        source_language=draft.source_language,
        target_language=draft.target_language,
        tenant_id=draft.tenant_id,
        user_id=draft.user_id,
        channel_id=draft.channel_id,
        tone=draft.tone,
        metadata={**draft.metadata, "origin": REPLAY_ORIGIN, "draft_id": draft.id},
    )


class DraftReplayEngine:
    """Periodic, single-flight processor for pending offline drafts."""

    def __init__(
        self,
        store: DraftStore,
        pipeline: "TranslationPipeline",
        notifier: Optional[DraftNotifier] = None,
        interval_seconds: float = 5.0,
        max_attempts: int = 3,
        batch_size: int = 10,
        backoff_strategy: Optional[BackoffStrategy] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.pipeline = pipeline
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self.backoff_strategy = backoff_strategy
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False
        self._cycle_lock = asyncio.Lock()
        self._notifications: set[asyncio.Task[Any]] = set()
        self.stats: Dict[str, int] = {
            "cycles": 0,
            "skipped_cycles": 0,
            "claimed": 0,
            "succeeded": 0,
            "retried": 0,
            "failed": 0,
            "lost": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Draft replay engine started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Draft replay engine stopped")
        if self._notifications:
            pending = list(self._notifications)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._notifications.clear()
            logger.info(f"Cancelled {len(pending)} pending draft notification(s)")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Draft replay cycle failed; continuing")
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> int:
        """Run one replay cycle unless another one is still in progress.

        Returns:
            Number of drafts this cycle claimed
        """
        if self._cycle_lock.locked():
            self.stats["skipped_cycles"] += 1
            logger.debug("Previous replay cycle still running; skipping")
            return 0
        async with self._cycle_lock:
            return await self.process_cycle()

    async def process_cycle(self) -> int:
        self.stats["cycles"] += 1
        try:
            self.store.prune_expired()
        except Exception as e:
            logger.warning(f"Failed to prune expired drafts: {e}")

        processed = 0
        for draft in self.store.list_pending(limit=self.batch_size or None):
            if await self.process_draft(draft):
                processed += 1
        return processed

    def _now(self) -> datetime:
        try:
            return self.store.clock()
        except Exception as e:
            logger.warning(f"Failed to read draft store clock: {e}")
            return datetime.now(timezone.utc)

    def _backoff_ms(self, attempt: int, error: BaseException) -> float:
        if self.backoff_strategy is not None:
            try:
                return float(self.backoff_strategy(attempt, error))
            except Exception as e:
                logger.warning(f"Backoff strategy failed, using default: {e}")
        return default_backoff_ms(attempt, error)

    async def process_draft(self, draft: OfflineDraft) -> bool:
        """Claim and replay one draft.

        Returns:
            False if another worker claimed the draft first
        """
        attempts = draft.attempts + 1
        claimed = self.store.update_if_status(
            draft.user_id,
            draft.id,
            DraftStatus.PENDING,
            {"status": DraftStatus.PROCESSING, "attempts": attempts, "error_reason": None},
        )
        if not claimed:
            logger.debug(f"Draft {draft.id} already claimed, skipping")
            return False
        self.stats["claimed"] += 1

        try:
            translation = await self.pipeline.translate_text(draft_to_request(draft))
        except asyncio.CancelledError:
            # Hand the draft back so the next run picks it up
            self.store.update_if_status(
                draft.user_id,
                draft.id,
                DraftStatus.PROCESSING,
                {"status": DraftStatus.PENDING, "attempts": draft.attempts},
            )
            raise
        except Exception as e:
            self._record_failure(draft, attempts, e)
            return True

        now = self._now()
        stored = self.store.update_if_status(
            draft.user_id,
            draft.id,
            DraftStatus.PROCESSING,
            {
                "status": DraftStatus.SUCCEEDED,
                "result_text": translation.text,
                "completed_at": now,
                "attempts": attempts,
                "error_reason": None,
                "next_attempt_at": None,
                "last_error_code": None,
            },
        )
        if not stored:
            self._record_lost(draft)
            return True
        self.stats["succeeded"] += 1
        draft_replay_total.labels(outcome="succeeded").inc()
        logger.info(f"Offline draft {draft.id} replayed after {attempts} attempt(s)")

        completed = draft.model_copy(
            update={
                "status": DraftStatus.SUCCEEDED,
                "attempts": attempts,
                "result_text": translation.text,
                "completed_at": now,
                "next_attempt_at": None,
            }
        )
        self._notify("notify_draft_completed", completed, translation)
        return True

    def _record_lost(self, draft: OfflineDraft) -> None:
        self.stats["lost"] += 1
        draft_replay_total.labels(outcome="lost").inc()
        logger.warning(f"Offline draft {draft.id} was removed while replaying; outcome dropped")

    def _record_failure(self, draft: OfflineDraft, attempts: int, error: Exception) -> None:
        now = self._now()
        reason = getattr(error, "detail", None) or str(error) or type(error).__name__
        code = error_code_of(error)
        retryable = getattr(error, "retryable", True)

        if retryable and attempts < self.max_attempts:
            delay_ms = self._backoff_ms(attempts, error)
            stored = self.store.update_if_status(
                draft.user_id,
                draft.id,
                DraftStatus.PROCESSING,
                {
                    "status": DraftStatus.PENDING,
                    "attempts": attempts,
                    "error_reason": reason,
                    "last_error_code": code,
                    "next_attempt_at": now + timedelta(milliseconds=delay_ms),
                },
            )
            if not stored:
                self._record_lost(draft)
                return
            self.stats["retried"] += 1
            draft_replay_total.labels(outcome="retry").inc()
            logger.info(
                f"Offline draft {draft.id} attempt {attempts} failed ({code}); "
                f"retrying in {delay_ms:.0f}ms"
            )
            return

        stored = self.store.update_if_status(
            draft.user_id,
            draft.id,
            DraftStatus.PROCESSING,
            {
                "status": DraftStatus.FAILED,
                "attempts": attempts,
                "error_reason": reason,
                "last_error_code": code,
                "completed_at": now,
                "next_attempt_at": None,
            },
        )
        if not stored:
            self._record_lost(draft)
            return
        self.stats["failed"] += 1
        draft_replay_total.labels(outcome="failed").inc()
        logger.warning(
            f"Offline draft {draft.id} permanently failed after {attempts} attempt(s): {reason}"
        )

        failed = draft.model_copy(
            update={
                "status": DraftStatus.FAILED,
                "attempts": attempts,
                "error_reason": reason,
                "last_error_code": code,
                "completed_at": now,
                "next_attempt_at": None,
            }
        )
        self._notify(
            "notify_draft_failed",
            failed,
            DraftPermanentFailure(draft.id, attempts, reason, code),
        )

    def _notify(self, method: str, *args: Any) -> None:
        """Call a notifier hook without letting it affect draft state."""
        callback = getattr(self.notifier, method, None)
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception:
            logger.exception(f"Draft notifier {method} failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._notifications.add(task)
            task.add_done_callback(self._notification_done)

    def _notification_done(self, task: "asyncio.Future[Any]") -> None:
        self._notifications.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Draft notifier callback failed: {error}")


def create_draft_store(settings: Settings) -> DraftStore:
    """Build the configured draft store backend."""
    if settings.DRAFT_STORE_BACKEND == "sqlite":
        settings.ensure_data_dirs()
        return SQLiteDraftStore(
            db_path=settings.DRAFT_DB_PATH,
            max_entries_per_user=settings.DRAFT_MAX_ENTRIES_PER_USER,
            retention_hours=settings.DRAFT_RETENTION_HOURS,
        )
    return InMemoryDraftStore(
        max_entries_per_user=settings.DRAFT_MAX_ENTRIES_PER_USER,
        retention_hours=settings.DRAFT_RETENTION_HOURS,
    )


def create_replay_engine(
    settings: Settings,
    store: DraftStore,
    pipeline: "TranslationPipeline",
    notifier: Optional[DraftNotifier] = None,
) -> DraftReplayEngine:
    return DraftReplayEngine(
        store=store,
        pipeline=pipeline,
        notifier=notifier,
        interval_seconds=settings.DRAFT_REPLAY_INTERVAL_SECONDS,
        max_attempts=settings.DRAFT_REPLAY_MAX_ATTEMPTS,
        batch_size=settings.DRAFT_REPLAY_BATCH_SIZE,
    )
