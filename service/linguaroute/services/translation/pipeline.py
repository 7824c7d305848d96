"""Request-facing orchestration above the TranslationRouter.

Adds length validation, an early glossary conflict check, the optional
translation cache and throttle, and frames router results as replies,
rewrites, drafts or tagged outcomes.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from linguaroute.core.config import Settings, get_settings
from linguaroute.core.exceptions import (
    AllProvidersFailedError,
    BudgetExceededError,
    ComplianceBlockedError,
    DraftOwnerRequiredError,
    EmptyOrOversizedTextError,
    GlossaryConflictError,
    LowConfidenceDetectionError,
)
from linguaroute.models.draft import OfflineDraft
from linguaroute.models.glossary import (
    GlossaryApplicationResult,
    GlossaryContext,
    GlossaryDecision,
)
from linguaroute.models.outcomes import (
    BudgetExceeded,
    ComplianceBlocked,
    DraftQueued,
    LanguageSelectionRequired,
    NeedsGlossaryResolution,
    ProvidersUnavailable,
    TranslationOutcome,
    TranslationSucceeded,
)
from linguaroute.models.translation import (
    DetectionResult,
    ReplyPayload,
    RewriteRequest,
    RewriteResult,
    RoutedTranslation,
    TranslationRequest,
)
from linguaroute.services.translation.audit import AuditLogger
from linguaroute.services.translation.budget_guard import BudgetGuard
from linguaroute.services.translation.cache import TranslationCache
from linguaroute.services.translation.compliance_gateway import (
    ComplianceGateway,
    CompliancePolicy,
)
from linguaroute.services.translation.glossary_manager import GlossaryManager
from linguaroute.services.translation.language_detector import LanguageDetector
from linguaroute.services.translation.providers import ProviderFactory
from linguaroute.services.translation.router import TranslationRouter
from linguaroute.services.translation.throttle import TranslationThrottle

if TYPE_CHECKING:
    from linguaroute.services.drafts.draft_store import DraftStore

logger = logging.getLogger(__name__)

MAX_DRAFT_OWNER_LENGTH = 128


class TranslationPipeline:
    """Entry point used by the chat surface and the offline replay engine."""

    def __init__(
        self,
        router: TranslationRouter,
        glossary_manager: Optional[GlossaryManager] = None,
        draft_store: Optional["DraftStore"] = None,
        max_characters: int = 50000,
        cache: Optional[TranslationCache] = None,
        throttle: Optional[TranslationThrottle] = None,
    ):
        self.router = router
        self.glossary = glossary_manager if glossary_manager is not None else router.glossary
        self.drafts = draft_store
        self.max_characters = max_characters
        self.cache = cache
        self.throttle = throttle

    def _validate(self, text: Optional[str]) -> str:
        stripped = (text or "").strip()
        if not stripped or len(stripped) > self.max_characters:
            raise EmptyOrOversizedTextError(len(stripped), self.max_characters)
        return stripped

    async def translate_text(self, request: TranslationRequest) -> RoutedTranslation:
        """Translate a request, raising on any non-success outcome.

        Raises:
            EmptyOrOversizedTextError: Before any provider is contacted
            GlossaryConflictError: If source terms need caller decisions
            RateLimitExceededError: If the tenant exceeded its allowance
            ComplianceBlockedError, BudgetExceededError, AllProvidersFailedError,
            LowConfidenceDetectionError: As raised by the router
        """
        text = self._validate(request.text)

        if self.glossary is not None and request.use_glossary:
            # Surface conflicts before any spend
            precheck = self.glossary.apply_glossary(
                text, request.glossary_context, request.glossary_decisions
            )
            if precheck.requires_resolution:
                raise GlossaryConflictError(precheck)

        if self.cache is not None:
            cached = self.cache.get(request)
            if cached is not None:
                logger.debug("Serving translation from cache")
                return cached

        if self.throttle is not None:
            async with self.throttle.acquire(request.tenant_id):
                result = await self.router.translate(request)
        else:
            result = await self.router.translate(request)

        if self.cache is not None:
            self.cache.set(request, result)
        return result

    async def translate(
        self,
        request: TranslationRequest,
        queue_when_unavailable: bool = False,
    ) -> TranslationOutcome:
        """Translate a request and report the outcome as a tagged variant.

        Invalid input and rate limiting still raise, since the caller has to
        change the request rather than react to a routing state.

        Args:
            request: Translation request
            queue_when_unavailable: Save an offline draft when every provider failed

        Returns:
            One of the TranslationOutcome variants
        """
        try:
            translation = await self.translate_text(request)
        except ComplianceBlockedError as e:
            return ComplianceBlocked(evaluations=e.evaluations)
        except BudgetExceededError as e:
            return BudgetExceeded(remaining_usd=e.remaining_usd, requested_usd=e.requested_usd)
        except GlossaryConflictError as e:
            return NeedsGlossaryResolution(conflicts=e.result.unresolved, text=e.result.text)
        except LowConfidenceDetectionError as e:
            return LanguageSelectionRequired(
                detected_language=e.detection.language,
                confidence=e.detection.confidence,
                candidates=list(e.detection.candidates),
                threshold=e.threshold,
            )
        except AllProvidersFailedError as e:
            if queue_when_unavailable and self.drafts is not None:
                try:
                    draft = self.save_draft(request)
                except DraftOwnerRequiredError:
                    logger.warning("Providers unavailable and request has no user; not queued")
                    return ProvidersUnavailable(failures=e.failures)
                logger.info(f"Providers unavailable, queued offline draft {draft.id}")
                return DraftQueued(draft=draft, failures=e.failures)
            return ProvidersUnavailable(failures=e.failures)
        return TranslationSucceeded(translation=translation)

    async def translate_and_reply(self, request: TranslationRequest) -> ReplyPayload:
        """Translate and attach the structured fields a reply card needs."""
        translation = await self.translate_text(request)
        card_data: Dict[str, Any] = {
            "translated_text": translation.text,
            "original_text": request.text,
            "source_language": translation.detected_language or translation.source_language,
            "target_language": translation.target_language,
            "additional_translations": dict(translation.additional_translations),
            "model_id": translation.model_id,
            "cost_usd": translation.cost_usd,
            "latency_ms": translation.latency_ms,
            "glossary_terms": [
                {"source": match.source, "target": match.applied_target}
                for match in translation.glossary_matches
                if match.replaced
            ],
            "metadata": dict(request.metadata),
        }
        return ReplyPayload(translation=translation, card_data=card_data)

    async def rewrite(self, request: RewriteRequest) -> RewriteResult:
        self._validate(request.text)
        if self.throttle is not None:
            async with self.throttle.acquire(request.tenant_id):
                return await self.router.rewrite(request)
        return await self.router.rewrite(request)

    def save_draft(self, request: TranslationRequest) -> OfflineDraft:
        """Queue a request for offline replay.

        Raises:
            EmptyOrOversizedTextError: If the text is empty or too long
            DraftOwnerRequiredError: If the request carries no usable user_id
            RuntimeError: If no draft store is configured
        """
        if self.drafts is None:
            raise RuntimeError("No draft store configured")
        text = self._validate(request.text)
        if not request.user_id or len(request.user_id) > MAX_DRAFT_OWNER_LENGTH:
            raise DraftOwnerRequiredError(MAX_DRAFT_OWNER_LENGTH)
        draft = OfflineDraft(
            user_id=request.user_id,
            tenant_id=request.tenant_id,
            channel_id=request.channel_id,
            original_text=text,
            source_language=request.declared_source_language,
            target_language=request.target_language,
            tone=request.tone,
            metadata=dict(request.metadata),
        )
        return self.drafts.save(request.user_id, draft)

    def apply_glossary(
        self,
        text: str,
        context: Optional[GlossaryContext] = None,
        decisions: Optional[Mapping[str, GlossaryDecision]] = None,
    ) -> GlossaryApplicationResult:
        if self.glossary is None:
            return GlossaryApplicationResult(text=text)
        return self.glossary.apply_glossary(text, context, decisions)

    async def detect_language(self, text: str) -> DetectionResult:
        return await self.router.detect_language(text)


def create_pipeline(
    settings: Optional[Settings] = None,
    llm_clients: Optional[Mapping[str, Any]] = None,
    draft_store: Optional["DraftStore"] = None,
    glossary_manager: Optional[GlossaryManager] = None,
) -> TranslationPipeline:
    """Wire a TranslationPipeline from settings.

    Args:
        settings: Settings to use (defaults to get_settings())
        llm_clients: Model clients keyed by provider id
        draft_store: Store for offline drafts
        glossary_manager: Pre-loaded glossary (an empty one is created otherwise)

    Returns:
        Fully wired pipeline
    """
    settings = settings or get_settings()
    providers = ProviderFactory.create(settings, llm_clients)
    glossary = glossary_manager or GlossaryManager(hierarchy=settings.GLOSSARY_HIERARCHY)
    router = TranslationRouter(
        providers=providers,
        budget_guard=BudgetGuard(settings.DAILY_BUDGET_USD),
        compliance_gateway=ComplianceGateway(CompliancePolicy.from_settings(settings)),
        glossary_manager=glossary,
        detector=LanguageDetector(providers, local_backend=settings.LID_BACKEND),
        audit_sink=AuditLogger(fingerprint_only=settings.AUDIT_STORE_FINGERPRINT_ONLY),
        retry_count=settings.ROUTER_RETRY_COUNT,
        backoff_ms=settings.ROUTER_BACKOFF_MS,
        enforce_latency_timeout=settings.ENFORCE_PROVIDER_LATENCY_TIMEOUT,
        min_detection_confidence=settings.DETECTION_MIN_CONFIDENCE,
    )

    cache = None
    if settings.TRANSLATION_CACHE_ENABLED:
        settings.ensure_data_dirs()
        cache = TranslationCache(
            db_path=settings.TRANSLATION_CACHE_DB_PATH,
            l1_size=settings.TRANSLATION_CACHE_L1_SIZE,
            ttl_seconds=settings.TRANSLATION_CACHE_TTL_SECONDS,
        )

    return TranslationPipeline(
        router=router,
        glossary_manager=glossary,
        draft_store=draft_store,
        max_characters=settings.MAX_CHARACTERS_PER_REQUEST,
        cache=cache,
        throttle=TranslationThrottle(
            max_concurrent=settings.MAX_CONCURRENT_TRANSLATIONS,
            requests_per_minute=settings.REQUESTS_PER_MINUTE_PER_TENANT,
        ),
    )
