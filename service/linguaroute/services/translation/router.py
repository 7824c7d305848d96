"""Admission-checked, failover-capable translation routing.

Per request the router:
1. Takes the declared source language, or asks the detector
2. Walks the providers in configured order. For each one it checks
   compliance (a blocked provider is skipped), invokes it with retries,
   charges the budget, applies the glossary and records an audit entry

Providers are tried one at a time so failover order stays deterministic and
every successful request is charged exactly once.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from linguaroute.core.config import Settings
from linguaroute.core.exceptions import (
    AllProvidersFailedError,
    BudgetExceededError,
    ComplianceBlockedError,
    GlossaryConflictError,
    LowConfidenceDetectionError,
    ProviderTimeoutError,
)
from linguaroute.metrics.translation_metrics import (
    provider_attempts_total,
    route_duration_seconds,
    route_results_total,
)
from linguaroute.models.glossary import GlossaryMatch
from linguaroute.models.translation import (
    AuditRecord,
    ComplianceEvaluation,
    DetectionResult,
    ProviderFailure,
    ProviderRequest,
    ProviderTranslation,
    RewriteRequest,
    RewriteResult,
    RoutedTranslation,
    TranslationRequest,
)
from linguaroute.services.translation.audit import AuditSink, fingerprint
from linguaroute.services.translation.budget_guard import BudgetGuard
from linguaroute.services.translation.compliance_gateway import ComplianceGateway
from linguaroute.services.translation.glossary_manager import GlossaryManager
from linguaroute.services.translation.language_detector import LanguageDetector
from linguaroute.services.translation.providers import (
    ProviderProfile,
    TranslationProvider,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Outcomes that another attempt against the same provider cannot change
_NON_RETRYABLE = (ComplianceBlockedError, BudgetExceededError, GlossaryConflictError)


def is_transient(error: BaseException) -> bool:
    if not isinstance(error, Exception) or isinstance(error, _NON_RETRYABLE):
        return False
    return getattr(error, "retryable", True)


def error_code_of(error: BaseException) -> str:
    return getattr(error, "error_code", None) or type(error).__name__


@dataclass(frozen=True)
class RoutingWeights:
    quality: float = 0.6
    latency: float = 0.2
    cost: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoutingWeights":
        return cls(
            quality=settings.ROUTING_QUALITY_WEIGHT,
            latency=settings.ROUTING_LATENCY_WEIGHT,
            cost=settings.ROUTING_COST_WEIGHT,
        )


@dataclass(frozen=True)
class CandidateScore:
    provider_id: str
    weighted_score: float
    quality: float
    latency_score: float
    cost_score: float


class TranslationRouter:
    """Routes translation and rewrite requests across a fixed failover chain."""

    def __init__(
        self,
        providers: Sequence[TranslationProvider],
        budget_guard: BudgetGuard,
        compliance_gateway: ComplianceGateway,
        glossary_manager: Optional[GlossaryManager] = None,
        detector: Optional[LanguageDetector] = None,
        audit_sink: Optional[AuditSink] = None,
        retry_count: int = 0,
        backoff_ms: int = 120,
        enforce_latency_timeout: bool = True,
        min_detection_confidence: float = 0.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the router.

        Args:
            providers: Providers in failover order
            budget_guard: Daily spend ceiling, charged once per success
            compliance_gateway: Policy checked before each provider is contacted
            glossary_manager: Glossary applied to provider output
            detector: Source language detector (defaults to one over `providers`)
            audit_sink: Receives one record per successful translation
            retry_count: Retries per provider after the first attempt
            backoff_ms: Fixed delay between retries
            enforce_latency_timeout: Bound each attempt by the provider latency target
            min_detection_confidence: Reject detections below this confidence (0 disables)
            sleep: Async sleep used between retries
        """
        if retry_count < 0:
            raise ValueError("retry_count must be non-negative")
        self.providers = list(providers)
        self.budget = budget_guard
        self.compliance = compliance_gateway
        self.glossary = glossary_manager
        self.detector = detector or LanguageDetector(providers=self.providers)
        self.audit = audit_sink
        self.retry_count = retry_count
        self.backoff_ms = max(0, backoff_ms)
        self.enforce_latency_timeout = enforce_latency_timeout
        self.min_detection_confidence = min_detection_confidence
        self._sleep = sleep or asyncio.sleep

    # Detection

    async def detect_language(self, text: str) -> DetectionResult:
        return await self.detector.detect(text)

    async def _resolve_source(self, request: TranslationRequest) -> DetectionResult:
        declared = request.declared_source_language
        if declared:
            return DetectionResult(
                language=declared,
                confidence=1.0,
                candidates=[(declared, 1.0)],
                backend="declared",
            )
        detection = await self.detector.detect(request.text)
        if (
            self.min_detection_confidence
            and detection.confidence < self.min_detection_confidence
        ):
            raise LowConfidenceDetectionError(detection, self.min_detection_confidence)
        return detection

    # Invocation

    async def _call_once(
        self, provider: TranslationProvider, call: Callable[[], Awaitable[T]]
    ) -> T:
        timeout_ms = provider.profile.latency_target_ms
        try:
            if self.enforce_latency_timeout and timeout_ms > 0:
                result = await asyncio.wait_for(call(), timeout=timeout_ms / 1000)
            else:
                result = await call()
        except asyncio.TimeoutError as e:
            provider_attempts_total.labels(provider=provider.id, outcome="timeout").inc()
            raise ProviderTimeoutError(provider.id, timeout_ms) from e
        except Exception:
            provider_attempts_total.labels(provider=provider.id, outcome="failure").inc()
            raise
        provider_attempts_total.labels(provider=provider.id, outcome="success").inc()
        return result

    async def _invoke_with_retry(
        self, provider: TranslationProvider, call: Callable[[], Awaitable[T]]
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_count + 1),
            wait=wait_fixed(self.backoff_ms / 1000),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._call_once(provider, call)
        return result

    async def _failover(
        self,
        text: str,
        target_language: Optional[str],
        call: Callable[[TranslationProvider], Awaitable[T]],
        cost_multiplier: int = 1,
    ) -> Tuple[TranslationProvider, T, float]:
        """Run `call` against each admissible provider until one succeeds.

        Returns:
            The provider that succeeded, its result and the charged cost

        Raises:
            BudgetExceededError: If the successful call cannot be paid for
            ComplianceBlockedError: If every provider was blocked by compliance
            AllProvidersFailedError: Otherwise, when no provider succeeded
        """
        failures: List[ProviderFailure] = []
        blocked: List[ComplianceEvaluation] = []

        for provider in self.providers:
            try:
                self.compliance.assert_can_route(text, provider.profile, target_language)
            except ComplianceBlockedError as e:
                blocked.extend(e.evaluations)
                failures.append(
                    ProviderFailure(
                        provider_id=provider.id,
                        code=e.error_code,
                        message=str(e),
                        compliance_blocked=True,
                    )
                )
                provider_attempts_total.labels(provider=provider.id, outcome="blocked").inc()
                continue

            try:
                result = await self._invoke_with_retry(provider, lambda: call(provider))
            except Exception as e:
                logger.warning(
                    f"Provider {provider.id} failed after {self.retry_count + 1} attempt(s): "
                    f"{error_code_of(e)}"
                )
                failures.append(
                    ProviderFailure(
                        provider_id=provider.id, code=error_code_of(e), message=str(e)
                    )
                )
                continue

            cost = provider.profile.cost_per_char_usd * len(text) * cost_multiplier
            self.budget.charge(cost)
            return provider, result, cost

        if failures and all(failure.compliance_blocked for failure in failures):
            raise ComplianceBlockedError(blocked)
        raise AllProvidersFailedError(failures)

    # Operations

    def _apply_glossary(
        self, text: str, request: TranslationRequest
    ) -> Tuple[str, List[GlossaryMatch]]:
        if self.glossary is None or not request.use_glossary:
            return text, []
        applied = self.glossary.apply_glossary(
            text, request.glossary_context, request.glossary_decisions
        )
        if applied.requires_resolution:
            raise GlossaryConflictError(applied)
        return applied.text, applied.matches

    async def translate(self, request: TranslationRequest) -> RoutedTranslation:
        """Translate a request through the failover chain.

        Raises:
            LowConfidenceDetectionError: If detection falls below the configured minimum
            ComplianceBlockedError: If every provider was blocked by compliance
            BudgetExceededError: If the translation cannot be paid for
            GlossaryConflictError: If the output has unresolved glossary conflicts
            AllProvidersFailedError: If no provider produced a translation
        """
        start = time.perf_counter()
        text = request.text.strip()
        try:
            detection = await self._resolve_source(request)
            targets = request.target_languages

            async def translate_all(
                provider: TranslationProvider,
            ) -> Dict[str, ProviderTranslation]:
                outputs: Dict[str, ProviderTranslation] = {}
                for target in targets:
                    provider_request = ProviderRequest(
                        text=text,
                        source_language=detection.language,
                        target_language=target,
                        tone=request.tone,
                        tenant_id=request.tenant_id,
                        user_id=request.user_id,
                    )
                    outputs[target] = await provider.translate(provider_request)
                return outputs

            provider, outputs, cost = await self._failover(
                text,
                request.target_language,
                translate_all,
                cost_multiplier=len(targets),
            )
            primary = outputs[request.target_language]
            final_text, matches = self._apply_glossary(primary.text, request)
            additional = {
                target: self._apply_glossary(output.text, request)[0]
                for target, output in outputs.items()
                if target != request.target_language
            }
        except Exception as e:
            route_results_total.labels(operation="translate", outcome=error_code_of(e)).inc()
            raise

        latency_ms = (
            primary.latency_ms
            if primary.latency_ms is not None
            else int((time.perf_counter() - start) * 1000)
        )
        detected_language = primary.detected_language or detection.language
        model_id = primary.model_id or provider.id

        if self.audit is not None:
            self.audit.record(
                AuditRecord(
                    user_id=request.user_id,
                    tenant_id=request.tenant_id,
                    source_fingerprint=fingerprint(text),
                    translated_text=final_text,
                    model_id=model_id,
                    latency_ms=latency_ms,
                    metadata={
                        **request.metadata,
                        "detected_language": detected_language,
                        "target_language": request.target_language,
                        "cost_usd": cost,
                    },
                    source_text=text,
                )
            )

        route_results_total.labels(operation="translate", outcome="success").inc()
        route_duration_seconds.labels(operation="translate").observe(
            time.perf_counter() - start
        )
        logger.info(
            f"Routed translation via {model_id} ({detected_language} -> "
            f"{request.target_language}, {latency_ms} ms, {cost:.6f} USD)"
        )
        return RoutedTranslation(
            text=final_text,
            raw_text=primary.text,
            source_language=request.declared_source_language or detection.language,
            detected_language=detected_language,
            target_language=request.target_language,
            model_id=model_id,
            confidence=primary.confidence,
            latency_ms=latency_ms,
            cost_usd=cost,
            additional_translations=additional,
            glossary_matches=matches,
        )

    async def rewrite(self, request: RewriteRequest) -> RewriteResult:
        """Restate text in another tone through the same admission checks."""
        start = time.perf_counter()
        text = request.text.strip()
        try:
            provider, rewritten, cost = await self._failover(
                text, None, lambda p: p.rewrite(text, request.tone)
            )
        except Exception as e:
            route_results_total.labels(operation="rewrite", outcome=error_code_of(e)).inc()
            raise

        latency_ms = int((time.perf_counter() - start) * 1000)
        route_results_total.labels(operation="rewrite", outcome="success").inc()
        route_duration_seconds.labels(operation="rewrite").observe(latency_ms / 1000)
        if self.audit is not None:
            self.audit.record(
                AuditRecord(
                    user_id=request.user_id,
                    tenant_id=request.tenant_id,
                    source_fingerprint=fingerprint(text),
                    translated_text=rewritten,
                    model_id=provider.id,
                    latency_ms=latency_ms,
                    metadata={**request.metadata, "tone": request.tone, "cost_usd": cost},
                    source_text=text,
                )
            )
        return RewriteResult(
            text=rewritten, model_id=provider.id, cost_usd=cost, latency_ms=latency_ms
        )

    # Offline ranking

    @staticmethod
    def compute_score(
        result: ProviderTranslation, profile: ProviderProfile
    ) -> Tuple[float, float, float]:
        """Return (quality, latency_score, cost_score) for one provider result."""
        quality = result.confidence if result.confidence is not None else 0.5
        latency = (
            result.latency_ms
            if result.latency_ms is not None
            else profile.latency_target_ms
        )
        latency_score = profile.latency_target_ms / max(latency, 1)
        cost_score = 1 / profile.cost_per_char_usd if profile.cost_per_char_usd > 0 else 0.0
        return quality, latency_score, cost_score

    @staticmethod
    def rank_candidates(
        results: Sequence[Tuple[ProviderProfile, ProviderTranslation]],
        weights: Optional[RoutingWeights] = None,
    ) -> List[CandidateScore]:
        """Score provider results for reporting, best first."""
        weights = weights or RoutingWeights()
        scores = []
        for profile, result in results:
            quality, latency_score, cost_score = TranslationRouter.compute_score(
                result, profile
            )
            scores.append(
                CandidateScore(
                    provider_id=profile.id,
                    weighted_score=weights.quality * quality
                    + weights.latency * latency_score
                    + weights.cost * cost_score,
                    quality=quality,
                    latency_score=latency_score,
                    cost_score=cost_score,
                )
            )
        return sorted(scores, key=lambda s: s.weighted_score, reverse=True)
