"""Tests for the failover router: compliance skipping, retries, budget and audit."""

import pytest
from linguaroute.core.exceptions import (
    AllProvidersFailedError,
    BudgetExceededError,
    ComplianceBlockedError,
    EmptyOrOversizedTextError,
    GlossaryConflictError,
    LowConfidenceDetectionError,
    ProviderTransientError,
)
from linguaroute.models.glossary import GlossaryEntry, GlossaryScope
from linguaroute.models.translation import (
    ProviderTranslation,
    RewriteRequest,
    TranslationRequest,
)
from linguaroute.services.translation.audit import AuditLogger, fingerprint
from linguaroute.services.translation.compliance_gateway import ComplianceGateway
from linguaroute.services.translation.language_detector import LanguageDetector
from linguaroute.services.translation.providers import MockModelProvider, ProviderProfile
from linguaroute.services.translation.router import (
    RoutingWeights,
    TranslationRouter,
    is_transient,
)


def provider(provider_id, regions=("eu",), cost=0.01, latency_target_ms=1000, **kwargs):
    profile = ProviderProfile(
        id=provider_id,
        cost_per_char_usd=cost,
        latency_target_ms=latency_target_ms,
        regions=regions,
        certifications=("SOC2",),
    )
    return MockModelProvider(profile, **kwargs)


def request(text="Hello", **kwargs):
    kwargs.setdefault("source_language", "en")
    kwargs.setdefault("tenant_id", "acme")
    kwargs.setdefault("user_id", "u1")
    return TranslationRequest(text=text, **kwargs)


@pytest.fixture
def gateway(eu_policy):
    return ComplianceGateway(eu_policy)


class TestFailover:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skips_blocked_and_retries_transient(self, make_router, gateway):
        blocked = provider("A", regions=("us",))
        flaky = provider("B", failures=2)
        spare = provider("C")
        router = make_router([blocked, flaky, spare], gateway=gateway, retry_count=2)

        result = await router.translate(request())

        assert result.text == "[B] Hello"
        assert result.model_id == "B"
        assert blocked.calls == 0
        assert flaky.calls == 3
        assert spare.calls == 0
        assert result.cost_usd == pytest.approx(0.05)
        assert router.budget.spent_usd == pytest.approx(0.05)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhausted_retries_move_to_next_provider(self, make_router):
        flaky = provider("A", failures=5)
        spare = provider("B")
        router = make_router([flaky, spare], retry_count=1)

        result = await router.translate(request())

        assert flaky.calls == 2
        assert result.model_id == "B"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_all_blocked_raises_compliance_error(self, make_router, gateway):
        router = make_router(
            [provider("A", regions=("us",)), provider("B", regions=("onprem",))],
            gateway=gateway,
        )

        with pytest.raises(ComplianceBlockedError) as exc_info:
            await router.translate(request())

        assert [e.provider_id for e in exc_info.value.evaluations] == ["A", "B"]
        assert router.budget.spent_usd == 0.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_banned_phrase_blocks_every_provider(self, make_router, gateway):
        router = make_router([provider("A"), provider("B")], gateway=gateway)

        with pytest.raises(ComplianceBlockedError) as exc_info:
            await router.translate(request("This memo is Internal Use Only"))

        assert all(
            e.banned_phrases == ["Internal Use Only"] for e in exc_info.value.evaluations
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_all_failures_raise_with_every_reason(self, make_router, gateway):
        router = make_router(
            [
                provider("A", regions=("us",)),
                provider("B", failures=1, error_code="RATE_LIMITED"),
                provider("C", failures=1),
            ],
            gateway=gateway,
        )

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.translate(request())

        failures = exc_info.value.failures
        assert [(f.provider_id, f.code, f.compliance_blocked) for f in failures] == [
            ("A", "COMPLIANCE_BLOCKED", True),
            ("B", "RATE_LIMITED", False),
            ("C", "MODEL_FAILURE", False),
        ]
        assert exc_info.value.error_code == "ROUTER_NO_SUCCESS"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_providers(self, make_router):
        with pytest.raises(AllProvidersFailedError):
            await make_router([]).translate(request())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self, make_router):
        slow = provider("slow", latency_target_ms=20, latency_ms=500)
        fast = provider("fast")
        router = make_router([slow, fast])

        result = await router.translate(request())

        assert result.model_id == "fast"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_can_be_disabled(self, make_router):
        slow = provider("slow", latency_target_ms=5, latency_ms=30)
        router = make_router([slow], enforce_latency_timeout=False)

        result = await router.translate(request())

        assert result.model_id == "slow"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_retryable_errors_are_not_retried(self, make_router):
        broken = provider("A", error=EmptyOrOversizedTextError(0, 10))
        router = make_router([broken, provider("B")], retry_count=3)

        result = await router.translate(request())

        assert broken.calls == 1
        assert result.model_id == "B"


class TestBudget:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_budget_error_surfaces_without_failover(self, make_router):
        first = provider("A")
        second = provider("B")
        router = make_router([first, second], budget=0.01)

        with pytest.raises(BudgetExceededError) as exc_info:
            await router.translate(request())

        assert exc_info.value.requested_usd == pytest.approx(0.05)
        assert second.calls == 0
        assert router.budget.spent_usd == 0.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_additional_targets_share_provider_and_charge(self, make_router):
        main = provider("A")
        router = make_router([main])

        result = await router.translate(
            request(target_language="ja", additional_target_languages=["zh", "ja", "zh"])
        )

        assert [r.target_language for r in main.requests] == ["ja", "zh"]
        assert result.additional_translations == {"zh": "[A] Hello"}
        assert result.cost_usd == pytest.approx(0.10)


class TestSourceLanguage:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_declared_source_skips_detection(self, make_router):
        main = provider("A", detected_language="fr")
        router = make_router([main])

        result = await router.translate(request(source_language="en"))

        assert main.requests[0].source_language == "en"
        assert result.source_language == "en"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_source_is_detected(self, make_router):
        main = provider("A")
        router = make_router([main], detector=LanguageDetector(local_backend="none"))

        result = await router.translate(request("こんにちは", source_language="auto"))

        assert main.requests[0].source_language == "ja"
        assert result.detected_language == "ja"
        assert result.source_language == "ja"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_low_confidence_detection_is_rejected(self, make_router):
        main = provider("A")
        router = make_router(
            [main],
            detector=LanguageDetector(local_backend="none"),
            min_detection_confidence=0.9,
        )

        with pytest.raises(LowConfidenceDetectionError) as exc_info:
            await router.translate(request("Ciao a tutti", source_language=None))

        assert exc_info.value.detection.language == "en"
        assert main.calls == 0


class TestGlossaryAndAudit:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_glossary_applied_to_output(self, make_router, glossary):
        glossary.upsert_entry(
            GlossaryEntry(
                source="CPU", target="中央处理器", scope=GlossaryScope.TENANT, owner_id="acme"
            )
        )
        router = make_router([provider("A")], glossary_manager=glossary)

        result = await router.translate(request("High CPU usage"))

        assert result.raw_text == "[A] High CPU usage"
        assert result.text == "[A] High 中央处理器 usage"
        assert result.glossary_matches[0].applied_target == "中央处理器"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_glossary_disabled_per_request(self, make_router, glossary):
        glossary.upsert_entry(
            GlossaryEntry(source="CPU", target="中央处理器", scope=GlossaryScope.TENANT)
        )
        router = make_router([provider("A")], glossary_manager=glossary)

        result = await router.translate(request("CPU", use_glossary=False))

        assert result.text == "[A] CPU"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_glossary_conflict_in_output(self, make_router, glossary):
        glossary.load_bulk(
            [
                GlossaryEntry(source="CPU", target="中央处理器", scope=GlossaryScope.TENANT),
                GlossaryEntry(source="CPU", target="处理器", scope=GlossaryScope.USER),
            ]
        )
        router = make_router([provider("A")], glossary_manager=glossary)

        with pytest.raises(GlossaryConflictError) as exc_info:
            await router.translate(request("CPU"))

        assert exc_info.value.result.unresolved[0].source == "CPU"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_audit_records_fingerprint_only(self, make_router):
        audit = AuditLogger()
        router = make_router([provider("A")], audit_sink=audit)

        await router.translate(request("Hello", metadata={"ticket": "T-1"}))

        [record] = audit.query("acme")
        assert record.source_fingerprint == fingerprint("Hello")
        assert record.source_text is None
        assert record.translated_text == "[A] Hello"
        assert record.metadata["ticket"] == "T-1"
        assert record.metadata["target_language"] == "ja"
        assert record.metadata["cost_usd"] == pytest.approx(0.05)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_translation_is_not_audited(self, make_router):
        audit = AuditLogger()
        router = make_router([provider("A", failures=1)], audit_sink=audit)

        with pytest.raises(AllProvidersFailedError):
            await router.translate(request())

        assert len(audit) == 0


class TestRewrite:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rewrite_uses_failover_and_budget(self, make_router, gateway):
        router = make_router(
            [provider("A", regions=("us",)), provider("B")], gateway=gateway
        )

        result = await router.rewrite(RewriteRequest(text="Please fix this", tone="casual"))

        assert result.text == "Please fix this [casual]"
        assert result.model_id == "B"
        assert result.cost_usd == pytest.approx(0.15)


class TestRanking:
    @pytest.mark.unit
    def test_rank_candidates(self):
        cheap = ProviderProfile(id="cheap", cost_per_char_usd=0.00001, latency_target_ms=2000)
        pricey = ProviderProfile(id="pricey", cost_per_char_usd=0.001, latency_target_ms=2000)

        ranked = TranslationRouter.rank_candidates(
            [
                (pricey, ProviderTranslation(text="x", latency_ms=1000, confidence=0.95)),
                (cheap, ProviderTranslation(text="x", latency_ms=1000, confidence=0.9)),
            ],
            RoutingWeights(quality=0.6, latency=0.2, cost=0.2),
        )

        assert [score.provider_id for score in ranked] == ["cheap", "pricey"]
        assert ranked[0].latency_score == pytest.approx(2.0)

    @pytest.mark.unit
    def test_compute_score_defaults(self):
        profile = ProviderProfile(id="p", cost_per_char_usd=0.0, latency_target_ms=1000)

        quality, latency_score, cost_score = TranslationRouter.compute_score(
            ProviderTranslation(text="x"), profile
        )

        assert (quality, latency_score, cost_score) == (0.5, 1.0, 0.0)


@pytest.mark.unit
def test_transient_classification():
    assert is_transient(ProviderTransientError("p", "boom"))
    assert is_transient(RuntimeError("network"))
    assert not is_transient(BudgetExceededError(0.0, 1.0))
    assert not is_transient(EmptyOrOversizedTextError(0, 10))
    assert not is_transient(ComplianceBlockedError([]))
