"""Tests for compliance evaluation of request/provider pairs."""

from datetime import datetime, timezone

import pytest
from linguaroute.core.config import Settings
from linguaroute.core.exceptions import ComplianceBlockedError
from linguaroute.services.translation.compliance_gateway import (
    ComplianceGateway,
    CompliancePolicy,
)
from linguaroute.services.translation.providers import ProviderProfile


@pytest.fixture
def gateway(eu_policy):
    fixed = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return ComplianceGateway(eu_policy, clock=lambda: fixed)


def profile(provider_id="p", regions=("eu",), certifications=("SOC2",)):
    return ProviderProfile(id=provider_id, regions=regions, certifications=certifications)


class TestRegionAndCertification:
    @pytest.mark.unit
    def test_required_region_is_allowed(self, gateway):
        evaluation = gateway.evaluate("Hello", profile(regions=("eu",)))

        assert evaluation.allowed
        assert evaluation.violations == []
        assert evaluation.provider_regions == ["eu"]
        assert evaluation.evaluated_at == datetime(2024, 5, 1, tzinfo=timezone.utc)

    @pytest.mark.unit
    def test_fallback_region_is_allowed(self, gateway):
        assert gateway.evaluate("Hello", profile(regions=("global",))).allowed

    @pytest.mark.unit
    def test_other_region_is_blocked(self, gateway):
        evaluation = gateway.evaluate("Hello", profile(regions=("us",)))

        assert not evaluation.allowed
        assert evaluation.violations == ["Provider region us not allowed for policy eu"]

    @pytest.mark.unit
    def test_missing_certification_is_blocked(self, gateway):
        evaluation = gateway.evaluate("Hello", profile(certifications=("ISO27001",)))

        assert evaluation.violations == ["Provider certifications ISO27001 missing SOC2"]

    @pytest.mark.unit
    def test_provider_without_regions_counts_as_global(self, gateway):
        evaluation = gateway.evaluate("Hello", profile(regions=None))

        assert evaluation.provider_regions == ["global"]
        assert evaluation.allowed

    @pytest.mark.unit
    def test_provider_with_empty_regions_is_blocked(self, gateway):
        evaluation = gateway.evaluate("Hello", profile(regions=()))

        assert evaluation.provider_regions == []
        assert not evaluation.allowed
        assert evaluation.violations[0].startswith("Provider region  not allowed")

    @pytest.mark.unit
    def test_profile_from_dict_keeps_empty_regions(self):
        assert ProviderProfile.from_dict({"id": "p"}).regions == ("global",)
        assert ProviderProfile.from_dict({"id": "p", "regions": []}).regions == ()

    @pytest.mark.unit
    def test_empty_policy_allows_everything(self):
        gateway = ComplianceGateway()

        evaluation = gateway.evaluate("jane@contoso.com", profile(regions=("us",), certifications=()))

        assert evaluation.allowed
        assert [finding.type for finding in evaluation.pii] == ["email"]


class TestContentRules:
    @pytest.mark.unit
    def test_banned_phrase_is_case_insensitive(self, gateway):
        evaluation = gateway.evaluate("this is INTERNAL use only", profile())

        assert evaluation.banned_phrases == ["Internal Use Only"]
        assert evaluation.violations == ["Detected banned phrases: Internal Use Only"]

    @pytest.mark.unit
    def test_banned_phrase_blocks_even_in_required_region(self, gateway):
        assert not gateway.evaluate("这是机密文件", profile(regions=("eu",))).allowed

    @pytest.mark.unit
    def test_pii_requires_strict_region(self, gateway):
        text = "Send the invoice to jane@contoso.com"

        strict = gateway.evaluate(text, profile(regions=("eu",)))
        fallback = gateway.evaluate(text, profile(regions=("global",)))

        assert strict.allowed
        assert not fallback.allowed
        assert fallback.violations == [
            "Detected PII types (email) but provider region is global"
        ]

    @pytest.mark.unit
    def test_fallback_region_accepts_clean_text(self, gateway):
        assert gateway.evaluate("Send the invoice", profile(regions=("global",))).allowed

    @pytest.mark.unit
    def test_all_violations_are_reported(self, gateway):
        evaluation = gateway.evaluate(
            "Internal use only: jane@contoso.com",
            profile(regions=("us",), certifications=()),
        )

        assert len(evaluation.violations) == 4

    @pytest.mark.unit
    def test_extra_pii_patterns(self, eu_policy):
        gateway = ComplianceGateway(eu_policy, pii_patterns={"employee_id": r"EMP-\d{5}"})

        evaluation = gateway.evaluate("Ticket for EMP-12345", profile(regions=("global",)))

        assert [finding.type for finding in evaluation.pii] == ["employee_id"]
        assert not evaluation.allowed


class TestAssertCanRoute:
    @pytest.mark.unit
    def test_returns_evaluation_when_allowed(self, gateway):
        evaluation = gateway.assert_can_route("Hello", profile(), "ja")

        assert evaluation.allowed
        assert evaluation.target_language == "ja"

    @pytest.mark.unit
    def test_raises_with_evaluation_when_blocked(self, gateway):
        with pytest.raises(ComplianceBlockedError) as exc_info:
            gateway.assert_can_route("Hello", profile(regions=("us",)), "ja")

        error = exc_info.value
        assert error.status_code == 451
        assert error.evaluation.provider_id == "p"
        assert error.violations == ["p: Provider region us not allowed for policy eu"]
        assert error.evaluation.violations == ["Provider region us not allowed for policy eu"]


@pytest.mark.unit
def test_policy_from_settings():
    settings = Settings(
        REQUIRED_REGION_TAGS="eu,jp",
        ALLOWED_REGION_FALLBACKS="global",
        REQUIRED_CERTIFICATIONS="ISMAP",
        BANNED_PHRASES="Secret",
    )

    policy = CompliancePolicy.from_settings(settings)

    assert policy.required_region_tags == ["eu", "jp"]
    assert policy.required_certifications == ["ISMAP"]
    assert policy.banned_phrases == ["Secret"]
    assert "email" in policy.pii_patterns
