"""Compliance policy enforcement for request/provider pairs.

Four independent rules must all pass before text may be routed to a provider:

- Region: the provider serves a required region, or an allowed fallback region
- Certification: the provider holds every required certification
- Banned phrases: no configured phrase appears in the text (case-insensitive)
- PII: when PII is present and a region policy exists, the provider must serve
  a required region directly; fallback regions are not enough

The strict-region requirement applies to PII findings only. Banned phrases
block regardless of the provider's region.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from linguaroute.core.config import Settings
from linguaroute.core.exceptions import ComplianceBlockedError
from linguaroute.core.pii_utils import (
    PII_COMPLIANCE_PATTERNS,
    compile_patterns,
    detect_pii,
)
from linguaroute.metrics.translation_metrics import compliance_blocks_total
from linguaroute.models.translation import ComplianceEvaluation, PiiFinding
from linguaroute.services.translation.providers import ProviderProfile
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_REGIONS = ["global"]


class CompliancePolicy(BaseModel):
    """Region, certification, PII and banned-phrase rules."""

    version: str = "unversioned"
    required_region_tags: List[str] = Field(default_factory=list)
    allowed_region_fallbacks: List[str] = Field(default_factory=list)
    required_certifications: List[str] = Field(default_factory=list)
    banned_phrases: List[str] = Field(default_factory=list)
    pii_patterns: Dict[str, str] = Field(
        default_factory=lambda: dict(PII_COMPLIANCE_PATTERNS)
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompliancePolicy":
        return cls(
            version=settings.COMPLIANCE_POLICY_VERSION,
            required_region_tags=list(settings.REQUIRED_REGION_TAGS),
            allowed_region_fallbacks=list(settings.ALLOWED_REGION_FALLBACKS),
            required_certifications=list(settings.REQUIRED_CERTIFICATIONS),
            banned_phrases=list(settings.BANNED_PHRASES),
            pii_patterns=dict(settings.PII_PATTERNS),
        )


class ComplianceGateway:
    """Evaluates text against a compliance policy for a given provider."""

    def __init__(
        self,
        policy: Optional[CompliancePolicy] = None,
        pii_patterns: Optional[Mapping[str, str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the gateway.

        Args:
            policy: Policy to enforce (an empty policy allows everything but PII
                is still reported)
            pii_patterns: Extra or overriding PII patterns, merged over the policy's
            clock: Timestamp source for evaluations
        """
        self.policy = policy or CompliancePolicy()
        merged = {**PII_COMPLIANCE_PATTERNS, **self.policy.pii_patterns}
        if pii_patterns:
            merged.update(pii_patterns)
        self._pii_patterns = compile_patterns(merged)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def evaluate(
        self,
        text: str,
        provider: ProviderProfile,
        target_language: Optional[str] = None,
    ) -> ComplianceEvaluation:
        """Evaluate every rule and collect violations. Never raises."""
        regions = (
            list(provider.regions)
            if provider.regions is not None
            else list(DEFAULT_PROVIDER_REGIONS)
        )
        certifications = list(provider.certifications)
        pii = self.scan_pii(text)
        banned = self.scan_banned_phrases(text)

        violations: List[str] = []
        required_regions = self.policy.required_region_tags
        if not self.is_region_allowed(regions):
            violations.append(
                f"Provider region {','.join(regions)} not allowed for policy "
                f"{','.join(required_regions)}"
            )

        if not self.has_required_certifications(certifications):
            violations.append(
                f"Provider certifications {','.join(certifications)} missing "
                f"{','.join(self.policy.required_certifications)}"
            )

        if banned:
            violations.append(f"Detected banned phrases: {', '.join(banned)}")

        if pii and not self.is_region_strictly_allowed(regions):
            pii_types = ", ".join(dict.fromkeys(finding.type for finding in pii))
            violations.append(
                f"Detected PII types ({pii_types}) but provider region is {','.join(regions)}"
            )

        return ComplianceEvaluation(
            provider_id=provider.id,
            provider_regions=regions,
            provider_certifications=certifications,
            target_language=target_language,
            evaluated_at=self._clock(),
            pii=pii,
            banned_phrases=banned,
            violations=violations,
        )

    def assert_can_route(
        self,
        text: str,
        provider: ProviderProfile,
        target_language: Optional[str] = None,
    ) -> ComplianceEvaluation:
        """Evaluate and raise if the provider may not receive the text.

        Raises:
            ComplianceBlockedError: Carrying the evaluation when any rule fails
        """
        evaluation = self.evaluate(text, provider, target_language)
        if not evaluation.allowed:
            compliance_blocks_total.labels(provider=provider.id).inc()
            logger.warning(
                f"Compliance blocked provider {provider.id} "
                f"({len(evaluation.violations)} violation(s))"
            )
            raise ComplianceBlockedError([evaluation])
        return evaluation

    def scan_pii(self, text: str) -> List[PiiFinding]:
        return [
            PiiFinding(type=pii_type, match=match)
            for pii_type, match in detect_pii(text, self._pii_patterns)
        ]

    def scan_banned_phrases(self, text: str) -> List[str]:
        if not text:
            return []
        lowered = text.lower()
        return [
            phrase
            for phrase in self.policy.banned_phrases
            if phrase and phrase.lower() in lowered
        ]

    def is_region_allowed(self, regions: List[str]) -> bool:
        required = self.policy.required_region_tags
        if not required:
            return True
        if any(region in required for region in regions):
            return True
        return any(region in self.policy.allowed_region_fallbacks for region in regions)

    def is_region_strictly_allowed(self, regions: List[str]) -> bool:
        required = self.policy.required_region_tags
        if not required:
            return True
        return any(region in required for region in regions)

    def has_required_certifications(self, certifications: List[str]) -> bool:
        return all(
            cert in certifications for cert in self.policy.required_certifications
        )
