"""Request, provider and result models for the translation router."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from linguaroute.models.glossary import (
    GlossaryContext,
    GlossaryDecision,
    GlossaryMatch,
)
from pydantic import BaseModel, Field, field_validator

AUTO_DETECT = "auto"


class TranslationRequest(BaseModel):
    """A translation request as submitted by the chat surface."""

    text: str
    source_language: Optional[str] = Field(
        None, description="Declared source language; None or 'auto' triggers detection"
    )
    target_language: str = "ja"
    additional_target_languages: List[str] = Field(default_factory=list)
    tenant_id: str = ""
    user_id: str = ""
    channel_id: Optional[str] = None
    tone: str = "polite"
    use_glossary: bool = True
    glossary_decisions: Dict[str, GlossaryDecision] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("glossary_decisions", mode="after")
    @classmethod
    def normalize_decision_keys(
        cls, v: Dict[str, GlossaryDecision]
    ) -> Dict[str, GlossaryDecision]:
        # Decisions are keyed by source term, case-insensitively
        return {key.strip().lower(): decision for key, decision in v.items()}

    @field_validator("target_language")
    @classmethod
    def validate_target_language(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("target_language must not be empty")
        return v

    @property
    def declared_source_language(self) -> Optional[str]:
        lang = (self.source_language or "").strip()
        if not lang or lang.lower() == AUTO_DETECT:
            return None
        return lang

    @property
    def glossary_context(self) -> GlossaryContext:
        return GlossaryContext(
            tenant_id=self.tenant_id or None,
            channel_id=self.channel_id,
            user_id=self.user_id or None,
        )

    @property
    def target_languages(self) -> List[str]:
        extras = [
            lang
            for lang in self.additional_target_languages
            if lang and lang != self.target_language
        ]
        return [self.target_language, *dict.fromkeys(extras)]


class RewriteRequest(BaseModel):
    text: str
    tone: str = "polite"
    tenant_id: str = ""
    user_id: str = ""
    channel_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class ProviderRequest:
    """What a provider receives for one translation call."""

    text: str
    source_language: Optional[str]
    target_language: str
    tone: str = "polite"
    tenant_id: str = ""
    user_id: str = ""


@dataclass
class ProviderTranslation:
    text: str
    detected_language: Optional[str] = None
    latency_ms: Optional[int] = None
    confidence: Optional[float] = None
    model_id: Optional[str] = None


@dataclass
class DetectionResult:
    language: str
    confidence: float
    candidates: List[Tuple[str, float]] = field(default_factory=list)
    backend: str = "provider"


@dataclass(frozen=True)
class PiiFinding:
    type: str
    match: str


@dataclass
class ComplianceEvaluation:
    """Outcome of checking one text against one provider. Never persisted."""

    provider_id: str
    provider_regions: List[str]
    provider_certifications: List[str]
    target_language: Optional[str]
    evaluated_at: datetime
    pii: List[PiiFinding] = field(default_factory=list)
    banned_phrases: List[str] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return not self.violations


@dataclass(frozen=True)
class ProviderFailure:
    """Why one provider in the failover chain did not produce a result."""

    provider_id: str
    code: str
    message: str
    compliance_blocked: bool = False


@dataclass
class RoutedTranslation:
    """A translation returned by the router, annotated for the caller."""

    text: str
    raw_text: str
    source_language: Optional[str]
    detected_language: Optional[str]
    target_language: str
    model_id: str
    confidence: Optional[float]
    latency_ms: int
    cost_usd: float
    additional_translations: Dict[str, str] = field(default_factory=dict)
    glossary_matches: List[GlossaryMatch] = field(default_factory=list)
    cached: bool = False


@dataclass
class RewriteResult:
    text: str
    model_id: str
    cost_usd: float
    latency_ms: int


@dataclass
class ReplyPayload:
    """Reply-ready translation plus the structured fields a card renderer needs."""

    translation: RoutedTranslation
    card_data: Dict[str, Any]

    @property
    def text(self) -> str:
        return self.translation.text


@dataclass
class AuditRecord:
    user_id: str
    tenant_id: str
    source_fingerprint: str
    translated_text: str
    model_id: str
    latency_ms: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    source_text: Optional[str] = None


@dataclass(frozen=True)
class BudgetState:
    spent_usd: float
    daily_budget_usd: float
    window: date

    @property
    def remaining_usd(self) -> float:
        return max(0.0, self.daily_budget_usd - self.spent_usd)
