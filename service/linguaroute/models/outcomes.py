"""Tagged outcomes returned by TranslationPipeline.translate().

Callers match on the variant instead of catching exceptions:

    outcome = await pipeline.translate(request)
    if isinstance(outcome, NeedsGlossaryResolution):
        ...  # ask the user to pick candidates, then resubmit with decisions
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from linguaroute.models.draft import OfflineDraft
from linguaroute.models.glossary import GlossaryMatch
from linguaroute.models.translation import (
    ComplianceEvaluation,
    ProviderFailure,
    RoutedTranslation,
)


@dataclass
class TranslationSucceeded:
    translation: RoutedTranslation


@dataclass
class ComplianceBlocked:
    evaluations: List[ComplianceEvaluation]

    @property
    def violations(self) -> List[str]:
        return [
            f"{evaluation.provider_id}: {violation}"
            for evaluation in self.evaluations
            for violation in evaluation.violations
        ]


@dataclass
class BudgetExceeded:
    remaining_usd: float
    requested_usd: float = 0.0


@dataclass
class NeedsGlossaryResolution:
    conflicts: List[GlossaryMatch]
    text: str = ""


@dataclass
class ProvidersUnavailable:
    failures: List[ProviderFailure] = field(default_factory=list)


@dataclass
class DraftQueued:
    draft: OfflineDraft
    failures: List[ProviderFailure] = field(default_factory=list)


@dataclass
class LanguageSelectionRequired:
    detected_language: str
    confidence: float
    candidates: List[Tuple[str, float]] = field(default_factory=list)
    threshold: Optional[float] = None


TranslationOutcome = Union[
    TranslationSucceeded,
    ComplianceBlocked,
    BudgetExceeded,
    NeedsGlossaryResolution,
    ProvidersUnavailable,
    DraftQueued,
    LanguageSelectionRequired,
]
