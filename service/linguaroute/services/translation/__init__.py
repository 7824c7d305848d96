"""Translation routing package.

This package provides:
- BudgetGuard: Daily spend ceiling with atomic check-and-charge
- ComplianceGateway: Region, certification, banned-phrase and PII policy
- GlossaryManager: Three-tier terminology with conflict reporting
- LanguageDetector: Provider-first, local-fallback language detection
- TranslationRouter: Failover chain with retries, budget and audit
- TranslationPipeline: Validation, cache, throttle and outcome framing
"""

from linguaroute.services.translation.audit import AuditLogger, fingerprint
from linguaroute.services.translation.budget_guard import BudgetGuard
from linguaroute.services.translation.cache import TranslationCache
from linguaroute.services.translation.compliance_gateway import (
    ComplianceGateway,
    CompliancePolicy,
)
from linguaroute.services.translation.glossary_manager import GlossaryManager
from linguaroute.services.translation.language_detector import (
    SUPPORTED_LANGUAGES,
    LanguageDetector,
)
from linguaroute.services.translation.pipeline import (
    TranslationPipeline,
    create_pipeline,
)
from linguaroute.services.translation.providers import (
    LLMTranslationProvider,
    MockModelProvider,
    ProviderFactory,
    ProviderProfile,
    TranslationProvider,
)
from linguaroute.services.translation.router import RoutingWeights, TranslationRouter
from linguaroute.services.translation.throttle import TranslationThrottle
from linguaroute.services.translation.tone import ToneTemplateService

__all__ = [
    "AuditLogger",
    "BudgetGuard",
    "ComplianceGateway",
    "CompliancePolicy",
    "GlossaryManager",
    "LLMTranslationProvider",
    "LanguageDetector",
    "MockModelProvider",
    "ProviderFactory",
    "ProviderProfile",
    "RoutingWeights",
    "SUPPORTED_LANGUAGES",
    "ToneTemplateService",
    "TranslationCache",
    "TranslationPipeline",
    "TranslationProvider",
    "TranslationRouter",
    "TranslationThrottle",
    "create_pipeline",
    "fingerprint",
]
