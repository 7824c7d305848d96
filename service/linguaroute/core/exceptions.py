"""
Exception hierarchy for the translation routing core.

Every error carries an HTTP status code and a stable error_code so the API
layer that consumes this package can surface it without re-deriving details.
The `retryable` flag tells the offline replay engine whether another attempt
can change the outcome.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from fastapi import HTTPException, status

if TYPE_CHECKING:
    from linguaroute.models.glossary import GlossaryApplicationResult
    from linguaroute.models.translation import (
        ComplianceEvaluation,
        DetectionResult,
        ProviderFailure,
    )


class BaseAppException(HTTPException):
    """Base exception for all routing core errors."""

    retryable: bool = True

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or self.__class__.__name__

    def __str__(self) -> str:
        return str(self.detail)


# Request validation


class EmptyOrOversizedTextError(BaseAppException):
    """Raised before any provider contact when text is empty or too long."""

    retryable = False

    def __init__(self, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        if length == 0:
            detail, code = "Text to translate is required", "EMPTY_TEXT"
        else:
            detail = f"Text length {length} exceeds maximum of {max_length} characters"
            code = "MAX_LENGTH_EXCEEDED"
        super().__init__(detail, status.HTTP_400_BAD_REQUEST, error_code=code)


class LowConfidenceDetectionError(BaseAppException):
    """Raised when the source language cannot be inferred confidently."""

    retryable = False

    def __init__(self, detection: "DetectionResult", threshold: float):
        self.detection = detection
        self.threshold = threshold
        super().__init__(
            f"Detected language '{detection.language}' with confidence "
            f"{detection.confidence:.2f} below {threshold:.2f}; please choose the source language",
            status.HTTP_400_BAD_REQUEST,
            error_code="LOW_CONFIDENCE_DETECTION",
        )


# Admission control


class ComplianceBlockedError(BaseAppException):
    """Raised when the compliance policy blocks routing.

    Carries every evaluation that contributed, so callers can display the
    full violation list.
    """

    def __init__(self, evaluations: Sequence["ComplianceEvaluation"]):
        self.evaluations = list(evaluations)
        super().__init__(
            "Compliance policy blocked translation: " + "; ".join(self.violations),
            status.HTTP_451_UNAVAILABLE_FOR_LEGAL_REASONS,
            error_code="COMPLIANCE_BLOCKED",
        )

    @property
    def evaluation(self) -> Optional["ComplianceEvaluation"]:
        return self.evaluations[0] if self.evaluations else None

    @property
    def violations(self) -> List[str]:
        collected: List[str] = []
        for evaluation in self.evaluations:
            for violation in evaluation.violations:
                collected.append(f"{evaluation.provider_id}: {violation}")
        return collected


class BudgetExceededError(BaseAppException):
    """Raised when a charge would exceed the daily budget ceiling."""

    def __init__(self, remaining_usd: float, requested_usd: float = 0.0):
        self.remaining_usd = remaining_usd
        self.requested_usd = requested_usd
        super().__init__(
            f"Daily translation budget exceeded (requested {requested_usd:.6f} USD, "
            f"remaining {remaining_usd:.6f} USD)",
            status.HTTP_402_PAYMENT_REQUIRED,
            error_code="BUDGET_EXCEEDED",
        )


class RateLimitExceededError(BaseAppException):
    """Raised when a tenant exceeds its per-minute request allowance."""

    def __init__(self, tenant_id: str, limit: int):
        self.tenant_id = tenant_id
        self.limit = limit
        super().__init__(
            f"Tenant '{tenant_id}' exceeded {limit} requests per minute",
            status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="RATE_LIMITED",
        )


# Provider failures


class ProviderTransientError(BaseAppException):
    """Raised by providers for failures that may succeed on retry."""

    def __init__(self, provider_id: str, detail: str, error_code: str = "MODEL_FAILURE"):
        self.provider_id = provider_id
        super().__init__(
            detail, status.HTTP_503_SERVICE_UNAVAILABLE, error_code=error_code
        )


class ProviderTimeoutError(ProviderTransientError):
    """Raised when a provider call exceeds its latency target."""

    def __init__(self, provider_id: str, timeout_ms: float):
        self.timeout_ms = timeout_ms
        super().__init__(
            provider_id,
            f"Provider {provider_id} exceeded latency target of {timeout_ms:.0f} ms",
            error_code="PROVIDER_TIMEOUT",
        )


class AllProvidersFailedError(BaseAppException):
    """Raised when every provider in the failover chain failed."""

    def __init__(self, failures: Sequence["ProviderFailure"]):
        self.failures = list(failures)
        if self.failures:
            summary = ", ".join(f"{f.provider_id}:{f.code}" for f in self.failures)
        else:
            summary = "no providers configured"
        super().__init__(
            f"All models failed: {summary}",
            status.HTTP_502_BAD_GATEWAY,
            error_code="ROUTER_NO_SUCCESS",
        )


# Glossary


class GlossaryConflictError(BaseAppException):
    """Raised when glossary conflicts need caller-supplied decisions.

    Not a failure as such: the caller resubmits with decisions for every
    conflicting term listed in `result`.
    """

    retryable = False

    def __init__(self, result: "GlossaryApplicationResult"):
        self.result = result
        terms = ", ".join(m.source for m in result.unresolved)
        super().__init__(
            f"Glossary conflicts require resolution: {terms}",
            status.HTTP_409_CONFLICT,
            error_code="GLOSSARY_CONFLICT",
        )


# Offline drafts


class DraftOwnerRequiredError(BaseAppException):
    """Raised when a draft is saved for a request without a user."""

    retryable = False

    def __init__(self, max_length: int = 128):
        super().__init__(
            f"Offline drafts require a user_id of 1 to {max_length} characters",
            status.HTTP_400_BAD_REQUEST,
            error_code="DRAFT_OWNER_REQUIRED",
        )


class DraftPermanentFailure(BaseAppException):
    """Terminal failure report for an offline draft."""

    retryable = False

    def __init__(self, draft_id: str, attempts: int, reason: str, last_error_code: str):
        self.draft_id = draft_id
        self.attempts = attempts
        self.reason = reason
        self.last_error_code = last_error_code
        super().__init__(
            f"Offline draft {draft_id} failed after {attempts} attempt(s): {reason}",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="DRAFT_PERMANENT_FAILURE",
        )

