"""Centralized PII (Personally Identifiable Information) utilities.

Single source of truth for PII pattern definitions, shared by the compliance
gateway (routing decisions) and the logging filter (redaction).

Pattern categories:
- PII_COMPLIANCE_PATTERNS: Identifiers that block routing to non-strict regions
- PII_LOGGING_PATTERNS: Aggressive redaction for log safety

Usage:
    from linguaroute.core.pii_utils import detect_pii, redact_for_logs

    findings = detect_pii(text)      # [("email", "jane@contoso.com"), ...]
    safe_log = redact_for_logs(text)
"""

import re
from typing import Dict, List, Mapping, Pattern, Tuple

# =============================================================================
# COMPLIANCE PATTERNS - Evaluated per request/provider pair
# =============================================================================

PII_COMPLIANCE_PATTERNS: Dict[str, str] = {
    "email": r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
    "phone": r"\b(?:\+?\d[\d\s-]{7,}\d)\b",
    "credit_card": r"\b(?:\d[ -]*?){13,16}\b",
}

# =============================================================================
# LOGGING PATTERNS - Aggressive redaction for log safety
# =============================================================================

PII_LOGGING_PATTERNS: Dict[str, str] = {
    # Order matters: card numbers must be redacted before the looser phone pattern
    "credit_card": r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b",
    "email": PII_COMPLIANCE_PATTERNS["email"],
    "phone": r"\+?\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b",
    "ip_address": r"\b(?:\d{1,3}\.){3}\d{1,3}\b",
    "api_key": r"api[_-]?key[_-]?[:=]\s*['\"]?[\w\-]{20,}['\"]?",
    "bearer_token": r"(?i)bearer\s+[A-Za-z0-9._~+/-]{16,}=*",
}

_REDACTION_LABELS: Dict[str, str] = {
    "credit_card": "[CARD]",
    "email": "[EMAIL]",
    "phone": "[PHONE]",
    "ip_address": "[IP_ADDRESS]",
    "api_key": "[API_KEY]",
    "bearer_token": "[TOKEN]",
}


def compile_patterns(patterns: Mapping[str, str]) -> Dict[str, Pattern[str]]:
    """Compile a name -> regex mapping.

    Args:
        patterns: Mapping of PII type to regular expression source

    Returns:
        Mapping of PII type to compiled pattern (email matching is case-insensitive)
    """
    return {
        name: re.compile(source, re.IGNORECASE if name == "email" else 0)
        for name, source in patterns.items()
        if source
    }


_COMPILED_COMPLIANCE = compile_patterns(PII_COMPLIANCE_PATTERNS)
_COMPILED_LOGGING: List[Tuple[Pattern[str], str]] = [
    (re.compile(source), _REDACTION_LABELS[name])
    for name, source in PII_LOGGING_PATTERNS.items()
]


def detect_pii(
    text: str, patterns: Mapping[str, Pattern[str]] | None = None
) -> List[Tuple[str, str]]:
    """Find PII in text.

    Args:
        text: Text to scan
        patterns: Compiled patterns to use (defaults to the compliance set)

    Returns:
        Deduplicated (type, matched text) pairs in pattern order
    """
    if not text:
        return []

    compiled = patterns if patterns is not None else _COMPILED_COMPLIANCE
    findings: List[Tuple[str, str]] = []
    seen: set[Tuple[str, str]] = set()
    for pii_type, pattern in compiled.items():
        for match in pattern.finditer(text):
            pair = (pii_type, match.group(0))
            if pair not in seen:
                seen.add(pair)
                findings.append(pair)
    return findings


def contains_pii(text: str) -> bool:
    """Check whether text contains any compliance-relevant PII."""
    return bool(detect_pii(text))


def redact_for_logs(text: str) -> str:
    """Redact PII aggressively for log output.

    Args:
        text: Text that may contain PII

    Returns:
        Text with PII replaced by bracketed labels
    """
    if not text:
        return text

    redacted = text
    for pattern, label in _COMPILED_LOGGING:
        redacted = pattern.sub(label, redacted)
    return redacted
