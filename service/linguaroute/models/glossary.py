"""Glossary models: scoped entries, caller decisions and application results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class GlossaryScope(str, Enum):
    USER = "user"
    CHANNEL = "channel"
    TENANT = "tenant"


class GlossaryStrategy(str, Enum):
    REPLACE = "replace"
    RETAIN = "retain"
    MIXED = "mixed"


class GlossaryDecisionKind(str, Enum):
    UNSPECIFIED = "unspecified"
    USE_PREFERRED = "use_preferred"
    USE_ALTERNATIVE = "use_alternative"
    KEEP_ORIGINAL = "keep_original"


class GlossaryEntry(BaseModel):
    """A source -> target term mapping at one scope tier."""

    model_config = {"frozen": True}

    source: str = Field(..., min_length=1)
    target: str
    scope: GlossaryScope
    owner_id: Optional[str] = Field(
        None, description="Tenant/channel/user id owning the entry; None applies to all"
    )
    strategy: GlossaryStrategy = GlossaryStrategy.REPLACE
    channels: Optional[List[str]] = Field(
        None, description="Channel allow-list; None means every channel"
    )
    entry_id: Optional[str] = None

    @field_validator("source", mode="before")
    @classmethod
    def strip_source(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("source must not be empty")
        return v

    def allows_channel(self, channel_id: Optional[str]) -> bool:
        return not self.channels or not channel_id or channel_id in self.channels


class GlossaryDecision(BaseModel):
    """A caller's resolution for one conflicting term."""

    kind: GlossaryDecisionKind = GlossaryDecisionKind.UNSPECIFIED
    target: Optional[str] = None
    scope: Optional[GlossaryScope] = None


@dataclass(frozen=True)
class GlossaryContext:
    """Identifies whose glossary tiers apply to a piece of text."""

    tenant_id: Optional[str] = None
    channel_id: Optional[str] = None
    user_id: Optional[str] = None

    def owner_for(self, scope: GlossaryScope) -> Optional[str]:
        if scope is GlossaryScope.USER:
            return self.user_id
        if scope is GlossaryScope.CHANNEL:
            return self.channel_id
        return self.tenant_id


@dataclass(frozen=True)
class GlossaryCandidate:
    """One offered translation for a term, ranked by scope priority."""

    target: str
    scope: GlossaryScope
    priority: int
    strategy: GlossaryStrategy = GlossaryStrategy.REPLACE


@dataclass
class GlossaryMatch:
    """A term found in the text and how it was resolved."""

    source: str
    candidates: List[GlossaryCandidate] = field(default_factory=list)
    applied_target: Optional[str] = None
    replaced: bool = False
    has_conflict: bool = False
    resolution: GlossaryDecisionKind = GlossaryDecisionKind.UNSPECIFIED
    occurrences: int = 0

    @property
    def needs_decision(self) -> bool:
        return self.has_conflict and self.resolution is GlossaryDecisionKind.UNSPECIFIED


@dataclass
class GlossaryApplicationResult:
    text: str
    matches: List[GlossaryMatch] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return any(match.has_conflict for match in self.matches)

    @property
    def requires_resolution(self) -> bool:
        return any(match.needs_decision for match in self.matches)

    @property
    def unresolved(self) -> List[GlossaryMatch]:
        return [match for match in self.matches if match.needs_decision]


@dataclass(frozen=True)
class GlossaryImportConflict:
    source: str
    existing_target: str
    incoming_target: str
    scope: GlossaryScope


@dataclass
class GlossaryImportResult:
    imported: int = 0
    updated: int = 0
    conflicts: List[GlossaryImportConflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
