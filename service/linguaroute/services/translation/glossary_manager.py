"""Scoped glossary for enforcing terminology in translated text.

Entries live in three tiers (user, channel and tenant by default). When
several tiers define the same source term the most specific tier wins for
plain resolution, while apply_glossary() reports the disagreement so the
caller can choose.
"""

import csv
import io
import logging
import re
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from linguaroute.metrics.translation_metrics import glossary_conflicts_total
from linguaroute.models.glossary import (
    GlossaryApplicationResult,
    GlossaryCandidate,
    GlossaryContext,
    GlossaryDecision,
    GlossaryDecisionKind,
    GlossaryEntry,
    GlossaryImportConflict,
    GlossaryImportResult,
    GlossaryMatch,
    GlossaryScope,
    GlossaryStrategy,
)

logger = logging.getLogger(__name__)

DEFAULT_HIERARCHY: Tuple[str, ...] = ("user", "channel", "tenant")

_TOKEN_SPLIT = re.compile(r"(\W+)")
_ASCII_WORD = re.compile(r"[A-Za-z0-9_]")

EntryKey = Tuple[GlossaryScope, Optional[str], str]


def _bounded(term: str) -> str:
    """Regex for term, bounded only where its edges are ASCII word characters.

    CJK text has no spaces between words, so a full \\b boundary would stop
    "CPU" from matching inside "高CPU使用率".
    """
    core = re.escape(term)
    if _ASCII_WORD.match(term[0]):
        core = r"(?<![A-Za-z0-9_])" + core
    if _ASCII_WORD.match(term[-1]):
        core = core + r"(?![A-Za-z0-9_])"
    return core


class GlossaryManager:
    """Thread-safe three-tier glossary."""

    PLACEHOLDER = "__GLOSSARY_TERM_{}__"

    def __init__(
        self,
        hierarchy: Sequence[str] = DEFAULT_HIERARCHY,
        entries: Optional[Iterable[GlossaryEntry]] = None,
    ):
        """Initialize the GlossaryManager.

        Args:
            hierarchy: Scope names ordered from most to least specific
            entries: Optional entries to load up front
        """
        self.hierarchy: List[GlossaryScope] = [GlossaryScope(s) for s in hierarchy]
        if sorted(s.value for s in self.hierarchy) != sorted(s.value for s in GlossaryScope):
            raise ValueError(f"Glossary hierarchy must name every scope once, got {hierarchy}")
        self._priority = {scope: index for index, scope in enumerate(self.hierarchy)}
        self._entries: Dict[EntryKey, GlossaryEntry] = {}
        self._lock = threading.RLock()
        if entries:
            self.load_bulk(entries)

    @staticmethod
    def _key(entry: GlossaryEntry) -> EntryKey:
        return (entry.scope, entry.owner_id, entry.source.lower())

    def priority_of(self, scope: GlossaryScope) -> int:
        return self._priority[scope]

    # Mutation

    def upsert_entry(self, entry: GlossaryEntry) -> GlossaryEntry:
        with self._lock:
            self._entries[self._key(entry)] = entry
        return entry

    def load_bulk(self, entries: Iterable[GlossaryEntry]) -> int:
        count = 0
        with self._lock:
            for entry in entries:
                self._entries[self._key(entry)] = entry
                count += 1
        logger.info(f"Loaded {count} glossary entries")
        return count

    def remove_entry(
        self, scope: GlossaryScope, source: str, owner_id: Optional[str] = None
    ) -> bool:
        with self._lock:
            return self._entries.pop((scope, owner_id, source.strip().lower()), None) is not None

    def import_csv(
        self,
        content: str,
        scope: GlossaryScope,
        owner_id: Optional[str] = None,
        overwrite: bool = False,
    ) -> GlossaryImportResult:
        """Import entries from CSV rows of `source,target[,strategy[,channels]]`.

        Channels are separated by `;`. A header row starting with `source` is
        skipped. Existing entries with a different target are reported as
        conflicts and left alone unless `overwrite` is set.

        Args:
            content: CSV text
            scope: Scope tier for every imported entry
            owner_id: Owner for every imported entry
            overwrite: Replace existing entries whose target differs

        Returns:
            GlossaryImportResult with counts, conflicts and per-line errors
        """
        result = GlossaryImportResult()
        reader = csv.reader(io.StringIO(content))
        with self._lock:
            for line_no, row in enumerate(reader, start=1):
                cells = [cell.strip() for cell in row]
                if not any(cells):
                    continue
                if line_no == 1 and cells[0].lower() == "source":
                    continue
                if len(cells) < 2 or not cells[0] or not cells[1]:
                    result.errors.append(f"Line {line_no}: expected source and target")
                    continue

                strategy = GlossaryStrategy.REPLACE
                if len(cells) > 2 and cells[2]:
                    try:
                        strategy = GlossaryStrategy(cells[2].lower())
                    except ValueError:
                        result.errors.append(
                            f"Line {line_no}: unknown strategy '{cells[2]}'"
                        )
                        continue
                channels = None
                if len(cells) > 3 and cells[3]:
                    channels = [c.strip() for c in cells[3].split(";") if c.strip()]

                entry = GlossaryEntry(
                    source=cells[0],
                    target=cells[1],
                    scope=scope,
                    owner_id=owner_id,
                    strategy=strategy,
                    channels=channels,
                )
                existing = self._entries.get(self._key(entry))
                if existing is not None and existing.target != entry.target and not overwrite:
                    result.conflicts.append(
                        GlossaryImportConflict(
                            source=entry.source,
                            existing_target=existing.target,
                            incoming_target=entry.target,
                            scope=scope,
                        )
                    )
                    continue
                self._entries[self._key(entry)] = entry
                if existing is None:
                    result.imported += 1
                else:
                    result.updated += 1

        logger.info(
            f"Glossary import ({scope.value}): {result.imported} imported, "
            f"{result.updated} updated, {len(result.conflicts)} conflicts, "
            f"{len(result.errors)} errors"
        )
        return result

    def entries(self, scope: Optional[GlossaryScope] = None) -> List[GlossaryEntry]:
        with self._lock:
            snapshot = list(self._entries.values())
        if scope is not None:
            snapshot = [entry for entry in snapshot if entry.scope is scope]
        return snapshot

    # Lookup

    def _applicable(self, context: GlossaryContext) -> Dict[str, List[GlossaryEntry]]:
        """Entries visible to the context, grouped by lower-cased source term."""
        grouped: Dict[str, List[GlossaryEntry]] = {}
        with self._lock:
            for (scope, owner_id, source_lower), entry in self._entries.items():
                if owner_id is not None and owner_id != context.owner_for(scope):
                    continue
                if not entry.allows_channel(context.channel_id):
                    continue
                grouped.setdefault(source_lower, []).append(entry)
        return grouped

    def _render(self, strategy: GlossaryStrategy, target: str, original: str) -> str:
        if strategy is GlossaryStrategy.RETAIN:
            return original
        if strategy is GlossaryStrategy.MIXED:
            return f"{target} ({original})"
        return target

    def _chained_patterns(
        self, grouped: Dict[str, List[GlossaryEntry]]
    ) -> List["re.Pattern[str]"]:
        """Patterns for rendered targets that contain another visible source term.

        Such output is treated as already translated, so a second application
        cannot rewrite one entry's target with another entry.
        """
        forms: Dict[str, "re.Pattern[str]"] = {}
        for source_lower, entries in grouped.items():
            others = [
                re.compile(f"(?i:{_bounded(other)})") for other in grouped if other != source_lower
            ]
            for entry in entries:
                if entry.strategy is GlossaryStrategy.RETAIN:
                    continue
                rendered = self._render(entry.strategy, entry.target, entry.source)
                if rendered in forms or not any(o.search(rendered) for o in others):
                    continue
                if entry.strategy is GlossaryStrategy.MIXED:
                    source_pattern = f"(?i:{re.escape(entry.source)})"
                    forms[rendered] = re.compile(
                        f"{re.escape(entry.target)} \\({source_pattern}\\)"
                    )
                else:
                    forms[rendered] = re.compile(_bounded(entry.target))
        return [forms[form] for form in sorted(forms, key=lambda f: (-len(f), f))]

    def resolve(self, text: str, context: Optional[GlossaryContext] = None) -> str:
        """Substitute single-token terms using the most specific matching tier."""
        if not text:
            return text
        grouped = self._applicable(context or GlossaryContext())
        if not grouped:
            return text

        parts = _TOKEN_SPLIT.split(text)
        for index, token in enumerate(parts):
            if not token or token.isspace():
                continue
            entries = grouped.get(token.lower())
            if not entries:
                continue
            entry = min(entries, key=lambda e: self._priority[e.scope])
            parts[index] = self._render(entry.strategy, entry.target, token)
        return "".join(parts)

    def _candidates(self, entries: List[GlossaryEntry]) -> List[GlossaryCandidate]:
        best: Dict[str, GlossaryCandidate] = {}
        for entry in entries:
            candidate = GlossaryCandidate(
                target=entry.target,
                scope=entry.scope,
                priority=self._priority[entry.scope],
                strategy=entry.strategy,
            )
            current = best.get(entry.target)
            if current is None or candidate.priority < current.priority:
                best[entry.target] = candidate
        return sorted(best.values(), key=lambda c: (c.priority, c.target))

    @staticmethod
    def _choose(
        candidates: List[GlossaryCandidate],
        decision: Optional[GlossaryDecision],
        has_conflict: bool,
    ) -> Tuple[Optional[GlossaryCandidate], GlossaryDecisionKind]:
        kind = decision.kind if decision is not None else GlossaryDecisionKind.UNSPECIFIED
        if kind is GlossaryDecisionKind.KEEP_ORIGINAL:
            return None, kind
        if kind is GlossaryDecisionKind.USE_ALTERNATIVE and has_conflict:
            for candidate in candidates:
                if candidate.target == decision.target and (
                    decision.scope is None or candidate.scope is decision.scope
                ):
                    return candidate, kind
            return candidates[1], kind
        if kind is GlossaryDecisionKind.UNSPECIFIED and has_conflict:
            return None, kind
        return candidates[0], kind

    def apply_glossary(
        self,
        text: str,
        context: Optional[GlossaryContext] = None,
        decisions: Optional[Mapping[str, GlossaryDecision]] = None,
    ) -> GlossaryApplicationResult:
        """Apply glossary terms and report per-term conflicts.

        A term conflicts when the visible tiers offer more than one distinct
        target. Conflicting terms are substituted only when the caller supplied
        a decision; otherwise they stay untouched and the result requires
        resolution. A rendered target that contains another visible source
        term is left alone, so running this again on its own output with the
        same decisions returns the same text.

        Args:
            text: Text to process
            context: Tenant/channel/user identifying the visible entries
            decisions: Caller decisions keyed by source term (case-insensitive)

        Returns:
            GlossaryApplicationResult with the processed text and matches
        """
        result = GlossaryApplicationResult(text=text or "")
        if not text:
            return result

        grouped = self._applicable(context or GlossaryContext())
        lowered_decisions = {
            key.strip().lower(): value for key, value in (decisions or {}).items()
        }

        protected: Dict[str, str] = {}
        working = text

        def protect(m: "re.Match[str]") -> str:
            placeholder = self.PLACEHOLDER.format(len(protected))
            protected[placeholder] = m.group(0)
            return placeholder

        for chained in self._chained_patterns(grouped):
            working = chained.sub(protect, working)

        # Longest terms first so "Contoso Cloud" wins over "Contoso"
        for source_lower in sorted(grouped, key=lambda s: (-len(s), s)):
            entries = grouped[source_lower]
            source = entries[0].source
            candidates = self._candidates(entries)
            has_conflict = len(candidates) > 1
            chosen, kind = self._choose(
                candidates, lowered_decisions.get(source_lower), has_conflict
            )

            source_pattern = f"(?i:{_bounded(source)})"
            alternatives = []
            if chosen is not None and chosen.strategy is GlossaryStrategy.MIXED:
                alternatives.append(f"{re.escape(chosen.target)} \\({source_pattern}\\)")
            elif chosen is not None and chosen.strategy is GlossaryStrategy.REPLACE:
                alternatives.append(_bounded(chosen.target))
            alternatives.append(f"(?P<source>{source_pattern})")
            pattern = re.compile("|".join(f"(?:{alt})" for alt in alternatives))

            match = GlossaryMatch(
                source=source,
                candidates=candidates,
                has_conflict=has_conflict,
                resolution=kind,
            )

            def substitute(m: "re.Match[str]") -> str:
                match.occurrences += 1
                if m.group("source") is None or chosen is None:
                    # Already rendered, or left as-is pending a decision
                    rendered = m.group(0)
                else:
                    rendered = self._render(chosen.strategy, chosen.target, m.group(0))
                    if rendered != m.group(0):
                        match.replaced = True
                placeholder = self.PLACEHOLDER.format(len(protected))
                protected[placeholder] = rendered
                return placeholder

            working = pattern.sub(substitute, working)
            if match.occurrences == 0:
                continue
            if chosen is not None:
                match.applied_target = (
                    source if chosen.strategy is GlossaryStrategy.RETAIN else chosen.target
                )
            result.matches.append(match)

        for placeholder, rendered in protected.items():
            working = working.replace(placeholder, rendered)
        result.text = working

        if result.requires_resolution:
            glossary_conflicts_total.inc()
            logger.info(
                f"Glossary conflicts need resolution: "
                f"{', '.join(m.source for m in result.unresolved)}"
            )
        return result
