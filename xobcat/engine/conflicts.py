"""Conflict resolution — folds duplicate labels onto one canonical form.

Concurrent streams classify against the same taxonomy snapshot, so two
streams can both invent "Billing Issue" and "billing issue" in one round.
:class:`ConflictResolver` is the only writer of the
:class:`~xobcat.engine.taxonomy.Taxonomy`: every labelled batch passes
through :meth:`ConflictResolver.resolve`, which decides for each label
whether it duplicates an existing canonical label or becomes a new one, then
rewrites the batch so every session carries canonical labels only.

Matching, per label kind:

1. already canonical → kept
2. same text ignoring case and whitespace → the existing canonical label
3. ``difflib`` ratio ≥ ``cutoff`` against existing labels, and the two
   labels differ only by plural endings word for word → that label
4. otherwise → added as a new canonical label

The first spelling seen (in input order) wins.  The default cutoff of 1.0
turns off fuzzy matching.

Wording differences ("Claim Status" vs "Claim Inquiry") are left to
:class:`ConflictReviewer`: a word-overlap heuristic groups candidate labels
and an LLM decides which groups really mean the same thing.
"""

from __future__ import annotations

import difflib
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from xobcat.engine.extractor import TokenUsage
from xobcat.engine.taxonomy import LABEL_KINDS, LabelKind, Taxonomy, label_of
from xobcat.errors import AnalysisCancelledError, sanitize_error
from xobcat.llm.pricing import estimate_cost
from xobcat.models import ConflictStats, SessionWithFacts

if TYPE_CHECKING:
    from xobcat.llm.client import LLMClient
    from xobcat.llm.structured import LabelGroup

logger = logging.getLogger(__name__)

DEFAULT_CUTOFF = 1.0

#: Candidate groups sent to the LLM per call
GROUPS_PER_BATCH = 10

# Word pairs treated as related when grouping candidates
_RELATED_WORDS: tuple[tuple[str, str], ...] = (
    ("agent", "human"),
    ("transfer", "connect"),
    ("invalid", "bad"),
    ("auth", "login"),
)

_KIND_TITLES = {
    LabelKind.GENERAL_INTENT: "General Intents",
    LabelKind.TRANSFER_REASON: "Transfer Reasons",
    LabelKind.DROP_OFF_LOCATION: "Drop-Off Locations",
}


def _key(label: str) -> str:
    return " ".join(label.lower().split())


def _inflection_of(a: str, b: str) -> bool:
    short, long = sorted((a, b), key=len)
    return long in (short + "s", short + "es")


def same_words(a: str, b: str) -> bool:
    """True when ``a`` and ``b`` have the same words, ignoring plural endings.

    "Billing Issue" / "Billing Issues" pass; "Account Locked" / "Account
    Unlocked" and "Payment Failed" / "Payment Filed" do not.
    """
    words_a = _key(a).split()
    words_b = _key(b).split()
    if len(words_a) != len(words_b):
        return False
    return all(x == y or _inflection_of(x, y) for x, y in zip(words_a, words_b))


def related_labels(a: str, b: str) -> bool:
    """Cheap pre-filter for labels that might mean the same thing.

    At least half the words of the shorter label appear in the other, or the
    labels contain a known related word pair.
    """
    a, b = _key(a), _key(b)
    for x, y in _RELATED_WORDS:
        if (x in a and y in b) or (y in a and x in b):
            return True
    words_a = a.split()
    words_b = b.split()
    if not words_a or not words_b:
        return False
    common = sum(1 for word in words_a if word in words_b)
    return common >= min(len(words_a), len(words_b)) * 0.5


def candidate_groups(labels: Iterable[str]) -> list[list[str]]:
    """Group labels that :func:`related_labels` links, transitively.

    Only groups of two or more are returned, sorted for stable prompts.
    """
    ordered = sorted(set(labels))
    parent = {label: label for label in ordered}

    def find(label: str) -> str:
        while parent[label] != label:
            parent[label] = parent[parent[label]]
            label = parent[label]
        return label

    for i, a in enumerate(ordered):
        for b in ordered[i + 1 :]:
            if related_labels(a, b):
                parent[find(b)] = find(a)

    groups: dict[str, list[str]] = {}
    for label in ordered:
        groups.setdefault(find(label), []).append(label)
    return [group for group in groups.values() if len(group) > 1]


@dataclass
class Resolution:
    """Outcome of resolving one batch."""

    # kind → {provided spelling → canonical spelling}, spelling changes only
    mapping: dict[LabelKind, dict[str, str]] = field(default_factory=dict)
    conflicts_found: int = 0
    rewrites: int = 0
    new_labels: list[tuple[LabelKind, str]] = field(default_factory=list)


class ConflictResolver:
    def __init__(self, taxonomy: Taxonomy | None = None, *, cutoff: float = DEFAULT_CUTOFF) -> None:
        self.taxonomy = taxonomy if taxonomy is not None else Taxonomy()
        self.cutoff = cutoff
        # kind → normalized key → canonical label
        self._index: dict[LabelKind, dict[str, str]] = {k: {} for k in LABEL_KINDS}
        # kind → provided → canonical (cumulative, identity entries included)
        self._mapping: dict[LabelKind, dict[str, str]] = {k: {} for k in LABEL_KINDS}
        self.conflicts_found = 0
        self.conflicts_resolved = 0

        for kind in LABEL_KINDS:
            for label in self.taxonomy.labels(kind):
                self._index[kind].setdefault(_key(label), label)
                self._mapping[kind][label] = label

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _match(self, kind: LabelKind, label: str) -> str | None:
        index = self._index[kind]
        key = _key(label)
        if key in index:
            return index[key]
        if self.cutoff < 1.0 and index:
            candidates = [k for k in index if same_words(k, key)]
            matches = difflib.get_close_matches(key, candidates, n=1, cutoff=self.cutoff)
            if matches:
                logger.info("Fuzzy-matched label '%s' → '%s'", label, index[matches[0]])
                return index[matches[0]]
        return None

    def canonical(self, kind: LabelKind, label: str, resolution: Resolution | None = None) -> str:
        """Return the canonical form of ``label``, registering it if new."""
        known = self._mapping[kind].get(label)
        if known is not None:
            return known

        match = self._match(kind, label)
        if match is None:
            self.taxonomy.add(kind, label)
            self._index[kind][_key(label)] = label
            self._mapping[kind][label] = label
            if resolution is not None:
                resolution.new_labels.append((kind, label))
            return label

        self._mapping[kind][label] = match
        self.conflicts_found += 1
        if resolution is not None:
            resolution.conflicts_found += 1
            resolution.mapping.setdefault(kind, {})[label] = match
        logger.debug("Label conflict (%s): '%s' → '%s'", kind.value, label, match)
        return match

    def merge(self, kind: LabelKind, canonical: str, aliases: Iterable[str]) -> list[str]:
        """Fold ``aliases`` into ``canonical``, which must already be a member.

        Aliases that are not taxonomy members are skipped.  Sessions already
        carrying an alias are rewritten by the next :meth:`resolve` or
        :meth:`consolidate`.  Returns the aliases actually merged.
        """
        labels = self.taxonomy.labels(kind)
        if canonical not in labels:
            return []
        merged: list[str] = []
        for alias in aliases:
            if alias == canonical or alias not in labels:
                continue
            self.taxonomy.discard(kind, alias)
            for key, target in self._index[kind].items():
                if target == alias:
                    self._index[kind][key] = canonical
            for provided, target in self._mapping[kind].items():
                if target == alias:
                    self._mapping[kind][provided] = canonical
            merged.append(alias)
            logger.info("Merged %s label '%s' → '%s'", kind.value, alias, canonical)
        self.conflicts_found += len(merged)
        return merged

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def resolve(self, sessions: list[SessionWithFacts]) -> Resolution:
        """Canonicalize every label in ``sessions`` in place."""
        resolution = Resolution()
        for session in sessions:
            updates: dict[str, str] = {}
            for kind in LABEL_KINDS:
                label = label_of(session.facts, kind)
                if not label:
                    continue
                canonical = self.canonical(kind, label, resolution)
                if canonical != label:
                    updates[kind.value] = canonical
            if updates:
                session.facts = session.facts.model_copy(update=updates)
                resolution.rewrites += len(updates)
        self.conflicts_resolved += resolution.rewrites
        return resolution

    def consolidate(self, sessions: list[SessionWithFacts]) -> Resolution:
        """Re-apply the cumulative mapping to every session.

        Run once over the full result set after the last round.  Afterwards
        every non-empty label is a taxonomy member.
        """
        resolution = self.resolve(sessions)
        for session in sessions:
            for kind in LABEL_KINDS:
                label = label_of(session.facts, kind)
                if label and not self.taxonomy.contains(kind, label):
                    raise RuntimeError(f"Orphan {kind.value} label after consolidation: {label}")
        return resolution

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def candidate_groups(self, kind: LabelKind) -> list[list[str]]:
        return candidate_groups(self.taxonomy.labels(kind))

    @property
    def canonical_mappings(self) -> int:
        return sum(
            1
            for kind in LABEL_KINDS
            for provided, canonical in self._mapping[kind].items()
            if provided != canonical
        )

    def stats(self) -> ConflictStats:
        return ConflictStats(
            conflicts_found=self.conflicts_found,
            conflicts_resolved=self.conflicts_resolved,
            canonical_mappings=self.canonical_mappings,
        )


# ---------------------------------------------------------------------------
# LLM review
# ---------------------------------------------------------------------------


@dataclass
class ReviewOutcome:
    batches: int = 0
    merged: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    error: str | None = None


def format_groups(batch: list[tuple[LabelKind, list[str]]]) -> str:
    """Candidate groups, listed per kind, for the conflict-resolution prompt."""
    lines: list[str] = []
    for kind in LABEL_KINDS:
        groups = [group for k, group in batch if k is kind]
        lines.append(f"**{_KIND_TITLES[kind]}:**")
        if not groups:
            lines.append("None")
        for n, group in enumerate(groups, start=1):
            lines.append(f"{n}. " + ", ".join(f'"{label}"' for label in group))
        lines.append("")
    return "\n".join(lines).strip()


class ConflictReviewer:
    """Asks the LLM which candidate label groups are semantic duplicates.

    Each group is reviewed once; later reviews only send groups whose
    membership changed.  A merge is applied only when the canonical label
    and every alias belong to the same candidate group.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        model_id: str = "",
        groups_per_batch: int = GROUPS_PER_BATCH,
    ) -> None:
        self.client = client
        self.model_id = model_id or getattr(client, "model", "")
        self.groups_per_batch = max(1, groups_per_batch)
        self._reviewed: set[tuple[LabelKind, frozenset[str]]] = set()

    def pending(self, resolver: ConflictResolver) -> list[tuple[LabelKind, list[str]]]:
        return [
            (kind, group)
            for kind in LABEL_KINDS
            for group in resolver.candidate_groups(kind)
            if (kind, frozenset(group)) not in self._reviewed
        ]

    async def review(
        self,
        resolver: ConflictResolver,
        *,
        on_step: Callable[[str], None] | None = None,
        check_cancelled: Callable[[], None] | None = None,
    ) -> ReviewOutcome:
        """Review every pending candidate group in batches.

        An LLM failure ends the review early and is reported in
        ``ReviewOutcome.error``; merges from earlier batches stay.

        Raises:
            AnalysisCancelledError: ``check_cancelled`` fired between batches.
        """
        from xobcat.llm.client import LLMUsageTracker
        from xobcat.llm.prompts import get_prompt
        from xobcat.llm.structured import ConflictResolutionResult

        outcome = ReviewOutcome()
        pending = self.pending(resolver)
        if not pending:
            return outcome

        batches = [
            pending[i : i + self.groups_per_batch]
            for i in range(0, len(pending), self.groups_per_batch)
        ]
        prompt_pair = get_prompt("conflict-resolution")
        tracker = LLMUsageTracker()

        try:
            for number, batch in enumerate(batches, start=1):
                if check_cancelled is not None:
                    check_cancelled()
                if on_step is not None:
                    on_step(f"Conflict resolution: Processing batch {number}/{len(batches)}")
                result = await self.client.analyze(
                    system_prompt=prompt_pair.system,
                    user_prompt=prompt_pair.user.format(groups=format_groups(batch)),
                    response_model=ConflictResolutionResult,
                    tracker=tracker,
                )
                outcome.batches += 1
                for kind, group in batch:
                    self._reviewed.add((kind, frozenset(group)))
                for kind, decisions in (
                    (LabelKind.GENERAL_INTENT, result.general_intents),
                    (LabelKind.TRANSFER_REASON, result.transfer_reasons),
                    (LabelKind.DROP_OFF_LOCATION, result.drop_off_locations),
                ):
                    groups = [group for k, group in batch if k is kind]
                    for decision in decisions:
                        outcome.merged += self._apply(resolver, kind, decision, groups)
        except AnalysisCancelledError:
            raise
        except Exception as exc:
            outcome.error = sanitize_error(str(exc)) or type(exc).__name__
            logger.warning("Conflict review failed: %s", outcome.error)
        finally:
            outcome.usage = TokenUsage(
                prompt_tokens=tracker.input_tokens,
                completion_tokens=tracker.output_tokens,
                cost=estimate_cost(self.model_id, tracker.input_tokens, tracker.output_tokens)
                or 0.0,
                model=self.model_id,
            )

        logger.info(
            "Conflict review: %d batches, %d labels merged, %d tokens",
            outcome.batches,
            outcome.merged,
            outcome.usage.total_tokens,
        )
        return outcome

    def _apply(
        self,
        resolver: ConflictResolver,
        kind: LabelKind,
        decision: LabelGroup,
        groups: list[list[str]],
    ) -> int:
        wanted = {decision.canonical, *decision.aliases}
        if not any(wanted <= set(group) for group in groups):
            logger.warning(
                "Ignoring %s merge outside a candidate group: '%s' ← %s",
                kind.value,
                decision.canonical,
                decision.aliases,
            )
            return 0
        return len(resolver.merge(kind, decision.canonical, decision.aliases))

