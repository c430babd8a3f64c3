"""The shared label vocabulary: intents, transfer reasons, drop-off locations.

The conflict resolver is the only code that changes them: it adds new
labels and drops aliases it merges away.  Everything else reads a sorted
snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from xobcat.models import SessionFacts, TaxonomySnapshot


class LabelKind(str, Enum):
    GENERAL_INTENT = "general_intent"
    TRANSFER_REASON = "transfer_reason"
    DROP_OFF_LOCATION = "drop_off_location"


LABEL_KINDS: tuple[LabelKind, ...] = tuple(LabelKind)


def label_of(facts: SessionFacts, kind: LabelKind) -> str:
    return getattr(facts, kind.value)


@dataclass
class Taxonomy:
    general_intents: set[str] = field(default_factory=set)
    transfer_reasons: set[str] = field(default_factory=set)
    drop_off_locations: set[str] = field(default_factory=set)

    def labels(self, kind: LabelKind) -> set[str]:
        if kind is LabelKind.GENERAL_INTENT:
            return self.general_intents
        if kind is LabelKind.TRANSFER_REASON:
            return self.transfer_reasons
        return self.drop_off_locations

    def contains(self, kind: LabelKind, label: str) -> bool:
        return label in self.labels(kind)

    def add(self, kind: LabelKind, label: str) -> None:
        self.labels(kind).add(label)

    def discard(self, kind: LabelKind, label: str) -> None:
        self.labels(kind).discard(label)

    def __len__(self) -> int:
        return len(self.general_intents) + len(self.transfer_reasons) + len(self.drop_off_locations)

    def snapshot(self) -> TaxonomySnapshot:
        return TaxonomySnapshot(
            general_intents=sorted(self.general_intents),
            transfer_reasons=sorted(self.transfer_reasons),
            drop_off_locations=sorted(self.drop_off_locations),
        )

    def format_for_prompt(self) -> str:
        """Existing labels, one line per kind, for the extraction prompt."""
        lines: list[str] = []
        if self.general_intents:
            lines.append(
                "Existing General Intent classifications: " + ", ".join(sorted(self.general_intents))
            )
        if self.transfer_reasons:
            lines.append(
                "Existing Transfer Reason classifications: "
                + ", ".join(sorted(self.transfer_reasons))
            )
        if self.drop_off_locations:
            lines.append(
                "Existing Drop-Off Location classifications: "
                + ", ".join(sorted(self.drop_off_locations))
            )
        return "\n".join(lines)
