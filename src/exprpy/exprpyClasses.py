from dataclasses import dataclass, field
from typing import Dict

# One retained alignment line; only what assignment needs is kept
@dataclass(frozen=True)
class AlignmentRecord:
    """Minimal alignment data to reduce memory footprint."""
    reference_name: str
    position: int   # 1-based, as written in the alignment file


# Gene feature from the annotation
@dataclass(frozen=True)
class GeneInterval:
    gene_name: str
    reference_name: str
    start: int  # half-open [start, end)
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def contains(self, position: int) -> bool:
        return self.start <= position < self.end


@dataclass
class ParseStats:
    """Per-file tally of what a parser kept and what it dropped."""
    parsed: int = 0
    headers: int = 0
    filtered: int = 0   # other feature type, or BAM alignments failing a filter
    skipped: int = 0    # malformed lines, unmapped BAM alignments
    invalid: int = 0    # end <= start (duplicate names are kept in AnnotationIndex.duplicates)
    reasons: Dict[str, int] = field(default_factory=dict)

    @property
    def dropped(self) -> int:
        return self.skipped + self.invalid

    def drop(self, reason: str) -> None:
        self.filtered += 1
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


@dataclass
class AssignmentResult:
    counts: Dict[str, int] = field(default_factory=dict)
    unassigned: int = 0
    ambiguous: int = 0  # subset of unassigned: inside more than one gene

    @property
    def assigned(self) -> int:
        return sum(self.counts.values())

    @property
    def total(self) -> int:
        return self.assigned + self.unassigned

    def add(self, other: "AssignmentResult") -> None:
        for name, n in other.counts.items():
            self.counts[name] = self.counts.get(name, 0) + n
        self.unassigned += other.unassigned
        self.ambiguous += other.ambiguous
