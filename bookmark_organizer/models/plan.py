from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .bookmark import BookmarkNode

PATH_SEPARATOR = '/'


@dataclass(frozen=True)
class CategoryPath:
    """Normalized category label, one or more non-empty segments."""
    segments: Tuple[str, ...]

    def __post_init__(self):
        if not self.segments or not all(self.segments):
            raise ValueError(f"Invalid category path: {self.segments!r}")

    @classmethod
    def parse(cls, name: str) -> 'CategoryPath':
        return cls(tuple(part for part in name.split(PATH_SEPARATOR) if part))

    @property
    def top(self) -> str:
        return self.segments[0]

    def __str__(self) -> str:
        return PATH_SEPARATOR.join(self.segments)


@dataclass
class Assignment:
    entry_id: str
    path: CategoryPath

    @property
    def top(self) -> str:
        return self.path.top


class Plan:
    """Entry to category assignments accumulated across classification batches."""

    def __init__(self, overflow: str):
        self.overflow = overflow
        self.assignments: Dict[str, Assignment] = {}
        self.overflow_used = False
        self.failed_batches: List[int] = []

    def __len__(self) -> int:
        return len(self.assignments)

    def assign(self, entry_id: str, path: CategoryPath):
        # Later passes overwrite earlier ones
        self.assignments[entry_id] = Assignment(entry_id, path)
        if path.top == self.overflow:
            self.overflow_used = True

    def merge_batch(self, batch: Sequence[BookmarkNode], normalized: Dict[str, Set[int]]):
        for name, indices in normalized.items():
            path = CategoryPath.parse(name)
            for index in sorted(indices):
                self.assign(batch[index].id, path)

    def counts(self) -> Counter:
        """Number of entries per top-level category."""
        return Counter(assignment.top for assignment in self.assignments.values())

    def categories(self) -> List[str]:
        """Top-level categories ranked by descending count, then name."""
        return [name for name, _ in rank_counts(self.counts())]

    def members(self, top: str) -> List[str]:
        return [a.entry_id for a in self.assignments.values() if a.top == top]

    def fold_into_overflow(self, tops: Iterable[str]) -> int:
        tops = set(tops) - {self.overflow}
        overflow_path = CategoryPath((self.overflow,))
        folded = 0
        for assignment in self.assignments.values():
            if assignment.top in tops:
                assignment.path = overflow_path
                folded += 1
        if folded:
            self.overflow_used = True
        return folded

    def category_paths(self) -> List[str]:
        return sorted({str(a.path) for a in self.assignments.values()})


def rank_counts(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    """Sort by descending count; ties broken lexicographically on the name."""
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


@dataclass
class RunContext:
    """State of a single reorganization or cleanup run, owned by the caller."""
    root_id: str
    backup_id: Optional[str] = None
    children_cache: Dict[str, Dict[str, str]] = field(default_factory=dict)
    moved_count: int = 0
    errors: List[str] = field(default_factory=list)
    pending_deletes: List[str] = field(default_factory=list)

    def reset_cache(self):
        self.children_cache.clear()
