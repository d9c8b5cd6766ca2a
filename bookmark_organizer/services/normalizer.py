import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from ..models.plan import PATH_SEPARATOR, rank_counts

logger = logging.getLogger(__name__)

SEPARATORS = re.compile(r'[/\\／＼]')


def split_label(label: str, max_depth: int = 3) -> List[str]:
    """Split a raw category label into trimmed, non-empty path segments."""
    segments = [segment.strip() for segment in SEPARATORS.split(str(label))]
    segments = [segment for segment in segments if segment]
    return segments[:max_depth] if max_depth > 0 else segments


def normalize_categories(
    raw: Dict[str, Iterable[int]],
    batch_size: int,
    allowed: Optional[Iterable[str]] = None,
    max_categories: int = 0,
    flatten: bool = False,
    max_depth: int = 3,
    overflow: str = 'Other',
) -> Dict[str, Set[int]]:
    """Map raw AI labels to canonical category names and validated batch indices.

    Labels are split into path segments, optionally flattened and checked
    against the allow-list. Labels collapsing to the same canonical name are
    merged. Without an allow-list, a batch using more than ``max_categories``
    top-level categories keeps the largest ones and folds the rest into the
    overflow bucket.
    """
    allowed_lookup = _allowed_lookup(allowed, overflow)
    normalized: Dict[str, Set[int]] = defaultdict(set)

    for label, indices in raw.items():
        indices = set(indices)
        valid = {i for i in indices if 0 <= i < batch_size}
        if len(valid) < len(indices):
            logger.debug(f"Discarding out-of-range indices for {label!r}")
        if not valid:
            continue
        normalized[canonical_name(label, allowed_lookup, flatten, max_depth, overflow)] |= valid

    normalized = dict(normalized)
    if max_categories > 0 and allowed_lookup is None:
        normalized = limit_batch_categories(normalized, max_categories, overflow)
    return normalized


def canonical_name(
    label: str,
    allowed_lookup: Optional[Dict[str, str]],
    flatten: bool,
    max_depth: int,
    overflow: str,
) -> str:
    segments = split_label(label, max_depth)
    if not segments:
        return overflow
    if flatten:
        segments = segments[:1]
    if allowed_lookup is not None:
        top = allowed_lookup.get(segments[0].casefold())
        if top is None:
            return overflow
        segments = [top] + segments[1:]
    if segments[0] == overflow:
        return overflow
    return PATH_SEPARATOR.join(segments)


def limit_batch_categories(
    normalized: Dict[str, Set[int]], max_categories: int, overflow: str
) -> Dict[str, Set[int]]:
    tops: Dict[str, Set[int]] = defaultdict(set)
    for name, indices in normalized.items():
        tops[name.split(PATH_SEPARATOR)[0]] |= indices
    if len(tops) <= max_categories:
        return normalized

    candidates = {top: len(indices) for top, indices in tops.items() if top != overflow}
    kept = {top for top, _ in rank_counts(candidates)[:max_categories - 1]}
    logger.debug(
        f"Batch uses {len(tops)} categories, keeping {sorted(kept)} and folding the rest into {overflow!r}"
    )

    limited: Dict[str, Set[int]] = {}
    folded: Set[int] = set()
    for name, indices in normalized.items():
        if name.split(PATH_SEPARATOR)[0] in kept:
            limited[name] = indices
        else:
            folded |= indices
    # An entry listed under a kept category stays there
    for indices in limited.values():
        folded -= indices
    if folded:
        limited[overflow] = folded
    return limited


def _allowed_lookup(allowed: Optional[Iterable[str]], overflow: str) -> Optional[Dict[str, str]]:
    if not allowed:
        return None
    lookup = {}
    for name in allowed:
        segments = split_label(name, 1)
        if segments:
            lookup.setdefault(segments[0].casefold(), segments[0])
    lookup.setdefault(overflow.casefold(), overflow)
    return lookup
