import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Set

from tqdm import tqdm

from ..errors import ClassifierError, MalformedResponse, ParseError, PlanningError
from ..models.bookmark import BookmarkNode
from ..models.plan import CategoryPath, Plan, rank_counts
from ..utils.batching import split
from ..utils.response_parser import as_category_list, as_category_map, parse_response
from .classifier_client import ClassifierClient
from .normalizer import normalize_categories
from .prompts import build_bookmarks_info, build_prompt, build_ranking_prompt

logger = logging.getLogger(__name__)


class ReorganizationPlanner:
    """Builds a Plan by classifying bookmarks batch by batch with a ClassifierClient."""

    def __init__(self, client: ClassifierClient, settings: dict):
        self.client = client
        self.batch_size = settings.get('batch_size', 50)
        self.max_categories = settings.get('max_categories') or 0
        self.allowed = list(settings.get('allowed_categories') or [])
        self.flatten = settings.get('flatten', False)
        self.max_depth = settings.get('max_depth', 3)
        self.overflow = settings.get('overflow_category', 'Other')
        self.promote_overflow = settings.get('promote_overflow', True)
        self.promotion_max_categories = settings.get('promotion_max_categories', 5)
        self.review_overflow = settings.get('review_overflow', False)
        self.show_progress = settings.get('show_progress', True)

    async def build_plan(self, bookmarks: Sequence[BookmarkNode]) -> Plan:
        bookmarks = list(bookmarks)
        plan = Plan(self.overflow)
        batches = split(bookmarks, self.batch_size)
        logger.info(f"Classifying {len(bookmarks)} bookmarks in {len(batches)} batches")

        with tqdm(total=len(batches),
                  desc="Classifying bookmarks",
                  unit="batch",
                  disable=not self.show_progress) as pbar:
            for index, batch in enumerate(batches):
                try:
                    normalized = await self.classify_batch(
                        batch,
                        index=index,
                        allowed=self.allowed,
                        max_categories=self.max_categories,
                        flatten=self.flatten,
                    )
                except (ParseError, MalformedResponse) as e:
                    logger.warning(f"Skipping batch: {e}")
                    plan.failed_batches.append(index)
                except ClassifierError as e:
                    raise PlanningError(str(e), index, plan) from e
                else:
                    plan.merge_batch(batch, normalized)
                    logger.debug(f"Batch {index + 1}: {sorted(normalized)}")
                pbar.update(1)

        self.limit_capacity(plan)

        by_id = {bookmark.id: bookmark for bookmark in bookmarks}
        if self.promote_overflow:
            await self.promote(plan, by_id)
        if self.review_overflow:
            await self.review(plan, by_id)

        logger.info(
            f"Planned {len(plan)} bookmarks into {len(plan.counts())} categories"
            + (f" ({len(plan.failed_batches)} batches failed)" if plan.failed_batches else "")
        )
        return plan

    async def classify_batch(
        self,
        batch: Sequence[BookmarkNode],
        index: Optional[int] = None,
        allowed: Optional[List[str]] = None,
        max_categories: int = 0,
        flatten: bool = False,
        avoid_overflow: bool = False,
    ) -> Dict[str, Set[int]]:
        prompt = build_prompt(
            build_bookmarks_info(batch),
            category_list=allowed,
            max_categories=max_categories,
            flatten=flatten,
            max_depth=self.max_depth,
            overflow=self.overflow,
            avoid_overflow=avoid_overflow,
        )
        text = await self.client.classify(prompt)
        try:
            result = as_category_map(parse_response(text))
        except ParseError as e:
            raise ParseError(str(e), batch_index=index) from e

        return normalize_categories(
            result.categories,
            len(batch),
            allowed=allowed,
            max_categories=max_categories,
            flatten=flatten,
            max_depth=self.max_depth,
            overflow=self.overflow,
        )

    def limit_capacity(self, plan: Plan):
        """Keep at most max_categories top-level categories, overflow included."""
        if self.max_categories <= 0:
            return
        counts = plan.counts()
        if len(counts) <= self.max_categories:
            return

        ranked = [name for name, _ in rank_counts(counts)]
        selected = ranked[:self.max_categories]
        if self.overflow not in selected:
            selected = selected[:self.max_categories - 1] + [self.overflow]
        evicted = [name for name in ranked if name not in selected]
        folded = plan.fold_into_overflow(evicted)
        logger.info(
            f"Limited {len(counts)} categories to {len(selected)}; "
            f"moved {folded} bookmarks from {len(evicted)} categories into {self.overflow!r}"
        )

    async def promote(self, plan: Plan, by_id: Dict[str, BookmarkNode]):
        """Lift the most common sub-category of the overflow bucket to top level."""
        if self.allowed:
            return
        members = [by_id[entry_id] for entry_id in plan.members(self.overflow) if entry_id in by_id]
        if not members:
            return

        logger.info(f"Looking for a category to promote among {len(members)} {self.overflow!r} bookmarks")
        try:
            sub_categories = await self._reclassify(
                members,
                max_categories=self.promotion_max_categories,
                flatten=True,
                avoid_overflow=True,
            )
        except ClassifierError as e:
            logger.warning(f"Promotion skipped: {e}")
            return
        if not sub_categories:
            return

        counts = Counter(path.top for path in sub_categories.values())
        candidate, candidate_count = rank_counts(counts)[0]
        candidate_path = CategoryPath((candidate,))
        promoted = [entry_id for entry_id, path in sub_categories.items() if path.top == candidate]

        existing = {name: count for name, count in plan.counts().items() if name != self.overflow}
        if candidate in existing:
            for entry_id in promoted:
                plan.assign(entry_id, candidate_path)
            logger.info(f"Moved {len(promoted)} bookmarks from {self.overflow!r} into {candidate!r}")
            return

        smallest, smallest_count = rank_counts(existing)[-1] if existing else (None, 0)
        # Overflow keeps its own slot once used
        needs_eviction = self.max_categories > 0 and len(existing) + 2 > self.max_categories
        has_room = self.max_categories > 0 and not needs_eviction
        if not has_room and candidate_count <= smallest_count:
            logger.info(
                f"Not promoting {candidate!r} ({candidate_count}): "
                f"smallest category {smallest!r} has {smallest_count}"
            )
            return

        if needs_eviction:
            if smallest is None:
                return
            plan.fold_into_overflow([smallest])
            logger.info(f"Evicted {smallest!r} ({smallest_count}) into {self.overflow!r}")
        for entry_id in promoted:
            plan.assign(entry_id, candidate_path)
        logger.info(f"Promoted {candidate!r} with {candidate_count} bookmarks")

    async def review(self, plan: Plan, by_id: Dict[str, BookmarkNode]):
        """Give overflow bookmarks a second chance among the categories already planned."""
        categories = [name for name in plan.categories() if name != self.overflow]
        members = [by_id[entry_id] for entry_id in plan.members(self.overflow) if entry_id in by_id]
        if not categories or not members:
            return

        logger.info(f"Reviewing {len(members)} {self.overflow!r} bookmarks")
        try:
            reviewed = await self._reclassify(members, allowed=categories, flatten=self.flatten)
        except ClassifierError as e:
            logger.warning(f"Review skipped: {e}")
            return
        for entry_id, path in reviewed.items():
            plan.assign(entry_id, path)
        logger.info(f"Review moved {len(reviewed)} bookmarks out of {self.overflow!r}")

    async def rank_categories(self, plan: Plan) -> List[str]:
        """Ask the model to order the planned categories by importance."""
        known = plan.categories()
        if len(known) < 2:
            return known
        try:
            text = await self.client.classify(build_ranking_prompt(known))
            ranked = as_category_list(parse_response(text)).names
        except (ParseError, ClassifierError) as e:
            logger.warning(f"Category ranking failed, keeping size order: {e}")
            return known
        return order_categories(ranked, known)

    async def _reclassify(self, entries: List[BookmarkNode], **options) -> Dict[str, CategoryPath]:
        """Classify entries again; returns entry id -> path for everything not left in overflow."""
        assigned: Dict[str, CategoryPath] = {}
        for index, batch in enumerate(split(entries, self.batch_size)):
            try:
                normalized = await self.classify_batch(batch, index=index, **options)
            except (ParseError, MalformedResponse) as e:
                logger.warning(f"Skipping batch: {e}")
                continue
            for name, indices in normalized.items():
                if name == self.overflow:
                    continue
                path = CategoryPath.parse(name)
                for i in sorted(indices):
                    assigned[batch[i].id] = path
        return assigned


def order_categories(ranked: Iterable[str], known: Sequence[str]) -> List[str]:
    """Known categories in ranked order, followed by any the ranking left out."""
    lookup = {name.casefold(): name for name in known}
    ordered = []
    for name in ranked:
        match = lookup.get(name.strip().casefold())
        if match and match not in ordered:
            ordered.append(match)
    ordered.extend(name for name in known if name not in ordered)
    return ordered
