import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from tqdm import tqdm

from ..errors import PartialMoveError, ReconcileError, StoreError
from ..models.plan import Plan, RunContext
from .bookmark_store import BookmarkStore

logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult:
    moved_count: int = 0
    category_paths: List[str] = field(default_factory=list)
    backup_id: Optional[str] = None


class FolderReconciler:
    """Applies a Plan to the bookmark store.

    All folder mutations of a run go through this class, one at a time, so
    the per-parent lookup cache in the RunContext stays accurate.
    """

    def __init__(self, store: BookmarkStore, backup_prefix: str = 'Backup', show_progress: bool = True):
        self.store = store
        self.backup_prefix = backup_prefix
        self.show_progress = show_progress

    def materialize(
        self,
        plan: Plan,
        root_id: str,
        destructive_reset: bool = False,
        context: Optional[RunContext] = None,
    ) -> MaterializeResult:
        ctx = context or RunContext(root_id)
        if destructive_reset and ctx.backup_id is None:
            self.begin_reset(ctx)

        paths_used = set()
        try:
            with tqdm(total=len(plan.assignments),
                      desc="Moving bookmarks",
                      unit="bookmark",
                      disable=not self.show_progress) as pbar:
                for assignment in plan.assignments.values():
                    try:
                        folder_id = self.ensure_path(ctx, assignment.path.segments)
                        self.store.move(assignment.entry_id, folder_id)
                    except StoreError as e:
                        logger.error(f"Failed to move bookmark {assignment.entry_id} to {assignment.path}: {e}")
                        ctx.errors.append(f"{assignment.entry_id}: {e}")
                    else:
                        ctx.moved_count += 1
                        paths_used.add(str(assignment.path))
                    pbar.update(1)

            if plan.overflow_used:
                self.ensure_path(ctx, (plan.overflow,))
                paths_used.add(plan.overflow)
            if ctx.backup_id is not None:
                self.finish_reset(ctx, plan.overflow)
        except Exception as e:
            if ctx.backup_id is not None:
                raise ReconcileError(f"Reorganization failed: {e}", ctx.backup_id) from e
            raise

        result = MaterializeResult(ctx.moved_count, sorted(paths_used), ctx.backup_id)
        logger.info(f"Moved {result.moved_count} bookmarks into {len(result.category_paths)} folders")
        if ctx.errors:
            raise PartialMoveError(ctx.moved_count, list(ctx.errors), result)
        return result

    def ensure_path(self, ctx: RunContext, segments: Sequence[str]) -> str:
        """Return the folder for segments under the run's root, creating missing folders."""
        parent_id = ctx.root_id
        for title in segments:
            children = self._children(ctx, parent_id)
            folder_id = children.get(title)
            if folder_id is None:
                folder_id = self.store.create(parent_id, title).id
                children[title] = folder_id
                logger.debug(f"Created folder {title!r} ({folder_id}) under {parent_id}")
            parent_id = folder_id
        return parent_id

    def begin_reset(self, ctx: RunContext) -> str:
        """Move every bookmark under the root into a new backup folder and clear the rest.

        Nothing is deleted unless every bookmark reached the backup.
        """
        bookmarks = list(self.store.iter_bookmarks(ctx.root_id))
        title = f"{self.backup_prefix} {datetime.now().strftime('%Y-%m-%d %H:%M')}"
        try:
            backup = self.store.create(ctx.root_id, title)
        except StoreError as e:
            raise ReconcileError(f"Could not create backup folder: {e}") from e
        ctx.backup_id = backup.id
        logger.info(f"Moving {len(bookmarks)} bookmarks into backup folder {title!r} ({backup.id})")

        try:
            for bookmark in bookmarks:
                self.store.move(bookmark.id, backup.id)
            for child in self.store.get_children(ctx.root_id):
                if child.id != backup.id:
                    self.store.remove_tree(child.id)
        except StoreError as e:
            raise ReconcileError(f"Reset aborted: {e}", backup.id) from e

        ctx.reset_cache()
        return backup.id

    def finish_reset(self, ctx: RunContext, overflow: str):
        """Sweep unplanned leftovers into overflow; drop the backup once it is empty."""
        leftovers = [node for node in self.store.get_children(ctx.backup_id) if not node.is_folder]
        if leftovers:
            overflow_id = self.ensure_path(ctx, (overflow,))
            logger.info(f"Moving {len(leftovers)} unplanned bookmarks into {overflow!r}")
            for bookmark in leftovers:
                try:
                    self.store.move(bookmark.id, overflow_id)
                except StoreError as e:
                    logger.error(f"Failed to move bookmark {bookmark.id} out of backup: {e}")
                    ctx.errors.append(f"{bookmark.id}: {e}")
                else:
                    ctx.moved_count += 1

        if self.store.get_children(ctx.backup_id):
            logger.warning(f"Backup folder {ctx.backup_id} still holds bookmarks and was kept")
            return
        self.store.remove_tree(ctx.backup_id)
        logger.info(f"Removed empty backup folder {ctx.backup_id}")
        ctx.backup_id = None

    def reorder_categories(self, root_id: str, ranked: Iterable[str], known: Iterable[str]):
        """Reorder the root's category folders to follow ranked.

        Present categories missing from ranked go after the ranked ones; other
        nodes keep their positions.
        """
        known = set(known)
        children = self.store.get_children(root_id)
        managed = [node for node in children if node.is_folder and node.title in known]
        if len(managed) < 2:
            return

        rank = {name: i for i, name in enumerate(dict.fromkeys(ranked))}
        queue = iter(sorted(managed, key=lambda node: rank.get(node.title, len(rank))))
        desired = [next(queue) if node in managed else node for node in children]

        for index, node in enumerate(desired):
            if self.store.get_children(root_id)[index] is not node:
                self.store.move(node.id, root_id, index)
        logger.info(f"Reordered {len(managed)} category folders")

    def _children(self, ctx: RunContext, parent_id: str) -> dict:
        cached = ctx.children_cache.get(parent_id)
        if cached is None:
            cached = {}
            for node in self.store.get_children(parent_id):
                if node.is_folder:
                    cached.setdefault(node.title, node.id)
            ctx.children_cache[parent_id] = cached
        return cached
