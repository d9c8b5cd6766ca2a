import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

import yaml

from ..errors import CatastrophicPlanningError, OrganizerError, PartialMoveError, PlanningError, StoreError
from ..models.bookmark import HealthVerdict
from ..models.plan import RunContext
from ..utils.url_validator import DEFAULT_USER_AGENT, LinkHealthChecker
from .bookmark_store import BookmarkStore
from .classifier_client import ClassifierClient, create_client
from .planner import ReorganizationPlanner
from .reconciler import FolderReconciler, MaterializeResult

logger = logging.getLogger(__name__)


@dataclass
class OrganizeReport:
    moved: int = 0
    categories: List[str] = field(default_factory=list)
    failed: int = 0
    failed_batches: List[int] = field(default_factory=list)
    backup_id: Optional[str] = None


@dataclass
class DeleteReport:
    deleted: int = 0
    failed: int = 0


class BookmarkOrganizer:
    def __init__(self, config_path: Optional[str] = None, store: Optional[BookmarkStore] = None,
                 client: Optional[ClassifierClient] = None):
        """Initialize the BookmarkOrganizer with configuration."""
        self.config = self.load_config(config_path)
        self.settings = self.config['settings']
        self.store = store or BookmarkStore()
        self._client = client
        self.reconciler = FolderReconciler(
            self.store,
            backup_prefix=self.settings.get('backup_folder_prefix', 'Backup'),
            show_progress=self.settings.get('show_progress', True),
        )

    @property
    def client(self) -> ClassifierClient:
        if self._client is None:
            self._client = create_client(self.config['ai'])
        return self._client

    @property
    def root_id(self) -> str:
        return str(self.settings.get('root_folder_id') or self.store.get_tree().id)

    async def organize(self, destructive_reset: bool = False,
                       confirm: Optional[Callable[[str], bool]] = None) -> OrganizeReport:
        """Classify every bookmark under the managed root and move it into its category folder."""
        bookmarks = list(self.store.iter_bookmarks(self.root_id))
        if not bookmarks:
            logger.warning("No bookmarks to organize")
            return OrganizeReport()

        ctx = RunContext(self.root_id)
        planner = ReorganizationPlanner(self.client, self.settings)
        if destructive_reset:
            prompt = (f"This moves all {len(bookmarks)} bookmarks into a backup folder and deletes "
                      f"every other folder under the root. Continue?")
            if confirm is None or not confirm(prompt):
                logger.info("Reset cancelled")
                return OrganizeReport()
            self.reconciler.begin_reset(ctx)

        try:
            plan = await planner.build_plan(bookmarks)
        except PlanningError as e:
            if ctx.backup_id is not None:
                raise CatastrophicPlanningError(str(e), ctx.backup_id) from e
            raise
        if not plan.assignments and ctx.backup_id is not None:
            raise CatastrophicPlanningError("No bookmark could be classified", ctx.backup_id)

        report = OrganizeReport(failed_batches=list(plan.failed_batches))
        try:
            result = self.reconciler.materialize(plan, self.root_id, context=ctx)
        except PartialMoveError as e:
            result = e.result or MaterializeResult(e.moved_count)
            report.failed = len(e.errors)
        report.moved = result.moved_count
        report.categories = result.category_paths
        report.backup_id = result.backup_id

        if self.settings.get('rank_categories'):
            ranked = await planner.rank_categories(plan)
            self.reconciler.reorder_categories(self.root_id, ranked, plan.counts())

        logger.info(
            f"Organized {report.moved} bookmarks into {len(report.categories)} folders"
            + (f", {report.failed} failed" if report.failed else "")
        )
        return report

    async def check_links(self, strict: Optional[bool] = None) -> List[HealthVerdict]:
        health = self.config['health']
        checker = LinkHealthChecker(
            concurrency=health.get('concurrency', 10),
            timeout=health.get('timeout', 8),
            strict=health.get('strict', False) if strict is None else strict,
            max_retries=health.get('max_retries', 1),
            user_agent=health.get('user_agent') or DEFAULT_USER_AGENT,
            show_progress=self.settings.get('show_progress', True),
        )
        return await checker.check_all(self.store.iter_bookmarks(self.root_id))

    def delete_dead(self, verdicts: List[HealthVerdict],
                    confirm: Optional[Callable[[str], bool]] = None) -> DeleteReport:
        """Remove the bookmarks of dead verdicts after confirmation."""
        ctx = RunContext(self.root_id, pending_deletes=[v.entry_id for v in verdicts if not v.alive])
        report = DeleteReport()
        if not ctx.pending_deletes:
            return report
        prompt = f"Delete {len(ctx.pending_deletes)} dead bookmarks? This cannot be undone."
        if confirm is None or not confirm(prompt):
            logger.info("Deletion cancelled")
            return report

        for entry_id in ctx.pending_deletes:
            try:
                self.store.remove(entry_id)
            except StoreError as e:
                logger.error(f"Failed to remove bookmark {entry_id}: {e}")
                report.failed += 1
            else:
                report.deleted += 1
        logger.info(f"Deleted {report.deleted} dead bookmarks" + (f", {report.failed} failed" if report.failed else ""))
        return report

    @staticmethod
    def load_config(config_path: Optional[str]) -> dict:
        """Load configuration from YAML file or use defaults."""
        default_config = {
            'settings': {
                'batch_size': 50,
                'max_categories': 0,
                'allowed_categories': [],
                'flatten': False,
                'max_depth': 3,
                'overflow_category': 'Other',
                'promote_overflow': True,
                'promotion_max_categories': 5,
                'review_overflow': False,
                'rank_categories': False,
                'root_folder_id': None,
                'backup_folder_prefix': 'Backup',
                'show_progress': True,
            },
            'ai': {
                'provider': 'gemini',
                'model': None,
                'base_url': None,
                'api_key': None,
                'temperature': 0.1,
                'max_output_tokens': 4096,
                'timeout': 60,
                'max_attempts': 3,
                'backoff_seconds': 0.8,
            },
            'health': {
                'concurrency': 10,
                'timeout': 8,
                'strict': False,
                'max_retries': 1,
                'user_agent': None,
            },
        }

        if not config_path:
            logger.info("Using default configuration")
            return default_config

        config_path = Path(config_path)
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}")
            return default_config

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file: {e}")
            return default_config

        if not loaded_config:
            logger.warning("Empty configuration file, using defaults")
            return default_config
        if not isinstance(loaded_config, dict):
            raise OrganizerError(f"Configuration in {config_path} must be a mapping")

        # Merge with defaults to ensure all required settings exist
        return {
            section: {**defaults, **(loaded_config.get(section) or {})}
            for section, defaults in default_config.items()
        }
