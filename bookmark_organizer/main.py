import asyncio
import logging
import sys
from argparse import ArgumentParser

from .errors import OrganizerError
from .services.bookmark_store import BookmarkStore
from .services.organizer import BookmarkOrganizer
from .writers.markdown_writer import MarkdownWriter

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = ArgumentParser(
        description='Organize bookmarks into AI-chosen category folders and find dead links.'
    )
    parser.add_argument(
        '-b', '--bookmarks',
        type=str,
        default='bookmarks.json',
        help='Bookmark tree JSON file, updated in place (default: bookmarks.json)'
    )
    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to YAML configuration file'
    )
    parser.add_argument(
        '-o', '--output',
        type=str,
        help='Write a markdown report to this file'
    )
    parser.add_argument(
        '-y', '--yes',
        action='store_true',
        help='Do not ask before destructive changes'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    commands = parser.add_subparsers(dest='command', required=True)

    organize = commands.add_parser('organize', help='Classify bookmarks and move them into category folders')
    organize.add_argument(
        '--reset',
        action='store_true',
        help='Rebuild the folder structure from scratch (bookmarks are backed up first)'
    )

    check = commands.add_parser('check', help='Probe bookmarks for dead links')
    check.add_argument(
        '--strict',
        action='store_true',
        default=None,
        help='Also flag pages that look like error pages despite a success status'
    )
    check.add_argument(
        '--delete',
        action='store_true',
        help='Delete the dead bookmarks found'
    )
    return parser.parse_args(argv)


def setup_logging(debug: bool, log_file: str = 'organizer.log'):
    """Log everything to a file and a short form to the console."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.setLevel(logging.DEBUG)

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def make_confirm(assume_yes: bool):
    def confirm(prompt: str) -> bool:
        if assume_yes:
            return True
        return input(f"{prompt} [y/N] ").strip().lower() in ('y', 'yes')
    return confirm


async def run(args) -> int:
    store = BookmarkStore.load(args.bookmarks)
    organizer = BookmarkOrganizer(args.config, store=store)
    confirm = make_confirm(args.yes)
    verdicts = []

    try:
        if args.command == 'organize':
            report = await organizer.organize(destructive_reset=args.reset, confirm=confirm)
            logger.info(f"""Organize Summary:
        Bookmarks moved: {report.moved}
        Category folders: {len(report.categories)}
        Failed moves: {report.failed}
        Failed batches: {len(report.failed_batches)}
        """)
            if report.backup_id:
                logger.warning(f"Some bookmarks remain in backup folder {report.backup_id}")
        else:
            verdicts = await organizer.check_links(strict=args.strict)
            dead = [verdict for verdict in verdicts if not verdict.alive]
            for verdict in dead:
                logger.info(f"Dead: {verdict.url} ({verdict.error or verdict.status})")
            logger.info(f"Checked {len(verdicts)} links, {len(dead)} dead")
            if args.delete:
                deleted = organizer.delete_dead(verdicts, confirm=confirm)
                logger.info(f"Deleted {deleted.deleted} bookmarks, {deleted.failed} failed")
    finally:
        store.save(args.bookmarks)

    if args.output:
        logger.info(f"Writing report to {args.output}...")
        MarkdownWriter().write_report(store, organizer.root_id, verdicts, args.output)
    return 0


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.debug)

    try:
        sys.exit(asyncio.run(run(args)))
    except OrganizerError as e:
        logger.error(f"An error occurred: {e}")
        backup_id = getattr(e, 'backup_id', None)
        if backup_id:
            logger.error(f"Your bookmarks are safe in backup folder {backup_id}")
        if args.debug:
            logger.exception("Detailed error information:")
        sys.exit(1)


if __name__ == "__main__":
    main()
