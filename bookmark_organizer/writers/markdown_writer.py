import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from ..models.bookmark import BookmarkNode, HealthVerdict
from ..services.bookmark_store import BookmarkStore, iter_tree


class MarkdownWriter:
    @staticmethod
    def make_anchor(text: str) -> str:
        """Create valid markdown anchor from text."""
        return re.sub(r'[^\w-]', '', text.lower().replace(' ', '-'))

    @staticmethod
    def format_link(title: Optional[str], url: str) -> str:
        if title and title != url:
            return f"- {title}: {url}\n"
        return f"- {url}\n"

    def write_report(self, store: BookmarkStore, root_id: str,
                     verdicts: Optional[Iterable[HealthVerdict]] = None, output_file: str = 'bookmarks_report.md'):
        """Write the folder hierarchy under root_id and any dead links to a markdown file."""
        folders = [node for node in store.get_children(root_id) if node.is_folder]
        dead = [verdict for verdict in (verdicts or []) if not verdict.alive]

        with open(output_file, 'w', encoding='utf-8') as f:
            f.write("# Organized Bookmarks\n\n")
            f.write(f"*Generated on {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC*\n")

            total_links = sum(1 for _ in store.iter_bookmarks(root_id))
            f.write(f"*Total Links: {total_links} in {len(folders)} categories*\n\n")

            # Table of Contents
            f.write("## Table of Contents\n\n")
            for folder in folders:
                count = sum(1 for _ in store.iter_bookmarks(folder.id))
                f.write(f"- [**{folder.title}**](#{self.make_anchor(folder.title)}) ({count} links)\n")
            if dead:
                f.write(f"- [Links Not Working](#links-not-working) ({len(dead)} links)\n")
            f.write("\n---\n\n")

            for folder in folders:
                f.write(f"## {folder.title}\n\n")
                self._write_folder(f, folder)

            loose = [node for node in store.get_children(root_id) if not node.is_folder]
            if loose:
                f.write("## Unsorted\n\n")
                for node in loose:
                    f.write(self.format_link(node.title, node.url))
                f.write("\n")

            if dead:
                f.write("## Links Not Working\n\n")
                titles = {node.id: node.title for node in store.iter_bookmarks()}
                for verdict in sorted(dead, key=lambda v: (titles.get(v.entry_id) or v.url).lower()):
                    reason = verdict.error or f"HTTP {verdict.status}"
                    f.write(self.format_link(titles.get(verdict.entry_id), verdict.url).rstrip('\n'))
                    f.write(f" ({reason})\n")
                f.write("\n")

    def _write_folder(self, f, folder: BookmarkNode):
        # Headings stop at level 6; deeper folders are flattened into it
        for node, depth in iter_tree(folder):
            if node is folder:
                links = self._links(node.children)
            elif node.is_folder:
                f.write(f"{'#' * min(depth + 2, 6)} {node.title}\n\n")
                links = self._links(node.children)
            else:
                continue
            for link in links:
                f.write(self.format_link(link.title, link.url))
            if links:
                f.write("\n")

    @staticmethod
    def _links(nodes: List[BookmarkNode]) -> List[BookmarkNode]:
        return sorted(
            (node for node in nodes if not node.is_folder),
            key=lambda e: ((e.title or '').lower() or e.url.lower(), e.url.lower()),
        )
