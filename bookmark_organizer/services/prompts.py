from typing import Iterable, Optional, Sequence
from urllib.parse import urlparse

from ..models.bookmark import BookmarkNode

UNTITLED = 'Untitled'


def build_bookmarks_info(bookmarks: Sequence[BookmarkNode]) -> str:
    """Numbered listing of a batch: '<index>. <title> (<hostname>)'."""
    lines = []
    for index, bookmark in enumerate(bookmarks):
        title = bookmark.title or UNTITLED
        hostname = urlparse(bookmark.url).hostname if bookmark.url else None
        lines.append(f"{index}. {title} ({hostname})" if hostname else f"{index}. {title}")
    return '\n'.join(lines)


def build_prompt(
    bookmarks_info: str,
    category_list: Optional[Iterable[str]] = None,
    max_categories: int = 0,
    flatten: bool = False,
    max_depth: int = 3,
    overflow: str = 'Other',
    avoid_overflow: bool = False,
) -> str:
    category_list = list(category_list or [])
    list_text = (
        f"\nAvailable categories (use exactly these names): {', '.join(category_list)}"
        if category_list else ''
    )
    limit_text = (
        f'\nUse at most {max_categories} categories; put anything else into "{overflow}".'
        if max_categories and max_categories > 0 else ''
    )
    if flatten:
        depth_text = '\nDo not use subcategories or slashes, return top-level categories only.'
    else:
        depth_text = f'\nSubcategories may be written as "Parent/Child", at most {max_depth} levels deep.'
    overflow_text = (
        f'\nDo not use "{overflow}"; pick the most specific category that fits.'
        if avoid_overflow else ''
    )

    return f"""You are a bookmark classification assistant. Classify the following bookmarks.{list_text}{limit_text}{depth_text}{overflow_text}

Bookmarks:
{bookmarks_info}

Return a JSON object in this format:
{{"Category 1": [index array], "Category 2": [index array]}}

For example:
{{"Technology": [0, 2, 5], "Entertainment": [1, 3], "Shopping": [4]}}

Use short category names such as: Technology, Social, Entertainment, Shopping, News, Tools, {overflow}
Return only the JSON, nothing else."""


def build_ranking_prompt(categories: Sequence[str]) -> str:
    names = '\n'.join(f"- {name}" for name in categories)
    return f"""You are organizing a bookmark bar. Order these bookmark folders from most to least important for everyday use.

Folders:
{names}

Return a JSON array of the folder names, most important first, for example:
["Work", "News", "Shopping"]

Use the names exactly as given. Return only the JSON, nothing else."""
