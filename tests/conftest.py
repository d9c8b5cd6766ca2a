import json
import re

import pytest

from bookmark_organizer.services.bookmark_store import BookmarkStore

LISTING_LINE = re.compile(r'^(\d+)\. (.+?)(?: \([^)]*\))?$', re.MULTILINE)


class FakeClassifier:
    """Stands in for a ClassifierClient.

    ``respond`` receives the prompt and the listed (index, title) pairs and
    returns the raw model text.
    """

    def __init__(self, respond):
        self.respond = respond
        self.prompts = []

    async def classify(self, prompt: str) -> str:
        self.prompts.append(prompt)
        listed = [(int(index), title) for index, title in LISTING_LINE.findall(prompt)]
        result = self.respond(prompt, listed)
        if isinstance(result, Exception):
            raise result
        return result if isinstance(result, str) else json.dumps(result)


def by_title_prefix(prompt, listed):
    """Classify 'Cat: name' titles into Cat."""
    categories = {}
    for index, title in listed:
        categories.setdefault(title.split(':')[0], []).append(index)
    return categories


def make_store(categories_by_folder=None, loose=0):
    """Root '0' with folder '1' holding subfolders of bookmarks."""
    children = []
    counter = 100
    for folder, titles in (categories_by_folder or {}).items():
        items = []
        for title in titles:
            counter += 1
            items.append({'id': str(counter), 'title': title, 'url': f"https://example.com/{counter}"})
        counter += 1
        children.append({'id': str(counter), 'title': folder, 'children': items})
    for _ in range(loose):
        counter += 1
        children.append({'id': str(counter), 'title': f"Loose {counter}", 'url': f"https://loose.example/{counter}"})
    return BookmarkStore.from_dict({
        'id': '0', 'title': '', 'children': [{'id': '1', 'title': 'Bookmarks bar', 'children': children}],
    })


@pytest.fixture
def store():
    return make_store({
        'Old A': ['Tech: python docs', 'News: daily paper', 'Tech: rust book'],
        'Old B': ['Shop: shoes', 'News: weather'],
    })
