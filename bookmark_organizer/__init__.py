"""Sort bookmarks into AI-chosen category folders and find dead links."""

__version__ = "1.0.0"
