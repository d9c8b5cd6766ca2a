from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse


@dataclass(eq=False)
class BookmarkNode:
    """A node of the bookmark tree: a link entry when it has a URL, a folder otherwise."""
    id: str
    title: str = ''
    url: Optional[str] = None
    parent_id: Optional[str] = None
    children: List['BookmarkNode'] = field(default_factory=list, repr=False)
    domain: Optional[str] = None

    def __post_init__(self):
        self.domain = urlparse(self.url).netloc if self.url else None

    @property
    def is_folder(self) -> bool:
        return self.url is None

    def to_dict(self) -> dict:
        data = {'id': self.id, 'title': self.title}
        if self.url is not None:
            data['url'] = self.url
        else:
            data['children'] = [child.to_dict() for child in self.children]
        return data


@dataclass
class HealthVerdict:
    entry_id: str
    url: str
    alive: bool
    status: Optional[int] = None
    error: Optional[str] = None
