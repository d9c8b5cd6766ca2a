import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

import aiohttp
from bs4 import BeautifulSoup
from tqdm import tqdm

from ..errors import ProbeTimeout
from ..models.bookmark import BookmarkNode, HealthVerdict
from .batching import split
from .retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'

# HEAD rejected; retry with a ranged GET
FALLBACK_STATUSES = {403, 405}

ERROR_TITLE_PATTERNS = [re.compile(pattern, re.IGNORECASE) for pattern in (
    # Status codes only count next to error wording or on their own
    r'^\W*(?:error\W*)?(?:404|410|5\d\d)\W*$',
    r'\berror\W*(?:404|410|5\d\d)\b',
    r'\b(?:404|410|5\d\d)\b\W*(?:error|not found|gone|bad gateway|service unavailable|internal server error)',
    r'\bnot found\b',
    r'page (?:does not exist|unavailable|no longer exists)',
    r'bad gateway|service (?:temporarily )?unavailable|internal server error',
    r'access denied',
    r'\bforbidden\b',
    r'domain (?:is )?for sale',
    r'domain (?:has )?expired',
    r'account (?:has been )?suspended',
    r'site (?:is )?(?:unavailable|not found|can.t be reached)',
    r'页面不存在|无法访问|找不到',
)]


@dataclass
class ProbeResponse:
    status: int
    title: Optional[str] = None
    url: Optional[str] = None


class HttpProbe:
    """HEAD and ranged GET requests over a shared aiohttp session."""

    def __init__(self, session: aiohttp.ClientSession, timeout: float = 8, read_bytes: int = 16384):
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.read_bytes = read_bytes

    async def head(self, url: str) -> ProbeResponse:
        async with self.session.head(url, allow_redirects=True, timeout=self.timeout) as response:
            return ProbeResponse(response.status, url=str(response.url))

    async def get(self, url: str, read_title: bool = False) -> ProbeResponse:
        headers = {'Range': f'bytes=0-{self.read_bytes - 1}'}
        async with self.session.get(url, headers=headers, allow_redirects=True, timeout=self.timeout) as response:
            title = None
            if read_title and response.status < 400:
                body = await response.content.read(self.read_bytes)
                title = extract_title(decode_body(body, response.charset))
            return ProbeResponse(response.status, title, str(response.url))


class LinkHealthChecker:
    def __init__(self, concurrency: int = 10, timeout: float = 8, strict: bool = False,
                 max_retries: int = 1, user_agent: str = DEFAULT_USER_AGENT, show_progress: bool = True):
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self.concurrency = concurrency
        self.timeout = timeout
        self.strict = strict
        self.user_agent = user_agent
        self.show_progress = show_progress
        self.retry_policy = RetryPolicy(
            max_attempts=max_retries + 1,
            backoff_seconds=0.5,
            retry_on=(aiohttp.ClientConnectionError,),
        )

    async def check_all(self, entries: Iterable[BookmarkNode], probe=None) -> List[HealthVerdict]:
        """Check every http(s) bookmark, `concurrency` at a time."""
        targets = [entry for entry in entries if is_http_url(entry.url)]
        if probe is not None:
            return await self._check_windows(targets, probe)

        async with aiohttp.ClientSession(headers={'User-Agent': self.user_agent}) as session:
            return await self._check_windows(targets, HttpProbe(session, self.timeout))

    async def _check_windows(self, targets: List[BookmarkNode], probe) -> List[HealthVerdict]:
        verdicts = []
        with tqdm(total=len(targets),
                  desc="Checking links",
                  unit="link",
                  disable=not self.show_progress) as pbar:
            for window in split(targets, self.concurrency):
                results = await asyncio.gather(
                    *[self.check_entry(probe, entry) for entry in window],
                    return_exceptions=True,
                )
                for entry, result in zip(window, results):
                    if isinstance(result, Exception):
                        logger.error(f"Unexpected error checking {entry.url}: {result!r}")
                        result = HealthVerdict(entry.id, entry.url, alive=False, error=repr(result))
                    verdicts.append(result)
                pbar.update(len(window))

        dead = sum(1 for verdict in verdicts if not verdict.alive)
        logger.info(f"Link check complete: {len(verdicts) - dead} alive, {dead} dead")
        return verdicts

    async def check_entry(self, probe, entry: BookmarkNode) -> HealthVerdict:
        url = entry.url
        try:
            response = await run_with_retry(
                lambda: self._probe(probe, url),
                self.retry_policy,
                description=f"Probe of {url}",
            )
        except ProbeTimeout:
            logger.debug(f"Timed out after {self.timeout}s: {url}")
            return HealthVerdict(entry.id, url, alive=False, error='timeout')
        except aiohttp.ClientError as e:
            logger.debug(f"Request failed for {url}: {e!r}")
            return HealthVerdict(entry.id, url, alive=False, error=str(e) or type(e).__name__)
        return self.verdict(entry, response)

    async def _probe(self, probe, url: str) -> ProbeResponse:
        try:
            response = await probe.head(url)
            if response.status in FALLBACK_STATUSES:
                logger.debug(f"HEAD returned {response.status} for {url}, retrying with GET")
                response = await probe.get(url, read_title=self.strict)
            elif self.strict and response.status < 400:
                response = await probe.get(url, read_title=True)
        except asyncio.TimeoutError as e:
            raise ProbeTimeout(url) from e
        return response

    def verdict(self, entry: BookmarkNode, response: ProbeResponse) -> HealthVerdict:
        if response.status >= 400:
            return HealthVerdict(entry.id, entry.url, alive=False, status=response.status,
                                 error=f"HTTP {response.status}")
        if self.strict:
            reason = soft_failure_reason(response.title, entry.url)
            if reason:
                return HealthVerdict(entry.id, entry.url, alive=False, status=response.status, error=reason)
        return HealthVerdict(entry.id, entry.url, alive=True, status=response.status)


def soft_failure_reason(title: Optional[str], url: str) -> Optional[str]:
    """Why a page answering with a success status still looks dead, if it does."""
    if not title:
        return None
    title = title.strip()
    if _same_url(title, url):
        return 'title is the bare URL'
    for pattern in ERROR_TITLE_PATTERNS:
        if pattern.search(title):
            return f"error page title: {title[:80]}"
    return None


def decode_body(body: bytes, charset: Optional[str]) -> str:
    """Decode with the declared charset, falling back to UTF-8 when it is unknown."""
    try:
        return body.decode(charset or 'utf-8', errors='ignore')
    except LookupError:
        logger.debug(f"Unknown charset {charset!r}, decoding as UTF-8")
        return body.decode('utf-8', errors='ignore')


def extract_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, 'html.parser')
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


def is_http_url(url: Optional[str]) -> bool:
    return bool(url) and url.lower().startswith(('http://', 'https://'))


def _same_url(a: str, b: str) -> bool:
    return a.strip().rstrip('/').lower() == b.strip().rstrip('/').lower()
