"""
Content sources for fetching bookmark text.
"""

import asyncio
import logging
from typing import Optional

import httpx

from ..errors import ContentUnavailable
from ..types import Item
from .base import get_registry

logger = logging.getLogger(__name__)


def extract_html_text(html_content: str) -> str:
    """
    Extract readable text from HTML, removing scripts and styles.

    Args:
        html_content: Raw HTML string (may be truncated mid-document)

    Returns:
        Extracted text with whitespace normalized
    """
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(html_content, "html.parser")

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    # Prefer the main article when the page marks one up
    root = soup.find("article") or soup.find("main") or soup.body or soup

    text = root.get_text()

    lines = (line.strip() for line in text.splitlines())
    chunks = (phrase.strip() for line in lines for phrase in line.split("  "))
    return '\n'.join(chunk for chunk in chunks if chunk)


class HttpContentSource:
    """
    Fetches bookmark pages over HTTP/HTTPS.

    Each acquisition opens its own client and always closes it. The load
    deadline is soft: when ``timeout`` seconds pass before the body is
    complete, whatever arrived so far is extracted and returned.
    """

    def __init__(self, timeout: float = 5.0, max_size: int = 5_000_000, user_agent: Optional[str] = None):
        """
        Args:
            timeout: Seconds to wait for the page before using partial content
            max_size: Maximum number of body bytes to read
            user_agent: User-Agent header to send
        """
        self.timeout = float(timeout)
        self.max_size = int(max_size)
        self.user_agent = user_agent

    def supports(self, uri: str) -> bool:
        """Only http and https bookmarks have fetchable pages."""
        return uri.startswith("http://") or uri.startswith("https://")

    def _new_client(self) -> httpx.AsyncClient:
        if self.user_agent:
            agent = self.user_agent
        else:
            from perch import __version__
            agent = f"perch/{__version__}"
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": agent},
        )

    async def _download(self, client: httpx.AsyncClient, url: str, chunks: list[bytes], meta: dict) -> None:
        async with client.stream("GET", url) as resp:
            resp.raise_for_status()
            meta["content_type"] = resp.headers.get("content-type", "text/plain").split(";")[0].strip()
            meta["encoding"] = resp.encoding or "utf-8"
            downloaded = 0
            async for chunk in resp.aiter_bytes():
                downloaded += len(chunk)
                if downloaded > self.max_size:
                    chunks.append(chunk[:self.max_size - (downloaded - len(chunk))])
                    break
                chunks.append(chunk)

    async def acquire(self, item: Item) -> Optional[str]:
        """Fetch the page behind a bookmark and return its readable text."""
        url = item.url
        if not url or not self.supports(url):
            raise ContentUnavailable(f"Unsupported URL for {item.id}: {url!r}")

        chunks: list[bytes] = []
        meta: dict = {}
        client = self._new_client()
        try:
            await asyncio.wait_for(self._download(client, url, chunks, meta), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Page load timed out for %s, extracting content from partially loaded page", url)
        except httpx.HTTPError as e:
            raise ContentUnavailable(f"Failed to fetch {url}: {e}") from e
        finally:
            await client.aclose()

        if not chunks:
            raise ContentUnavailable(f"No content received from {url}")

        content = b"".join(chunks).decode(meta.get("encoding", "utf-8"), errors="replace")
        content_type = meta.get("content_type", "text/plain")
        if content_type in ("text/html", "application/xhtml+xml"):
            content = extract_html_text(content)
        elif not content_type.startswith("text/"):
            raise ContentUnavailable(f"Unsupported content type for {url}: {content_type}")

        logger.debug("Text content extracted from %s: %s", url, content[:100].replace("\n", " "))
        return content


# Registered under the name perch.toml uses
_registry = get_registry()
_registry.register_content("http", HttpContentSource)
