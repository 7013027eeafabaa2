from __future__ import annotations

import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from groundsearch.config import settings
from groundsearch.errors import IngestBlockedError
from groundsearch.services.logger import logger

STRIP_TAGS = ("script", "style", "nav", "footer", "header", "noscript")


@dataclass
class IngestedPage:
    url: str
    title: str
    text: str
    method: str


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _extract_title(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    title = soup.title.string if soup.title and soup.title.string else ""
    return _normalize_text(title) or "Untitled"


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(STRIP_TAGS):
        tag.decompose()
    return _normalize_text(soup.get_text(" "))


def clean_html(raw_html: str, *, max_chars: int | None = None) -> tuple[str, str, str]:
    """Return (title, main text, method) for a raw HTML page."""
    target_chars = settings.ingest_max_chars if max_chars is None else max_chars
    title = _extract_title(raw_html)

    text = _extract_with_trafilatura(raw_html)
    method = "trafilatura"
    if not text:
        text = _extract_with_soup(raw_html)
        method = "soup"
    return title, _truncate(text, target_chars), method


async def ingest_url(url: str) -> IngestedPage:
    """Fetch a page through the fetch proxy and reduce it to readable text.

    Any failure to obtain usable content raises ``IngestBlockedError``; the
    caller treats it as a pause for manual content, not as a step failure.
    """
    proxy = settings.ingest_proxy_url.strip()
    try:
        async with httpx.AsyncClient(timeout=settings.ingest_timeout_s, follow_redirects=True) as client:
            if proxy:
                response = await client.get(proxy, params={"url": url})
            else:
                response = await client.get(url)
            response.raise_for_status()
            raw_html = response.text
    except httpx.HTTPError as exc:
        logger.warning(f"Ingest failed for {url}: {exc}")
        raise IngestBlockedError(url, str(exc) or exc.__class__.__name__) from exc

    title, text, method = clean_html(raw_html)
    if not text:
        raise IngestBlockedError(url, "no readable content")
    return IngestedPage(url=url, title=title, text=text, method=method)
