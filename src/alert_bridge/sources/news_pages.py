# SPDX-License-Identifier: MIT
# src/alert_bridge/sources/news_pages.py
"""
News connector for an HTML announcements page.

The listing page is scraped with CSS selectors; each item's article page is
fetched separately when its content is needed.
"""
from __future__ import annotations
import hashlib
import logging
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from ..errors import TransientSourceError
from ..models import RawNewsItem

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "alert-bridge/0.3 (+announcements watcher)"}


@dataclass(frozen=True)
class NewsSelectors:
    item: str = ".news-item"
    title: str = "a"
    date: str = ".date"
    content: str = "article"


def _short_hash(*parts: str, n=16) -> str:
    h = hashlib.sha256()
    for p in parts:
        h.update((p or "").encode("utf-8"))
        h.update(b"|")
    return h.hexdigest()[:n]


class HtmlNewsSource:
    """Lists announcements from one page and fetches their bodies."""

    def __init__(self, list_url: str, source_name: str, selectors: Optional[NewsSelectors] = None, timeout: int = 10):
        if not list_url:
            raise ValueError("NEWS_LIST_URL is required")
        self.list_url = list_url
        self.source_name = source_name
        self.selectors = selectors or NewsSelectors()
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def _get_html(self, url: str) -> str:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransientSourceError(f"[{self.source_name}] GET {url} failed: {e}") from e
        return response.text

    def list_items(self) -> List[RawNewsItem]:
        """
        Raises:
            TransientSourceError: the listing page could not be fetched
        """
        soup = BeautifulSoup(self._get_html(self.list_url), "html.parser")
        items: List[RawNewsItem] = []
        for node in soup.select(self.selectors.item):
            title_node = node.select_one(self.selectors.title)
            date_node = node.select_one(self.selectors.date)
            if title_node is None:
                logger.debug(f"[{self.source_name}] Listing entry without title, skipped")
                continue
            href = title_node.get("href") or ""
            url = urljoin(self.list_url, href) if href else self.list_url
            title = title_node.get_text(" ", strip=True)
            items.append(RawNewsItem(
                external_id=_short_hash(self.source_name, url if href else title),
                title=title,
                raw_date=date_node.get_text(" ", strip=True) if date_node else "",
                url=url,
            ))
        logger.info(f"[{self.source_name}] Listed {len(items)} announcements")
        return items

    def fetch_content(self, url: str) -> str:
        """
        Plain text of the article body (whole page text when the content
        selector matches nothing).

        Raises:
            TransientSourceError: the page could not be fetched
        """
        soup = BeautifulSoup(self._get_html(url), "html.parser")
        node = soup.select_one(self.selectors.content) or soup.body or soup
        return node.get_text("\n", strip=True)
