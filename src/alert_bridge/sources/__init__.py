# SPDX-License-Identifier: MIT
# src/alert_bridge/sources/__init__.py
"""
Item sources: the Teams channel (chat items) and the announcements page
(news items).
"""

from .graph_channel import ClientCredentialsToken, GraphChannelSource
from .news_pages import HtmlNewsSource, NewsSelectors

__all__ = [
    "ClientCredentialsToken",
    "GraphChannelSource",
    "HtmlNewsSource",
    "NewsSelectors",
]
