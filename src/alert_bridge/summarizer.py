# SPDX-License-Identifier: MIT
# src/alert_bridge/summarizer.py
"""
Best-effort text summarization.

Any failure (no key, network, bad response) degrades to an excerpt of the
input; callers never have to handle a summarizer error.
"""
from __future__ import annotations
import logging
import re
from typing import Optional, Protocol, Sequence

import requests

from .models import RawItem

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")

MESSAGES_PROMPT = """\
Summarize each of the following team-channel messages, identified by ID.
For each message give: the ID, the sender, the subject (for replies say the
subject comes from the previous message), and one or two sentences with the
actual content, keeping every technical detail and question. Ignore
signatures, links and boilerplate.

{text}"""

NEWS_PROMPT = """\
Summarize this announcement in two or three sentences. Keep dates, times and
the affected services exactly as written.

{text}"""


class Summarizer(Protocol):
    def summarize(self, text: str) -> str: ...


def excerpt(text: str, limit: int = 600) -> str:
    flat = _WS.sub(" ", text or "").strip()
    if len(flat) <= limit:
        return flat
    return flat[: limit - 1].rstrip() + "…"


class ExcerptSummarizer:
    """Used when no summarization endpoint is configured."""

    def __init__(self, limit: int = 600):
        self.limit = limit

    def summarize(self, text: str) -> str:
        return excerpt(text, self.limit)


class ChatSummarizer:
    """Calls an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        api_key: str,
        url: str = "https://api.openai.com/v1/chat/completions",
        model: str = "gpt-4o-mini",
        timeout: int = 30,
        excerpt_chars: int = 600,
        prompt_template: str = NEWS_PROMPT,
    ):
        self.api_key = api_key
        self.url = url
        self.model = model
        self.timeout = timeout
        self.excerpt_chars = excerpt_chars
        self.prompt_template = prompt_template

    def _complete(self, prompt: str) -> Optional[str]:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0,
            "max_tokens": 1000,
        }
        try:
            response = requests.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Summarizer request failed: {e}")
            return None

        choices = result.get("choices") or []
        content = ((choices[0] if choices else {}).get("message") or {}).get("content")
        return content.strip() if content else None

    def summarize(self, text: str) -> str:
        summary = self._complete(self.prompt_template.format(text=text))
        return summary or excerpt(text, self.excerpt_chars)


def format_messages_for_summary(items: Sequence[RawItem]) -> str:
    blocks = []
    for item in items:
        reply = "\nType: reply (subject taken from the previous message)" if item.is_reply else ""
        blocks.append(f"ID: {item.id}\nSender: {item.sender}\nSubject: {item.subject}{reply}\nText: {item.body}")
    return "\n\n".join(blocks)


def build_summarizer(
    api_key: str,
    url: str,
    model: str,
    timeout: int,
    excerpt_chars: int,
    prompt_template: str,
) -> Summarizer:
    if not api_key:
        logger.info("No summarizer API key configured, using plain excerpts")
        return ExcerptSummarizer(excerpt_chars)
    return ChatSummarizer(
        api_key=api_key,
        url=url,
        model=model,
        timeout=timeout,
        excerpt_chars=excerpt_chars,
        prompt_template=prompt_template,
    )
