# SPDX-License-Identifier: MIT
# src/alert_bridge/sources/graph_channel.py
"""
Chat source: messages of one Microsoft Teams channel via Microsoft Graph.

Mail is forwarded into the channel, so each message body is an HTML render
of an email with "Sender:"/"Subject:" header lines (Russian labels in the
production mailbox). Those lines are lifted out into ``RawItem`` fields.
"""
from __future__ import annotations
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from ..alerts.cursor import cursor_sort_key, is_after
from ..errors import TransientSourceError
from ..models import RawItem
from ..utils.time_utils import parse_source_timestamp

logger = logging.getLogger(__name__)

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"

SENDER_LABELS = ("Отправитель:", "Sender:", "From:")
SUBJECT_LABELS = ("Тема:", "Subject:")
UNKNOWN_SENDER = "Unknown"
NO_SUBJECT = "(No Subject)"

_REPLY_PREFIX = re.compile(r"^\s*re\s*:\s*", re.IGNORECASE)


class ClientCredentialsToken:
    """
    App-only Graph token (client credentials grant), cached until shortly
    before it expires.
    """

    def __init__(self, tenant_id: str, client_id: str, client_secret: str, timeout: int = 10):
        if not (tenant_id and client_id and client_secret):
            raise ValueError("AZURE_TENANT_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET are required")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def __call__(self) -> str:
        if self._token and time.monotonic() < self._expires_at - 60:
            return self._token
        try:
            response = requests.post(
                TOKEN_URL.format(tenant=self.tenant_id),
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": "https://graph.microsoft.com/.default",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientSourceError(f"Graph token request failed: {e}") from e

        self._token = data["access_token"]
        self._expires_at = time.monotonic() + int(data.get("expires_in", 3600))
        logger.debug("Acquired Graph access token")
        return self._token


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    return soup.get_text("\n")


def split_forwarded_mail(text: str) -> Tuple[str, str, str, bool]:
    """
    Pull sender and subject header lines out of a forwarded mail body.

    Returns:
        (sender, subject, body, is_reply); a leading "RE:" on the subject is
        stripped and reported as ``is_reply``
    """
    sender, subject, is_reply = UNKNOWN_SENDER, NO_SUBJECT, False
    body_lines: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        sender_label = next((lbl for lbl in SENDER_LABELS if line.startswith(lbl)), None)
        subject_label = next((lbl for lbl in SUBJECT_LABELS if line.startswith(lbl)), None)
        if sender_label:
            sender = line[len(sender_label):].strip()
        elif subject_label:
            subject = line[len(subject_label):].strip()
            if _REPLY_PREFIX.match(subject):
                is_reply = True
                subject = _REPLY_PREFIX.sub("", subject, count=1).strip()
        else:
            body_lines.append(line)
    return sender, subject, "\n".join(body_lines), is_reply


def message_to_item(message: Dict[str, Any]) -> RawItem:
    content = (message.get("body") or {}).get("content") or ""
    sender, subject, body, is_reply = split_forwarded_mail(html_to_text(content))
    return RawItem(
        id=str(message["id"]),
        sender=sender,
        subject=subject,
        body=body,
        timestamp=parse_source_timestamp(message.get("createdDateTime")),
        is_reply=is_reply,
    )


class GraphChannelSource:
    """Reads top-level messages of a Teams channel, oldest first."""

    def __init__(self, token_provider, team_id: str, channel_id: str, timeout: int = 10, page_limit: int = 5):
        """
        Args:
            token_provider: Callable returning a bearer token
            team_id: Teams team id
            channel_id: Channel id inside the team
            timeout: Per-request timeout (seconds)
            page_limit: Max @odata.nextLink pages followed per fetch
        """
        if not (team_id and channel_id):
            raise ValueError("TEAM_ID and CHANNEL_ID are required")
        self.token_provider = token_provider
        self.team_id = team_id
        self.channel_id = channel_id
        self.timeout = timeout
        self.page_limit = page_limit

    def _get(self, url: str) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token_provider()}"}
        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientSourceError(f"Graph channel fetch failed: {e}") from e

    def fetch(self, since_cursor: Optional[str]) -> List[RawItem]:
        """
        Items strictly after ``since_cursor``, in ascending id order.

        Graph returns newest first, so paging stops as soon as a page reaches
        back to the cursor.

        Raises:
            TransientSourceError: network or API failure; nothing is returned
        """
        url: Optional[str] = f"{GRAPH_ROOT}/teams/{self.team_id}/channels/{self.channel_id}/messages"
        items: List[RawItem] = []
        pages = 0
        reached_cursor = False
        while url and pages < self.page_limit:
            data = self._get(url)
            pages += 1
            for message in data.get("value", []):
                if message.get("deletedDateTime") or not message.get("id"):
                    continue
                if not is_after(str(message["id"]), since_cursor):
                    reached_cursor = True
                    continue
                items.append(message_to_item(message))
            if reached_cursor:
                break
            url = data.get("@odata.nextLink")

        if url and since_cursor is not None and not reached_cursor:
            logger.warning(
                f"Stopped after {pages} page(s) without reaching cursor {since_cursor}; "
                f"older unread messages will be skipped"
            )

        items.sort(key=lambda it: cursor_sort_key(it.id))
        logger.info(f"Fetched {len(items)} new channel messages ({pages} page(s))")
        return items
