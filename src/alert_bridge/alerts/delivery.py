# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/delivery.py
"""
Notification delivery: the Telegram transport and the idempotent Send Guard.
"""
from __future__ import annotations
import hashlib
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from ..errors import DispatchError
from ..models import Control, DispatchResult, MessageRef
from .store import BridgeStore

logger = logging.getLogger(__name__)


def escape_md(text: str) -> str:
    """Minimal escaping for Telegram Markdown (not V2)."""
    if not isinstance(text, str):
        return ""
    return (
        text.replace("_", "\\_")
            .replace("*", "\\*")
            .replace("`", "\\`")
            .replace("[", "\\[")
    )


class Transport(Protocol):
    def send(self, destination: str, text: str, controls: Optional[Sequence[Control]] = None) -> MessageRef: ...

    def edit(self, ref: MessageRef, text: str, controls: Optional[Sequence[Control]] = None) -> None: ...


class TelegramTransport:
    """
    Sends and edits messages via the Telegram Bot API.

    Setup:
    1. Create a bot with @BotFather on Telegram and get its token
    2. Add the bot to the target chat and note the chat_id
    3. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID
    """

    API_ROOT = "https://api.telegram.org"

    def __init__(self, bot_token: str, timeout: int = 10, parse_mode: str = "Markdown"):
        if not bot_token:
            raise ValueError("Telegram bot_token is required")
        self.bot_token = bot_token
        self.timeout = timeout
        self.parse_mode = parse_mode
        self.session = requests.Session()

    def _url(self, method: str) -> str:
        return f"{self.API_ROOT}/bot{self.bot_token}/{method}"

    def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(self._url(method), json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise DispatchError(f"Telegram {method} failed: {e}") from e
        if not data.get("ok"):
            raise DispatchError(f"Telegram {method} rejected: {data.get('description', data)}")
        return data

    @staticmethod
    def _keyboard(controls: Optional[Sequence[Control]]) -> Optional[Dict[str, Any]]:
        if not controls:
            return None
        return {"inline_keyboard": [[{"text": c.label, "callback_data": c.token} for c in controls]]}

    def send(self, destination: str, text: str, controls: Optional[Sequence[Control]] = None) -> MessageRef:
        payload: Dict[str, Any] = {
            "chat_id": destination,
            "text": text,
            "parse_mode": self.parse_mode,
            "disable_web_page_preview": True,
        }
        keyboard = self._keyboard(controls)
        if keyboard:
            payload["reply_markup"] = keyboard

        data = self._call("sendMessage", payload)
        result = data.get("result", {})
        ref = MessageRef(chat_id=str(result["chat"]["id"]), message_id=str(result["message_id"]))
        logger.info(f"Telegram message {ref.message_id} sent to chat_id {ref.chat_id}")
        return ref

    def edit(self, ref: MessageRef, text: str, controls: Optional[Sequence[Control]] = None) -> None:
        payload: Dict[str, Any] = {
            "chat_id": ref.chat_id,
            "message_id": int(ref.message_id),
            "text": text,
            "parse_mode": self.parse_mode,
            "disable_web_page_preview": True,
        }
        keyboard = self._keyboard(controls)
        if keyboard:
            payload["reply_markup"] = keyboard
        self._call("editMessageText", payload)
        logger.info(f"Telegram message {ref.message_id} edited in chat_id {ref.chat_id}")

    def answer_callback(self, callback_query_id: str, text: str = "", show_alert: bool = False) -> None:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
            payload["show_alert"] = show_alert
        self._call("answerCallbackQuery", payload)

    def reply(self, chat_id: str, text: str, reply_to_message_id: Optional[int] = None) -> None:
        """Plain reply outside the Send Guard (command answers)."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id:
            payload["reply_to_message_id"] = reply_to_message_id
        self._call("sendMessage", payload)

    def get_updates(self, offset: int, poll_timeout: int = 30) -> List[Dict[str, Any]]:
        try:
            response = self.session.get(
                self._url("getUpdates"),
                params={"offset": offset, "timeout": poll_timeout, "allowed_updates": '["message","callback_query"]'},
                timeout=poll_timeout + self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise DispatchError(f"Telegram getUpdates failed: {e}") from e
        if not data.get("ok"):
            raise DispatchError(f"Telegram getUpdates rejected: {data}")
        return data.get("result", [])


class SendGuard:
    """
    Makes dispatch idempotent per (destination, content).

    The fingerprint insert is the linearization point: it happens before the
    transport call, so a concurrent or retried tick with the same content is
    skipped. If the transport then fails, the content stays marked as sent;
    a lost message is preferred over a double-sent one.
    """

    def __init__(self, store: BridgeStore, transport: Transport):
        self.store = store
        self.transport = transport

    @staticmethod
    def fingerprint(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def dispatch(
        self,
        destination: str,
        text: str,
        controls: Optional[Sequence[Control]] = None,
    ) -> DispatchResult:
        """
        Send ``text`` to ``destination`` unless identical content was already sent there.

        Controls are not part of the fingerprint.

        Raises:
            DispatchError: transport failed after the fingerprint was recorded
        """
        content_hash = self.fingerprint(text)
        if not self.store.insert_fingerprint(destination, content_hash):
            logger.info(f"Skipping duplicate dispatch to {destination} (hash={content_hash[:12]})")
            return DispatchResult(skipped=True)

        try:
            ref = self.transport.send(destination, text, controls)
        except DispatchError:
            logger.error(
                f"Dispatch to {destination} failed after fingerprint {content_hash[:12]} was recorded",
                exc_info=True,
            )
            raise
        return DispatchResult(ref=ref)
