# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/telegram_handler.py
"""
Inbound Telegram updates: summary expand/collapse buttons and commands.

Two ways to receive updates:
1. Polling (default with ``alert-bridge run``): getUpdates long-poll in a thread
2. Webhook: ``alert-bridge webhook`` serves POST /webhook via Flask

User commands:
- /start = liveness check
"""
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Optional

from flask import Flask, request

from ..errors import DispatchError
from .delivery import TelegramTransport

logger = logging.getLogger(__name__)

START_REPLY = "✅ Bot is active and forwarding alerts to this chat."


class UpdateHandler:
    """Routes one Telegram update to the callback handler or a command."""

    def __init__(self, transport: TelegramTransport, handle_callback: Callable[[str], str]):
        """
        Args:
            transport: Used to answer callbacks and reply to commands
            handle_callback: Token -> answer text ("" on success)
        """
        self.transport = transport
        self.handle_callback = handle_callback

    def handle_update(self, update: Dict[str, Any]) -> None:
        if "callback_query" in update:
            self._handle_callback_query(update["callback_query"])
        elif "message" in update:
            self._handle_message(update["message"])

    def _handle_callback_query(self, query: Dict[str, Any]) -> None:
        answer = self.handle_callback(query.get("data") or "")
        try:
            # an unanswered callback leaves the button spinning
            self.transport.answer_callback(query["id"], answer, show_alert=bool(answer))
        except DispatchError as e:
            logger.warning(f"Could not answer callback {query.get('id')}: {e}")

    def _handle_message(self, message: Dict[str, Any]) -> None:
        text = (message.get("text") or "").strip()
        command = text.split(maxsplit=1)[0].split("@", 1)[0].lower() if text else ""
        if command != "/start":
            return
        try:
            self.transport.reply(
                str(message["chat"]["id"]),
                START_REPLY,
                reply_to_message_id=message.get("message_id"),
            )
        except DispatchError as e:
            logger.error(f"Failed to answer /start: {e}")


def run_polling(handler: UpdateHandler, stop: Optional[threading.Event] = None, poll_timeout: int = 30) -> None:
    """Long-poll getUpdates until ``stop`` is set."""
    stop = stop or threading.Event()
    offset = 0

    logger.info("Starting Telegram update polling...")
    while not stop.is_set():
        try:
            updates = handler.transport.get_updates(offset, poll_timeout=poll_timeout)
        except DispatchError as e:
            logger.error(f"Error getting updates: {e}")
            stop.wait(5)
            continue

        for update in updates:
            try:
                handler.handle_update(update)
            except Exception as e:
                logger.error(f"Error handling update {update.get('update_id')}: {e}", exc_info=True)
            offset = update["update_id"] + 1

        time.sleep(1)


def start_polling_thread(handler: UpdateHandler, stop: threading.Event) -> threading.Thread:
    thread = threading.Thread(target=run_polling, args=(handler, stop), name="telegram-updates", daemon=True)
    thread.start()
    return thread


def create_app(handler: UpdateHandler) -> Flask:
    app = Flask(__name__)

    @app.route("/webhook", methods=["POST"])
    def webhook():
        """Handle incoming Telegram webhook."""
        update = request.get_json(silent=True)
        if not isinstance(update, dict):
            return "Bad Request", 400
        handler.handle_update(update)
        return "OK"

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return "OK"

    return app


def run_webhook(handler: UpdateHandler, port: Optional[int] = None) -> None:
    """Run the webhook server (blocks)."""
    port = port or int(os.getenv("PORT", 8080))
    logger.info(f"Starting Telegram webhook server on port {port}")
    create_app(handler).run(host="0.0.0.0", port=port)
