# SPDX-License-Identifier: MIT
# src/alert_bridge/errors.py
"""
Exception taxonomy shared by the pipeline.

Duplicate suppression is not an error: the Send Guard reports it as a
``DispatchResult`` with ``skipped=True``.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by alert_bridge."""


class TransientSourceError(BridgeError):
    """Fetching items from a source failed; retry on the next tick."""


class PersistenceError(BridgeError):
    """A store read or write failed."""


class MalformedInputError(BridgeError):
    """A single input item cannot be used (bad date, missing field)."""


class DispatchError(BridgeError):
    """The transport call failed after the fingerprint was recorded."""


class InvalidTokenError(BridgeError):
    """An inbound callback token does not parse."""


class StaleReferenceError(BridgeError):
    """A callback references a summary that no longer exists."""

    def __init__(self, summary_id: str):
        super().__init__(f"Summary {summary_id} is no longer available")
        self.summary_id = summary_id
