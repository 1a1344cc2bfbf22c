# SPDX-License-Identifier: MIT
# src/alert_bridge/__init__.py
"""Bridge team-chat alerts and scraped announcements into one Telegram chat."""

__version__ = "0.3.0"
