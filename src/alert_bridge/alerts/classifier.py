# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/classifier.py
"""
Alert vs. informational classification for chat items.

An item is an alert only when BOTH hold:
- it was sent by the designated system sender, and
- its subject or body contains a severity keyword.

Alerts are then assigned a category by an ordered rule list. Order matters:
a subject such as "SmartBridge STOPAZART check" satisfies two rules and the
first listed one wins.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Sequence

import yaml

from ..models import Classification, RawItem

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parents[1] / "configs" / "classifier_rules.yaml"
DEFAULT_CATEGORY = "Other"


@dataclass(frozen=True)
class CategoryRule:
    pattern: Pattern[str]
    category: str
    id_regex: Optional[Pattern[str]] = None

    def extract_id(self, body: str) -> Optional[str]:
        if self.id_regex is None:
            return None
        m = self.id_regex.search(body)
        if not m:
            return None
        return m.group(1) if m.groups() else m.group(0)


def load_rules_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the YAML rule file (packaged default when ``path`` is None)."""
    cfg_path = Path(path) if path else DEFAULT_RULES_PATH
    if not cfg_path.exists():
        raise FileNotFoundError(f"Missing classifier rules: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class AlertClassifier:
    """
    Labels chat items as alert or informational and, for alerts, extracts a
    category and an embedded identifier.
    """

    def __init__(
        self,
        system_sender: str,
        severity_keywords: Sequence[str],
        rules: Sequence[CategoryRule],
        default_category: str = DEFAULT_CATEGORY,
    ):
        self.system_sender = system_sender.strip().lower()
        self.rules: List[CategoryRule] = list(rules)
        self.default_category = default_category
        keywords = [k for k in severity_keywords if k]
        if not keywords:
            raise ValueError("At least one severity keyword is required")
        self._severity_re = re.compile("|".join(re.escape(k) for k in keywords), re.IGNORECASE)

    @classmethod
    def from_config(
        cls,
        system_sender: str,
        config: Dict[str, Any],
        severity_keywords: Optional[Sequence[str]] = None,
    ) -> "AlertClassifier":
        """
        Build from a rules dict (see configs/classifier_rules.yaml).
        ``severity_keywords`` overrides the file's list when non-empty.
        """
        rules = []
        for entry in config.get("rules", []) or []:
            id_regex = entry.get("id_regex")
            rules.append(CategoryRule(
                pattern=re.compile(entry["pattern"], re.IGNORECASE),
                category=entry["category"],
                id_regex=re.compile(id_regex, re.IGNORECASE) if id_regex else None,
            ))
        keywords = list(severity_keywords or []) or list(config.get("severity_keywords", []) or [])
        return cls(
            system_sender=system_sender,
            severity_keywords=keywords,
            rules=rules,
            default_category=config.get("default_category", DEFAULT_CATEGORY),
        )

    def is_alert(self, item: RawItem) -> bool:
        if item.sender.strip().lower() != self.system_sender:
            return False
        return bool(self._severity_re.search(f"{item.subject} {item.body}"))

    def categorize(self, item: RawItem) -> Classification:
        for rule in self.rules:
            if rule.pattern.search(item.subject):
                return Classification(True, rule.category, rule.extract_id(item.body))
        return Classification(True, self.default_category, None)

    def classify(self, item: RawItem) -> Classification:
        if not self.is_alert(item):
            return Classification(False, "", None)
        result = self.categorize(item)
        logger.debug(f"Item {item.id} classified as {result.category} (id={result.embedded_id})")
        return result
