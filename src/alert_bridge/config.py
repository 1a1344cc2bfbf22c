# src/alert_bridge/config.py
from dataclasses import dataclass, asdict
import os
from typing import Dict, Any

from dotenv import load_dotenv

load_dotenv(override=False)


DEFAULT_PLANNED_TIME_PATTERN = (
    r"(?:from|с)\s+(?P<start>\d{1,2}[:.]\d{2})\s+(?:to|до|по)\s+(?P<end>\d{1,2}[:.]\d{2})"
    r"\s+(?:on\s+)?(?P<date>\d{1,2}\.\d{1,2}\.\d{4})"
)


def _env_bool(name, default=False):
    v = os.getenv(name)
    if v is None: return default
    return str(v).strip().lower() in {"1","true","yes","y","on"}


@dataclass(frozen=True)
class Settings:
    # -------- General ----------
    log_level: str        = os.getenv("LOG_LEVEL", "INFO")
    db_path: str          = os.getenv("BRIDGE_DB_PATH", "data/state/bridge.db")
    display_tz: str       = os.getenv("DISPLAY_TZ", "Europe/Moscow")
    http_timeout_secs: int = int(os.getenv("HTTP_TIMEOUT_SECS", "10"))

    # -------- Telegram ---------
    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    telegram_chat_id: str   = os.getenv("TELEGRAM_CHAT_ID", "")

    # -------- Chat source (Microsoft Graph) ------
    azure_tenant_id: str     = os.getenv("AZURE_TENANT_ID", "")
    azure_client_id: str     = os.getenv("AZURE_CLIENT_ID", "")
    azure_client_secret: str = os.getenv("AZURE_CLIENT_SECRET", "")
    team_id: str             = os.getenv("TEAM_ID", "")
    channel_id: str          = os.getenv("CHANNEL_ID", "")

    # -------- Classification / dedup ------
    system_sender: str      = os.getenv("SYSTEM_SENDER", "noreply@winline.kz")
    severity_keywords: str  = os.getenv("SEVERITY_KEYWORDS", "")  # empty: use the rules file
    classifier_rules_path: str = os.getenv("CLASSIFIER_RULES_PATH", "")
    dedup_key: str          = os.getenv("DEDUP_KEY", "category")  # "category" | "subject"
    summarize_informational: bool = _env_bool("SUMMARIZE_INFORMATIONAL", True)

    # -------- News -------------
    news_source_name: str   = os.getenv("NEWS_SOURCE_NAME", "announcements")
    news_list_url: str      = os.getenv("NEWS_LIST_URL", "")
    news_item_selector: str = os.getenv("NEWS_ITEM_SELECTOR", ".news-item")
    news_title_selector: str = os.getenv("NEWS_TITLE_SELECTOR", "a")
    news_date_selector: str = os.getenv("NEWS_DATE_SELECTOR", ".date")
    news_content_selector: str = os.getenv("NEWS_CONTENT_SELECTOR", "article")
    news_window_days: int   = int(os.getenv("NEWS_WINDOW_DAYS", "3"))
    planned_time_pattern: str = os.getenv("PLANNED_TIME_PATTERN", DEFAULT_PLANNED_TIME_PATTERN)

    # -------- Summarizer -------
    summarizer_url: str     = os.getenv("SUMMARIZER_URL", "https://api.openai.com/v1/chat/completions")
    summarizer_model: str   = os.getenv("SUMMARIZER_MODEL", "gpt-4o-mini")
    summarizer_api_key: str = os.getenv("OPENAI_API_KEY", "")
    summary_excerpt_chars: int = int(os.getenv("SUMMARY_EXCERPT_CHARS", "600"))

    # -------- Retention --------
    summary_retention_months: int = int(os.getenv("SUMMARY_RETENTION_MONTHS", "3"))
    news_retention_months: int    = int(os.getenv("NEWS_RETENTION_MONTHS", "3"))

    # -------- Schedule ---------
    ingest_interval_secs: int     = int(os.getenv("INGEST_INTERVAL_SECS", "60"))
    news_ingest_interval_secs: int = int(os.getenv("NEWS_INGEST_INTERVAL_SECS", "1800"))
    news_tick_interval_secs: int  = int(os.getenv("NEWS_TICK_INTERVAL_SECS", "300"))
    epoch_reset_at: str           = os.getenv("EPOCH_RESET_AT", "00:05")
    purge_at: str                 = os.getenv("PURGE_AT", "03:00")

    @property
    def severity_keyword_list(self):
        return [k.strip() for k in self.severity_keywords.split(",") if k.strip()]

    # helper: convert to dict (useful for logging)
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_overrides(**kwargs) -> "Settings":
        """
        Build Settings and apply runtime overrides (e.g., parsed CLI flags).
        Only keys that match fields will be overridden.
        """
        base = Settings()
        current = base.to_dict()
        current.update({k: v for k, v in kwargs.items() if k in current and v is not None})
        # rebuild frozen dataclass with updates
        return Settings(**current)  # type: ignore[arg-type]
