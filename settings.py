"""Application settings loaded from environment variables"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


DEFAULT_FALLBACK_PHRASES = (
    "خارج نطاق خبرتي",
    "لا أستطيع توفير تفاصيل",
    "لا توجد معلومات",
    "لم أجد أي معلومات",
    "outside my expertise",
)

DEFAULT_REFUSAL_PHRASE = "هذا السؤال خارج نطاق خبرتي."

RESPONSE_MODES = ("sync", "background")


class ConfigurationError(RuntimeError):
    """Raised when a required credential or identifier is not configured."""


def _env_int(name, default):
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name, default):
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_phrases(name, default):
    value = os.getenv(name)
    if not value:
        return default
    return tuple(p.strip() for p in value.split("|") if p.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the chatbot backend."""

    openai_api_key: Optional[str] = None
    assistant_id: Optional[str] = None
    vector_store_id: Optional[str] = None
    api_base: str = "https://api.openai.com/v1"
    request_timeout: float = 30.0

    embedding_model: str = "text-embedding-3-small"
    embedding_max_chars: int = 8000

    run_poll_interval: float = 1.0
    run_poll_max_attempts: int = 45
    run_poll_deadline: float = 90.0

    search_limit: int = 3
    similarity_threshold: float = 0.6
    context_max_chars: int = 4000

    fallback_phrases: Tuple[str, ...] = field(default=DEFAULT_FALLBACK_PHRASES)
    refusal_phrase: str = DEFAULT_REFUSAL_PHRASE
    support_email: str = "support@example.com"
    assistant_name: str = "Website Expert Assistant"
    response_language: str = "Arabic"
    prompts_dir: Optional[str] = None

    response_mode: str = "sync"

    crawl_max_pages: int = 100
    crawl_delay_ms: int = 100
    crawl_min_content_chars: int = 100

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and .env)"""
        mode = os.getenv("CHAT_RESPONSE_MODE", "sync").strip().lower()
        if mode not in RESPONSE_MODES:
            raise ConfigurationError(
                f"CHAT_RESPONSE_MODE must be one of {', '.join(RESPONSE_MODES)}, got '{mode}'"
            )

        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            assistant_id=os.getenv("OPENAI_ASSISTANT_ID") or None,
            vector_store_id=os.getenv("OPENAI_VECTOR_STORE_ID") or None,
            api_base=os.getenv("OPENAI_API_BASE", cls.api_base).rstrip("/"),
            request_timeout=_env_float("OPENAI_TIMEOUT", cls.request_timeout),
            embedding_model=os.getenv("EMBEDDING_MODEL", cls.embedding_model),
            embedding_max_chars=_env_int("EMBEDDING_MAX_CHARS", cls.embedding_max_chars),
            run_poll_interval=_env_float("RUN_POLL_INTERVAL", cls.run_poll_interval),
            run_poll_max_attempts=_env_int("RUN_POLL_MAX_ATTEMPTS", cls.run_poll_max_attempts),
            run_poll_deadline=_env_float("RUN_POLL_DEADLINE", cls.run_poll_deadline),
            search_limit=_env_int("SEARCH_LIMIT", cls.search_limit),
            similarity_threshold=_env_float("SIMILARITY_THRESHOLD", cls.similarity_threshold),
            context_max_chars=_env_int("CONTEXT_MAX_CHARS", cls.context_max_chars),
            fallback_phrases=_env_phrases("FALLBACK_PHRASES", DEFAULT_FALLBACK_PHRASES),
            refusal_phrase=os.getenv("REFUSAL_PHRASE", DEFAULT_REFUSAL_PHRASE),
            support_email=os.getenv("SUPPORT_EMAIL", cls.support_email),
            assistant_name=os.getenv("ASSISTANT_NAME", cls.assistant_name),
            response_language=os.getenv("RESPONSE_LANGUAGE", cls.response_language),
            prompts_dir=os.getenv("PROMPTS_DIR") or None,
            response_mode=mode,
            crawl_max_pages=_env_int("CRAWL_MAX_PAGES", cls.crawl_max_pages),
            crawl_delay_ms=_env_int("CRAWL_DELAY_MS", cls.crawl_delay_ms),
            crawl_min_content_chars=_env_int("CRAWL_MIN_CONTENT_CHARS", cls.crawl_min_content_chars),
        )

    def require_credentials(self, assistant: bool = True) -> None:
        """Raise ConfigurationError if the provider credentials are missing.

        Only the variable names are reported, never their values.
        """
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if assistant and not self.assistant_id:
            missing.append("OPENAI_ASSISTANT_ID")
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return Settings.from_env()
