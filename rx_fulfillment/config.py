"""
Service configuration: Supabase and Gemini credentials, the pharmacy
this instance dispenses for, matcher thresholds and server options.
Read from the environment or a .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-backed settings; the three credentials are required."""

    # ── Supabase ──────────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_SERVICE_ROLE_KEY: str

    # ── Gemini ────────────────────────────────────────────────
    GEMINI_API_KEY: str
    GEMINI_MODEL: str = "gemini-2.0-flash"

    # ── Pharmacy ──────────────────────────────────────────────
    PHARMACY_ID: str = ""

    # ── Pipeline defaults ─────────────────────────────────────
    MATCH_MIN_SCORE: float = 0.35
    MATCH_AMBIGUITY_MARGIN: float = 0.1

    # ── HTTP ──────────────────────────────────────────────────
    HTTP_TIMEOUT_SECONDS: int = 30

    # ── Server ────────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── Logging ───────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # ── Retry backoff for Gemini rate-limits ───────────────────
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0       # seconds
    RETRY_MAX_DELAY: float = 4.0        # seconds

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()  # type: ignore[call-arg]
