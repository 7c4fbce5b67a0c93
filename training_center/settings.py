"""Application settings loaded from the environment (and an optional .env file)."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(
        default="sqlite:///./training_center.db", validation_alias="DATABASE_URL"
    )
    session_secret: str = Field(
        default="CHANGE_ME_TO_A_RANDOM_SECRET", validation_alias="SESSION_SECRET"
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Generative AI (Google AI Studio generateContent endpoint)
    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        validation_alias="GEMINI_BASE_URL",
    )
    gemini_timeout_seconds: float = Field(default=30.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

    # Quiz taking
    short_answer_case_sensitive: bool = Field(
        default=False, validation_alias="SHORT_ANSWER_CASE_SENSITIVE"
    )
    allow_graded_retakes: bool = Field(default=True, validation_alias="ALLOW_GRADED_RETAKES")
    timeout_grace_seconds: int = Field(default=2, validation_alias="TIMEOUT_GRACE_SECONDS")
    # untimed attempts nobody touched for this long are dropped from memory (the session stays stored)
    runner_idle_minutes: int = Field(default=120, validation_alias="RUNNER_IDLE_MINUTES")

    # Evaluation notes
    notes_debounce_ms: int = Field(default=500, validation_alias="NOTES_DEBOUNCE_MS")
    draft_idle_minutes: int = Field(default=60, validation_alias="DRAFT_IDLE_MINUTES")

    # Seed admin account created on first startup
    seed_admin_email: str = Field(default="admin@example.com", validation_alias="SEED_ADMIN_EMAIL")
    seed_admin_password: str = Field(default="admin123", validation_alias="SEED_ADMIN_PASSWORD")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
