from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Persistence
    DATABASE_URL: str = "sqlite+aiosqlite:///./stories.db"

    # Redis configuration (extension progress events)
    REDIS_URL: str = "redis://localhost:6379/0"

    # OpenAI API configuration
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TEMPERATURE: float = 0.8

    # Look-ahead used when a story does not set meta.ai_gen_look_ahead
    AI_GEN_LOOK_AHEAD: int = 2

    # Upper bound on linear export path length, unbounded when unset
    LINEARIZE_MAX_PATH_LENGTH: Optional[int] = None

    # Inactive story cleanup threshold (in hours), 0 disables the job
    INACTIVE_STORY_CLEANUP_HOURS: int = 0
    SCHEDULER_TIMEZONE: str = "UTC"

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

settings = Settings()
