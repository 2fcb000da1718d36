from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = Field(
        "sqlite+aiosqlite:///./habitquest.db",
        description="SQLAlchemy async URL, e.g., postgresql+asyncpg://...",
    )
    DB_ECHO: bool = False

    # Chain sessions
    MAX_CHAIN_HABITS: int = 20
    SESSION_IDLE_HOURS: float = 24.0
    MAX_PAUSE_MINUTES: int = 300
    PAST_SESSIONS_LIMIT: int = 50
    CONFLICT_RETRIES: int = 3

    # XP / profiles
    XP_HISTORY_LIMIT: int = 1000
    LEADERBOARD_DEFAULT_LIMIT: int = 100
    GROUP_ACTIVITY_LIMIT: int = 50

    # Habit feedback
    FEEDBACK_LIMIT: int = 90
    FEEDBACK_WINDOW_START_HOUR: int = Field(12, ge=0, le=23)

    # Scheduler
    ENABLE_SCHEDULER: bool = True
    SESSION_SWEEP_INTERVAL_MINUTES: int = 15
    RANK_CACHE_REFRESH_MINUTES: int = 60

settings = Settings()
