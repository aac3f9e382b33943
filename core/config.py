from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    SECRET_KEY: str = Field(..., description="HMAC key used to sign and verify auth tokens")

    # Database
    DATABASE_URL: str = Field(..., description="Async connection string (postgresql+asyncpg://...)")
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Auth
    TOKEN_TTL_SECONDS: int = 2592000  # 30 days

    # Quiz Settings
    LEADERBOARD_LIMIT: int = 7
    RECENT_QUIZZES_LIMIT: int = 5
    RECENT_USERS_LIMIT: int = 7
    TRUST_CLIENT_SCORES: bool = Field(
        False,
        description="Accept client-computed score/passed values instead of grading selections server-side",
    )

    # Write retries on transaction conflicts
    ATTEMPT_WRITE_RETRIES: int = 3
    ATTEMPT_RETRY_BASE_SECONDS: float = 0.05

    # Environment
    CORS_ORIGINS: List[str] = Field(default_factory=list)
    ENV: str = "production"  # development, staging, production
    DEBUG: bool = False

settings = Settings()
