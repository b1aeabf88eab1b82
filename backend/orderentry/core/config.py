from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database (SQLite by default, PostgreSQL in deployment)
    DATABASE_URL: str = "sqlite:///./orderentry.db"

    # Server
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 8000

    # Grid surface
    GRID_DEFAULT_ROWS: int = 10
    GRID_EXTRA_ROWS: int = 10  # Rows that may be inserted beyond a template's rowsCount
    GRID_TOTAL_DEBOUNCE_MS: int = 50  # Total-row recompute window, tunable
    GRID_RENDERER_MAX_RETRIES: int = 10
    GRID_RENDERER_RETRY_DELAY_MS: int = 100

    # Entry sessions
    ENTRY_SESSION_TTL_SECONDS: int = 3600  # Idle sessions older than this are dropped
    ENTRY_SESSION_MAX: int = 500

    # Templates
    SEED_BUILTIN_TEMPLATES: bool = True

    # Development
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
