from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "PFM Obligations Backend"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # apps/backend/db.sqlite3 as an absolute path so the CWD does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]

    # Forecast tuning
    LOW_BALANCE_THRESHOLD: float = 500.0
    VARIABLE_SPENDING_WEIGHT: float = 0.8
    HISTORY_MONTHS: int = 3
    DEFAULT_FORECAST_DAYS: int = 30
    DEFAULT_FORECAST_MONTHS: int = 6
    FORECAST_MAX_WORKERS: int = 4
    CATEGORY_HISTORY_MONTHS: int = 6
    CATEGORY_TREND_THRESHOLD: float = 0.05
    DEFAULT_CATEGORY_MONTHS: int = 3
    SUMMARY_MONTHS: int = 3
    # balance advice thresholds
    EMERGENCY_RESERVE: float = 1000.0
    INVESTABLE_SURPLUS: float = 500.0

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="PFM_", case_sensitive=False)


settings = Settings()
