"""应用配置管理."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 数据库配置
    data_dir: str = "."
    database_url: str = "sqlite+aiosqlite:///./pollen.db"

    # 刷新配置
    refresh_concurrency: int = 10
    metadata_budget: int = 200
    foreground_stale_minutes: int = 5
    feed_timeout_seconds: float = 30.0
    metadata_timeout_seconds: float = 5.0
    reader_timeout_seconds: float = 10.0
    user_agent: str = "Mozilla/5.0 (compatible; Pollen/0.1; +https://github.com/pollen-reader)"

    # 后台刷新配置
    background_refresh_enabled: bool = True
    background_interval_minutes: int = 30

    # 账户配置：local 或 fever
    active_account: str = "local"

    # Fever (FreshRSS) 配置
    fever_url: str = ""
    fever_username: str = ""
    fever_api_password: str = ""
    fever_api_key: str = ""


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
