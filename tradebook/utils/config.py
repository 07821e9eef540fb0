from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_path: str = Field(default="data/tradebook.db", description="SQLite journal database path")

    broker_functions_url: str = Field(default="", description="Base URL of the remote broker functions")
    broker_api_key: str = Field(default="", description="API key sent to the broker functions")
    broker_timeout: float = Field(default=30.0, description="Broker function request timeout in seconds")
    broker_rate_limit: float = Field(default=2.0, description="Broker function requests per second")
    default_import_days: int = Field(default=30, description="Default broker import window in days")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/tradebook.log", description="Log file path")
    log_json: bool = Field(default=True, description="Render log events as JSON; plain console lines otherwise")

    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=5000, description="HTTP port")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
