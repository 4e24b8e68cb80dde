from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    TOKEN: str | None = None
    BASE_URL: str = "http://50.18.230.41:5691"


    MAX_RETRY: int = 5
    RETRY_DELAY: float = 0.2
    CONNECT_TIMEOUT: float = 30.0
    KEEPALIVE: int = 30
    DNS_REFRESH_INTERVAL: float = 3600.0


    POOL_CONNECTIONS: int = 100
    POOL_MAXSIZE: int = 50


    LOG_LEVEL: str = "INFO"


    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="IITRADER_", extra="ignore"
    )


    @field_validator("BASE_URL")
    @classmethod
    def _base_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("BASE_URL must start with http:// or https://")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _log_level(cls, v: str) -> str:
        if v.upper() not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        return v.upper()

    @field_validator("MAX_RETRY", "KEEPALIVE", "POOL_CONNECTIONS", "POOL_MAXSIZE")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("RETRY_DELAY")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("CONNECT_TIMEOUT", "DNS_REFRESH_INTERVAL")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


def get_settings() -> Settings:
    return Settings()
