from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised when the service cannot start with the supplied settings"""


class Config(BaseSettings):
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Broker. KV_URL is accepted as a fallback for hosted Redis add-ons
    REDIS_URL: Optional[str] = None
    KV_URL: Optional[str] = None

    MONGO_TOOLHUB_USER: str = "admin"
    MONGO_AUTH_SOURCE: str = "admin"
    MONGO_TOOLHUB_PASSWORD: str = "password"
    MONGO_TOOLHUB_HOST: str = "localhost"
    MONGO_TOOLHUB_PORT: str = "27017"
    MONGO_TOOLHUB_DATABASE: str = "toolhub"

    # Bridge timing, all in seconds
    MAX_DURATION: int = 800  # hosting limit for one streaming invocation
    SAFETY_MARGIN: int = 5
    REQUEST_TIMEOUT: float = 10.0
    HANDLER_TIMEOUT: float = 8.0
    KEEPALIVE_INTERVAL: float = 30.0
    SUBSCRIBE_TIMEOUT: float = 5.0

    SERVER_NAME: str = "toolhub tool server"
    SERVER_VERSION: str = "0.1.0"

    @property
    def MONGO_URI(self) -> str:
        return f"mongodb://{self.MONGO_TOOLHUB_USER}:{self.MONGO_TOOLHUB_PASSWORD}@{self.MONGO_TOOLHUB_HOST}:{self.MONGO_TOOLHUB_PORT}/{self.MONGO_TOOLHUB_DATABASE}?authSource={self.MONGO_AUTH_SOURCE}"

    @property
    def MONGO_DB(self) -> str:
        return self.MONGO_TOOLHUB_DATABASE

    @property
    def broker_url(self) -> str:
        url = self.REDIS_URL or self.KV_URL
        if not url:
            raise ConfigurationError("REDIS_URL environment variable is not set")
        return url

    @property
    def stream_lifetime(self) -> float:
        """Seconds a streaming connection may stay open before cleanup starts"""
        return float(self.MAX_DURATION - self.SAFETY_MARGIN)

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()

    @model_validator(mode="after")
    def validate_timeouts(self):
        if self.MAX_DURATION <= self.SAFETY_MARGIN:
            raise ValueError("MAX_DURATION must be greater than SAFETY_MARGIN")
        if self.HANDLER_TIMEOUT >= self.REQUEST_TIMEOUT:
            raise ValueError("HANDLER_TIMEOUT must be shorter than REQUEST_TIMEOUT")
        if self.REQUEST_TIMEOUT >= self.stream_lifetime:
            raise ValueError("REQUEST_TIMEOUT must be shorter than MAX_DURATION - SAFETY_MARGIN")
        return self

    model_config = {
        "env_file": [".env", "toolhub/.env"],
        "env_file_encoding": "utf-8",
        "case_sensitive": False
    }

settings = Config()
