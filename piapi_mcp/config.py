import sys

from loguru import logger
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from piapi_mcp.errors import ConfigurationError

DEFAULT_BASE_URL = "https://api.piapi.ai/api/v1"


class Settings(BaseSettings):
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    service_mode: str = "public"
    webhook_endpoint: str = ""
    webhook_secret: str = ""
    request_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PIAPI_", env_file=".env", extra="ignore"
    )


def load_settings(**overrides) -> Settings:
    """Build settings from the environment once, at process start"""
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigurationError(
            f"Invalid configuration ({', '.join(missing)}); is PIAPI_API_KEY set?"
        ) from e

    if not settings.api_key.strip():
        raise ConfigurationError("PIAPI_API_KEY not set")
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Send loguru output to stderr; stdout is reserved for the stdio transport"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
