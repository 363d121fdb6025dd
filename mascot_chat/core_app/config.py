from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from mascot_chat.core_app.exceptions import ConfigError

load_dotenv()

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class Settings(BaseSettings):
    """
    Process configuration, read from the environment or a `.env` file.
    Fields can also be passed by name, which is what the tests do.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    openai_api_key: str = Field(min_length=1, validation_alias="OPENAI_API_KEY")
    session_secret: str = Field(min_length=1, validation_alias="SESSION_SECRET")
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    llm_api_url: str = Field(default=OPENAI_CHAT_URL, validation_alias="LLM_API_URL")
    llm_model: str = Field(default="gpt-4o", validation_alias="LLM_MODEL")
    llm_timeout: float = Field(default=60, gt=0, validation_alias="LLM_TIMEOUT")
    llm_retries: int = Field(default=2, ge=1, validation_alias="LLM_RETRIES")

    rate_limit: int = Field(default=20, ge=1, validation_alias="RATE_LIMIT", description="Requests per window")
    rate_window: float = Field(default=60, gt=0, validation_alias="RATE_WINDOW", description="Window length, seconds")
    session_ttl: int = Field(default=3600, gt=0, validation_alias="SESSION_TTL")

    message_retention_minutes: Optional[float] = Field(default=None, gt=0, validation_alias="MESSAGE_RETENTION_MINUTES")
    clear_messages_on_startup: bool = Field(default=True, validation_alias="CLEAR_MESSAGES_ON_STARTUP")

    # comma separated; empty means same-origin only and no CORS middleware
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")

    environment: str = Field(default="development", validation_alias="APP_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, validation_alias="LOG_FILE")
    port: int = Field(default=5000, validation_alias="PORT")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def _env_name(loc) -> str:
    name = str(loc[0]) if loc else ""
    field = Settings.model_fields.get(name)
    if field is not None and field.validation_alias:
        return str(field.validation_alias)
    return name.upper()


def get_settings() -> Settings:
    """
    Missing required variables raise ConfigError naming every one of them;
    any other invalid value raises ConfigError with pydantic's explanation.
    """
    try:
        return Settings()
    except ValidationError as e:
        missing = [_env_name(err["loc"]) for err in e.errors() if err["type"] == "missing"]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Add them to your environment or .env file."
            ) from e
        raise ConfigError(f"Invalid configuration: {e}") from e
