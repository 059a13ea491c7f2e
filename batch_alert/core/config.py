from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Batch Alert Desk"
    database_url: str = Field(
        default="sqlite+aiosqlite:///./batch_alert.db",
        description="SQLAlchemy database URL",
    )
    mysql_host: str | None = Field(
        default=None,
        description="MySQL host",
        validation_alias=AliasChoices("BATCH_ALERT_MYSQL_HOST"),
    )
    mysql_port: int = Field(
        default=3306,
        description="MySQL port",
        validation_alias=AliasChoices("BATCH_ALERT_MYSQL_PORT"),
    )
    mysql_username: str | None = Field(
        default=None,
        description="MySQL username",
        validation_alias=AliasChoices("BATCH_ALERT_MYSQL_USER"),
    )
    mysql_password: str | None = Field(
        default=None,
        description="MySQL password",
        validation_alias=AliasChoices("BATCH_ALERT_MYSQL_PASSWORD"),
    )
    mysql_database: str | None = Field(
        default=None,
        description="MySQL database name",
        validation_alias=AliasChoices("BATCH_ALERT_MYSQL_DATABASE"),
    )
    secret_key: str = Field(default="change-me", description="Secret key for signing tokens")
    access_token_expire_minutes: int = Field(
        default=720,
        ge=1,
        description="Lifetime of issued session tokens",
        validation_alias=AliasChoices("BATCH_ALERT_TOKEN_EXPIRE_MINUTES"),
    )
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout applied to outbound webhook requests",
        validation_alias=AliasChoices("BATCH_ALERT_WEBHOOK_TIMEOUT"),
    )
    webhook_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Total delivery attempts per webhook before recording a failure",
        validation_alias=AliasChoices("BATCH_ALERT_WEBHOOK_RETRY_ATTEMPTS"),
    )
    webhook_retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Delay between webhook delivery attempts in milliseconds",
        validation_alias=AliasChoices("BATCH_ALERT_WEBHOOK_RETRY_DELAY_MS"),
    )
    webhook_verify_response: bool = Field(
        default=False,
        description="Treat non-2xx webhook responses as failed deliveries",
        validation_alias=AliasChoices("BATCH_ALERT_WEBHOOK_VERIFY_RESPONSE"),
    )
    notification_history_limit: int = Field(
        default=50,
        ge=1,
        description="Default number of notification records returned by the history view",
        validation_alias=AliasChoices("BATCH_ALERT_NOTIFICATION_HISTORY_LIMIT"),
    )

    @property
    def resolved_database_url(self) -> str:
        if all([self.mysql_host, self.mysql_username, self.mysql_password, self.mysql_database]):
            user = quote_plus(self.mysql_username)
            password = quote_plus(self.mysql_password)
            return (
                f"mysql+aiomysql://{user}:{password}@{self.mysql_host}:{self.mysql_port}/{self.mysql_database}"
            )
        return self.database_url


@lru_cache()
def get_settings() -> Settings:
    return Settings()
