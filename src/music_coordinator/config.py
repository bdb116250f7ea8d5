"""Configuration management for the music coordinator.

Broker and database settings use pydantic-settings with env_prefix so credentials
come from the environment; the remaining options come from the YAML config file.
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MqttSettings(BaseSettings):
    """MQTT broker connection settings.

    Environment variables (with MQTT_ prefix):
        MQTT_HOST: Broker hostname (default: localhost).
        MQTT_PORT: Broker port (default: 1883).
        MQTT_USERNAME: Broker username (optional, default: None).
        MQTT_PASSWORD: Broker password (optional, default: None).
    """

    model_config = SettingsConfigDict(env_prefix="MQTT_")

    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None


class DatabaseSettings(BaseSettings):
    """SQLite database location.

    Environment variables (with DB_ prefix):
        DB_PATH: Path of the SQLite database file (default: ./music_coordinator.db).
    """

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: str = "./music_coordinator.db"

    @property
    def url(self) -> str:
        """Build the async SQLAlchemy URL for the database file."""
        return f"sqlite+aiosqlite:///{self.path}"


class CoordinatorConfig(BaseModel):
    """Configuration class for the music coordinator.

    Attributes:
        client_id: MQTT client identifier.
        retry_interval: Seconds between reconnection attempts to the broker.
        keepalive: MQTT keep-alive interval in seconds.
        shutdown_grace_period: Seconds in-flight dispatches may run during shutdown.
        mqtt: Broker settings loaded from MQTT_ environment variables.
        database: Database settings loaded from DB_ environment variables.
    """

    client_id: str = "music-coordinator"
    retry_interval: float = 5
    keepalive: int = 60
    shutdown_grace_period: float = 0.25

    # AIDEV-NOTE: Using default_factory to delay instantiation until CoordinatorConfig is created,
    # avoiding import-time reads of the environment.
    mqtt: MqttSettings = Field(default_factory=lambda: MqttSettings())
    database: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())
