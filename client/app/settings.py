"""Client configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings

from transport.settings import TransportSettings


class ClientSettings(BaseSettings):
    model_config = {"env_prefix": "SYNC_"}

    position_interval_seconds: float = Field(default=0.1, gt=0)
    role_switch_cooldown_seconds: float = Field(default=1.0, ge=0)
    chat_history_size: int = Field(default=200, ge=1)
    plaza_enabled: bool = True
    log_dir: str | None = None
    transport: TransportSettings = Field(default_factory=TransportSettings)
