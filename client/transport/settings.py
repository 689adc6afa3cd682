"""Transport configuration via environment variables."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

_WS_SCHEMES = ("ws://", "wss://")


class TransportSettings(BaseSettings):
    model_config = {"env_prefix": "SYNC_"}

    server_url: str = "ws://localhost:8080/ws"
    handshake_timeout_seconds: float = Field(default=10.0, gt=0)
    # 0 disables heartbeats in both directions
    heartbeat_interval_seconds: float = Field(default=4.0, ge=0)
    heartbeat_grace_seconds: float = Field(default=4.0, ge=0)
    reconnect_delay_seconds: float = Field(default=5.0, ge=0)
    max_reconnect_attempts: int = Field(default=10, ge=0)
    outbound_buffer_size: int = Field(default=256, ge=1)

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        if not v.startswith(_WS_SCHEMES):
            raise ValueError(f"server_url must start with one of {', '.join(_WS_SCHEMES)}")
        return v
