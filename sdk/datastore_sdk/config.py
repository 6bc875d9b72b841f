"""
Configuration for the Datastore SDK.

Uses pydantic-settings for environment variable loading. Every setting
can be provided as DATASTORE_<NAME>, e.g. DATASTORE_PROJECT_ID.
DATASTORE_EMULATOR_HOST is honoured so the SDK talks to a local emulator.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """SDK configuration loaded from environment."""

    # Project identity
    project_id: str = Field(default="", description="Project the requests are addressed to")
    namespace: str | None = Field(default=None, description="Default namespace for new keys")

    # Endpoint
    api_endpoint: str = Field(
        default="https://datastore.googleapis.com",
        description="Datastore API base URL",
    )
    emulator_host: str | None = Field(
        default=None,
        description="host:port of a local emulator, overrides api_endpoint",
    )
    access_token: str | None = Field(default=None, description="OAuth2 bearer token")
    timeout: float = Field(default=30.0, description="Per-request timeout in seconds")

    # Streaming
    stream_buffer_size: int = Field(
        default=1,
        ge=1,
        description="Entities buffered between a read and its consumer",
    )

    model_config = {"env_prefix": "DATASTORE_"}

    @property
    def base_url(self) -> str:
        """Base URL requests are posted to."""
        if self.emulator_host:
            return f"http://{self.emulator_host}"
        return self.api_endpoint.rstrip("/")
