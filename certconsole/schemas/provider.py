from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class ConfigSource(str, Enum):
    BACKEND = "backend"
    FALLBACK = "fallback"
    NONE = "none"


class ProviderPublicConfig(BaseModel):
    """Publishable provider configuration, or the explicit unconfigured state."""

    model_config = ConfigDict(frozen=True)

    is_configured: bool
    publishable_key: str | None = None
    source: ConfigSource = ConfigSource.NONE

    @classmethod
    def unconfigured(cls) -> "ProviderPublicConfig":
        return cls(is_configured=False, publishable_key=None, source=ConfigSource.NONE)


class ProviderConfigResponse(BaseModel):
    """Wire shape of ``GET /stripe/config``.

    Either ``{"success": true, "publishable_key": "..."}`` or
    ``{"is_configured": false}``.
    """

    success: bool = False
    publishable_key: str | None = None
    is_configured: bool | None = None

    @model_validator(mode="after")
    def _one_of_two_shapes(self) -> "ProviderConfigResponse":
        if self.success and self.publishable_key:
            return self
        if self.is_configured is False:
            return self
        raise ValueError("expected publishable_key or is_configured=false")

    def to_config(self) -> ProviderPublicConfig:
        if self.success and self.publishable_key:
            return ProviderPublicConfig(
                is_configured=True,
                publishable_key=self.publishable_key,
                source=ConfigSource.BACKEND,
            )
        return ProviderPublicConfig.unconfigured()
