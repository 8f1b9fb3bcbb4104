"""Configuration models for the shopping agent."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

DEFAULT_CANDIDATE_MODELS = [
    "gemini-2.0-flash-exp",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
    "gemini-1.5-flash-latest",
    "gemini-pro",
    "gemini-flash-latest",
]


class ModelClientConfig(BaseModel):
    """Configures the model endpoint, candidate cascade and caches."""

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    candidate_models: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CANDIDATE_MODELS), min_length=1
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    response_cache_ttl_seconds: float = Field(default=120.0, gt=0.0)
    models_cache_ttl_seconds: float = Field(default=600.0, gt=0.0)
    response_cache_max_entries: int = Field(default=100, ge=1)
    max_transport_retries: int = Field(default=2, ge=0)


class ChannelConfig(BaseModel):
    """Configures page-agent round trips."""

    request_timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_retries: int = Field(default=2, ge=0)
    initial_delay_ms: float = Field(default=500.0, ge=0.0)
    max_delay_ms: float = Field(default=5000.0, ge=0.0)


class FlowConfig(BaseModel):
    """Configures state machine pacing and limits."""

    default_platform: str = "amazon"
    page_ready_floor_seconds: float = Field(default=0.5, ge=0.0)
    page_ready_timeout_seconds: float = Field(default=30.0, gt=0.0)
    poll_interval_seconds: float = Field(default=0.25, gt=0.0)
    checkout_timeout_seconds: float = Field(default=300.0, gt=0.0)
    parse_max_retries: int = Field(default=2, ge=0)


class AppSettings(BaseModel):
    """Top-level settings assembled from the environment."""

    model: ModelClientConfig = Field(default_factory=ModelClientConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    flow: FlowConfig = Field(default_factory=FlowConfig)
    store_path: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppSettings":
        model = ModelClientConfig()
        models_env = os.getenv("GEMINI_MODELS")
        if models_env:
            candidates = [name.strip() for name in models_env.split(",") if name.strip()]
            if candidates:
                model = model.model_copy(update={"candidate_models": candidates})

        flow = FlowConfig()
        default_platform = os.getenv("SHOP_AGENT_DEFAULT_PLATFORM")
        if default_platform:
            flow = flow.model_copy(update={"default_platform": default_platform.lower()})

        return cls(
            model=model,
            flow=flow,
            store_path=os.getenv("SHOP_AGENT_STORE_PATH"),
            log_level=os.getenv("SHOP_AGENT_LOG_LEVEL", "INFO"),
        )
