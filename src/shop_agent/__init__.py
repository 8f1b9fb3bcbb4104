"""Shop Agent package."""

from .config import AppSettings, ChannelConfig, FlowConfig, ModelClientConfig

__all__ = ["AppSettings", "ChannelConfig", "FlowConfig", "ModelClientConfig"]
