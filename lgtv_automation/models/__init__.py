"""Pydantic models for TV state, configuration and webOS wire envelopes."""

from lgtv_automation.models.tv import (
    ConnectionState,
    ConnectionStatus,
    TVCapabilities,
    TVConfiguration,
    TVInputType,
    TVSoundOutput,
    TVStatus,
)
from lgtv_automation.models.webos import (
    CapabilitiesChanged,
    InputChanged,
    InputListChanged,
    SoundOutputChanged,
    VolumeChanged,
    WebOSCommand,
    WebOSMessage,
)

__all__ = [
    "CapabilitiesChanged",
    "ConnectionState",
    "ConnectionStatus",
    "InputChanged",
    "InputListChanged",
    "SoundOutputChanged",
    "TVCapabilities",
    "TVConfiguration",
    "TVInputType",
    "TVSoundOutput",
    "TVStatus",
    "VolumeChanged",
    "WebOSCommand",
    "WebOSMessage",
]
