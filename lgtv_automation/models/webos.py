"""webOS SSAP wire envelopes and the typed events decoded from them."""

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict

from lgtv_automation.models.tv import TVCapabilities, TVInputType, TVSoundOutput

SSAP_SCHEME = "ssap://"

URI_TURN_ON = "system/turnOn"
URI_TURN_OFF = "system/turnOff"
URI_SCREEN_ON = "com.webos.service.tvpower/power/turnOnScreen"
URI_SCREEN_OFF = "com.webos.service.tvpower/power/turnOffScreen"
URI_VOLUME_UP = "audio/volumeUp"
URI_VOLUME_DOWN = "audio/volumeDown"
URI_SET_VOLUME = "audio/setVolume"
URI_GET_VOLUME = "audio/getVolume"
URI_MUTE = "audio/mute"
URI_UNMUTE = "audio/unmute"
URI_SWITCH_INPUT = "tv/switchInput"
URI_GET_INPUT_LIST = "tv/getInputList"
URI_SET_DEVICE_INFO = "com.webos.service.eim/setDeviceInfo"
URI_FOREGROUND_APP = "com.webos.applicationManager/getForegroundAppInfo"
URI_GET_SOUND_OUTPUT = "com.webos.service.apiadapter/audio/getSoundOutput"
URI_CHANGE_SOUND_OUTPUT = "com.webos.service.apiadapter/audio/changeSoundOutput"

MANIFEST_PERMISSIONS = (
    "LAUNCH",
    "LAUNCH_WEBAPP",
    "APP_TO_APP",
    "CLOSE",
    "TEST_OPEN",
    "TEST_PROTECTED",
    "CONTROL_AUDIO",
    "CONTROL_DISPLAY",
    "CONTROL_INPUT_JOYSTICK",
    "CONTROL_INPUT_MEDIA_RECORDING",
    "CONTROL_INPUT_MEDIA_PLAYBACK",
    "CONTROL_INPUT_TV",
    "CONTROL_POWER",
    "READ_APP_STATUS",
    "READ_INPUT_DEVICE_LIST",
    "READ_NETWORK_STATE",
    "READ_RUNNING_APPS",
    "READ_TV_CHANNEL_LIST",
    "WRITE_NOTIFICATION_TOAST",
    "READ_SETTINGS",
    "WRITE_SETTINGS",
    "CONTROL_POINTER",
    "CONTROL_MOUSE_AND_KEYBOARD",
    "CONTROL_POWER_ON_SCREEN",
)


def build_register_message(message_id: str, client_key: str | None = None) -> dict[str, Any]:
    """Build the registration envelope sent right after the socket opens.

    Args:
        message_id: Correlation identifier for the registration exchange
        client_key: Pairing key from a previous session; skips the on-screen prompt

    Returns:
        JSON-serializable registration message
    """
    payload: dict[str, Any] = {
        "forcePairing": False,
        "pairingType": "PROMPT",
        "manifest": {
            "manifestVersion": 1,
            "appVersion": "1.0",
            "signed": {"appId": "com.lgtvautomation.app", "vendorId": "com.lgtvautomation"},
            "permissions": list(MANIFEST_PERMISSIONS),
        },
    }
    if client_key:
        payload["client-key"] = client_key

    return {"id": message_id, "type": "register", "payload": payload}


@dataclass(frozen=True)
class WebOSCommand:
    """One outbound SSAP operation: a URI, an optional payload, request or subscribe."""

    uri: str
    payload: dict[str, Any] | None = None
    subscribe: bool = False
    name: str = field(default="", compare=False)

    def to_message(self, message_id: str) -> dict[str, Any]:
        message: dict[str, Any] = {
            "id": message_id,
            "type": "subscribe" if self.subscribe else "request",
            "uri": f"{SSAP_SCHEME}{self.uri}",
        }
        if self.payload is not None:
            message["payload"] = dict(self.payload)
        return message

    def __str__(self) -> str:
        return self.name or self.uri

    @classmethod
    def power_on(cls) -> "WebOSCommand":
        return cls(URI_TURN_ON, name="power_on")

    @classmethod
    def power_off(cls) -> "WebOSCommand":
        return cls(URI_TURN_OFF, name="power_off")

    @classmethod
    def screen_on(cls) -> "WebOSCommand":
        return cls(URI_SCREEN_ON, name="screen_on")

    @classmethod
    def screen_off(cls) -> "WebOSCommand":
        return cls(URI_SCREEN_OFF, name="screen_off")

    @classmethod
    def volume_up(cls) -> "WebOSCommand":
        return cls(URI_VOLUME_UP, name="volume_up")

    @classmethod
    def volume_down(cls) -> "WebOSCommand":
        return cls(URI_VOLUME_DOWN, name="volume_down")

    @classmethod
    def set_volume(cls, level: int) -> "WebOSCommand":
        return cls(URI_SET_VOLUME, {"volume": int(level)}, name="set_volume")

    @classmethod
    def get_volume(cls) -> "WebOSCommand":
        return cls(URI_GET_VOLUME, name="get_volume")

    @classmethod
    def subscribe_volume(cls) -> "WebOSCommand":
        return cls(URI_GET_VOLUME, subscribe=True, name="subscribe_volume")

    @classmethod
    def mute(cls) -> "WebOSCommand":
        return cls(URI_MUTE, name="mute")

    @classmethod
    def unmute(cls) -> "WebOSCommand":
        return cls(URI_UNMUTE, name="unmute")

    @classmethod
    def set_input(cls, input_id: str) -> "WebOSCommand":
        return cls(URI_SWITCH_INPUT, {"inputId": input_id}, name="set_input")

    @classmethod
    def get_input_list(cls) -> "WebOSCommand":
        return cls(URI_GET_INPUT_LIST, name="get_input_list")

    @classmethod
    def set_device_info(cls, input_id: str, icon: str, label: str) -> "WebOSCommand":
        return cls(
            URI_SET_DEVICE_INFO,
            {"id": input_id, "icon": f"{icon}.png", "label": label},
            name="set_device_info",
        )

    @classmethod
    def subscribe_foreground_app(cls) -> "WebOSCommand":
        return cls(URI_FOREGROUND_APP, subscribe=True, name="subscribe_foreground_app")

    @classmethod
    def get_foreground_app(cls) -> "WebOSCommand":
        return cls(URI_FOREGROUND_APP, name="get_foreground_app")

    @classmethod
    def get_sound_output(cls) -> "WebOSCommand":
        return cls(URI_GET_SOUND_OUTPUT, name="get_sound_output")

    @classmethod
    def subscribe_sound_output(cls) -> "WebOSCommand":
        return cls(URI_GET_SOUND_OUTPUT, subscribe=True, name="subscribe_sound_output")

    @classmethod
    def set_sound_output(cls, output: TVSoundOutput | str) -> "WebOSCommand":
        value = output.value if isinstance(output, TVSoundOutput) else output
        return cls(URI_CHANGE_SOUND_OUTPUT, {"output": value}, name="set_sound_output")


class WebOSMessage:
    """Loosely-typed inbound envelope.

    The TV mixes unrelated fields in one payload, so behavior is driven by
    key presence. Instances never leave the webOS client; recognized fields
    are converted into the typed events below first.
    """

    KNOWN_TYPES = ("registered", "response", "push", "error")

    def __init__(self, raw: dict[str, Any]):
        self.raw = raw

    @classmethod
    def parse(cls, text: str | bytes) -> "WebOSMessage | None":
        """Decode one text frame; returns None for non-JSON or non-object frames."""
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(data, dict):
            return None
        return cls(data)

    @property
    def type(self) -> str:
        value = self.raw.get("type")
        return value if isinstance(value, str) else "unknown"

    @property
    def kind(self) -> str:
        """Message type folded onto registered|response|push|error|other."""
        return self.type if self.type in self.KNOWN_TYPES else "other"

    @property
    def id(self) -> str | None:
        value = self.raw.get("id")
        return None if value is None else str(value)

    @property
    def payload(self) -> dict[str, Any]:
        value = self.raw.get("payload")
        return value if isinstance(value, dict) else {}

    @property
    def error(self) -> str:
        return str(self.raw.get("error") or self.payload.get("errorText") or "unknown error")

    def has(self, key: str) -> bool:
        return key in self.payload

    @property
    def return_value(self) -> bool:
        return self.payload.get("returnValue", True) is not False


class VolumeChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    volume: int
    muted: bool = False


class InputChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: TVInputType
    app_id: str | None = None


class InputListChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    icons: dict[str, str]


class SoundOutputChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    output: TVSoundOutput


class CapabilitiesChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    capabilities: TVCapabilities
