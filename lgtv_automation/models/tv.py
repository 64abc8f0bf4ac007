"""Pydantic models for TV identity, capabilities and connection state."""

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lgtv_automation.exceptions import InvalidAddressException
from lgtv_automation.services.wol_service import normalize_mac_address

_CHIP_PREFIX = "HE_DTV_"


class TVInputType(str, Enum):
    """Physical inputs of an LG webOS TV, valued by their wire identifier."""

    HDMI_1 = "HDMI_1"
    HDMI_2 = "HDMI_2"
    HDMI_3 = "HDMI_3"
    HDMI_4 = "HDMI_4"
    DISPLAY_PORT_1 = "DP_1"
    DISPLAY_PORT_2 = "DP_2"
    USB_C_1 = "USBC_1"
    USB_C_2 = "USBC_2"

    @property
    def app_id(self) -> str:
        """webOS application identifier that renders this input."""
        return f"com.webos.app.{self.value.lower().replace('_', '')}"

    @property
    def display_name(self) -> str:
        return _INPUT_DISPLAY_NAMES[self]

    @classmethod
    def from_app_id(cls, app_id: str) -> "TVInputType | None":
        """Map a foreground app identifier to an input.

        Exact app identifiers are tried first, then the numbered variants
        different firmware versions report (hdmi_1, dp1, usb-c1, ...).
        Returns None for apps that are not inputs (Netflix, live TV, ...).
        """
        lowered = app_id.lower()
        for input_type in cls:
            if lowered == input_type.app_id:
                return input_type

        for input_type, fragments in _APP_ID_FRAGMENTS:
            if any(fragment in lowered for fragment in fragments):
                return input_type
        return None

    @classmethod
    def from_input_source(cls, source: str) -> "TVInputType | None":
        """Map an `inputSource` push value such as "hdmi_2" or "displayport1"."""
        key = re.sub(r"[^a-z0-9]", "", source.lower())
        return _INPUT_SOURCE_ALIASES.get(key)


_INPUT_DISPLAY_NAMES = {
    TVInputType.HDMI_1: "HDMI 1",
    TVInputType.HDMI_2: "HDMI 2",
    TVInputType.HDMI_3: "HDMI 3",
    TVInputType.HDMI_4: "HDMI 4",
    TVInputType.DISPLAY_PORT_1: "DisplayPort 1",
    TVInputType.DISPLAY_PORT_2: "DisplayPort 2",
    TVInputType.USB_C_1: "USB-C 1",
    TVInputType.USB_C_2: "USB-C 2",
}

_APP_ID_FRAGMENTS = (
    (TVInputType.HDMI_1, ("hdmi1", "hdmi_1")),
    (TVInputType.HDMI_2, ("hdmi2", "hdmi_2")),
    (TVInputType.HDMI_3, ("hdmi3", "hdmi_3")),
    (TVInputType.HDMI_4, ("hdmi4", "hdmi_4")),
    (TVInputType.DISPLAY_PORT_1, ("dp1", "dp_1", "displayport1")),
    (TVInputType.DISPLAY_PORT_2, ("dp2", "dp_2", "displayport2")),
    (TVInputType.USB_C_1, ("usbc1", "usbc_1", "usb-c1")),
    (TVInputType.USB_C_2, ("usbc2", "usbc_2", "usb-c2")),
)

_INPUT_SOURCE_ALIASES = {
    "hdmi1": TVInputType.HDMI_1,
    "hdmi2": TVInputType.HDMI_2,
    "hdmi3": TVInputType.HDMI_3,
    "hdmi4": TVInputType.HDMI_4,
    "dp1": TVInputType.DISPLAY_PORT_1,
    "displayport1": TVInputType.DISPLAY_PORT_1,
    "dp2": TVInputType.DISPLAY_PORT_2,
    "displayport2": TVInputType.DISPLAY_PORT_2,
    "usbc1": TVInputType.USB_C_1,
    "usbc2": TVInputType.USB_C_2,
}


class TVSoundOutput(str, Enum):
    """Sound output targets reported by the audio service."""

    TV_SPEAKER = "tv_speaker"
    EXTERNAL_ARC = "external_arc"
    EXTERNAL_OPTICAL = "external_optical"
    LINEOUT = "lineout"
    HEADPHONE = "headphone"
    BLUETOOTH = "tv_speaker_bluetooth"
    EXTERNAL_SPEAKER = "tv_external_speaker"
    SPEAKER_HEADPHONE = "tv_speaker_headphone"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _SOUND_OUTPUT_DISPLAY_NAMES[self]

    @property
    def supports_volume_slider(self) -> bool:
        """Internal outputs take absolute volume; external ones only step up/down."""
        return self in (
            TVSoundOutput.TV_SPEAKER,
            TVSoundOutput.HEADPHONE,
            TVSoundOutput.LINEOUT,
            TVSoundOutput.SPEAKER_HEADPHONE,
        )

    @classmethod
    def from_api_value(cls, value: str) -> "TVSoundOutput":
        """Parse a webOS sound output string, falling back to UNKNOWN."""
        normalized = value.strip().lower().replace("-", "_")
        if normalized in _SOUND_OUTPUT_ALIASES:
            return _SOUND_OUTPUT_ALIASES[normalized]
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


_SOUND_OUTPUT_DISPLAY_NAMES = {
    TVSoundOutput.TV_SPEAKER: "TV Speaker",
    TVSoundOutput.EXTERNAL_ARC: "HDMI ARC",
    TVSoundOutput.EXTERNAL_OPTICAL: "Optical",
    TVSoundOutput.LINEOUT: "Line Out",
    TVSoundOutput.HEADPHONE: "Headphone",
    TVSoundOutput.BLUETOOTH: "Bluetooth",
    TVSoundOutput.EXTERNAL_SPEAKER: "External Speaker",
    TVSoundOutput.SPEAKER_HEADPHONE: "TV Speaker + Headphone",
    TVSoundOutput.UNKNOWN: "Unknown",
}

_SOUND_OUTPUT_ALIASES = {
    "tv_speakers": TVSoundOutput.TV_SPEAKER,
    "speaker": TVSoundOutput.TV_SPEAKER,
    "earc": TVSoundOutput.EXTERNAL_ARC,
    "arc": TVSoundOutput.EXTERNAL_ARC,
    "hdmi_arc": TVSoundOutput.EXTERNAL_ARC,
    "hdmi_earc": TVSoundOutput.EXTERNAL_ARC,
    "optical": TVSoundOutput.EXTERNAL_OPTICAL,
    "spdif": TVSoundOutput.EXTERNAL_OPTICAL,
    "line_out": TVSoundOutput.LINEOUT,
    "headphones": TVSoundOutput.HEADPHONE,
    "headphone_out": TVSoundOutput.HEADPHONE,
    "headphone_output": TVSoundOutput.HEADPHONE,
    "bluetooth": TVSoundOutput.BLUETOOTH,
    "bt": TVSoundOutput.BLUETOOTH,
    "bt_soundbar": TVSoundOutput.BLUETOOTH,
    "external_speaker": TVSoundOutput.EXTERNAL_SPEAKER,
    "soundbar": TVSoundOutput.EXTERNAL_SPEAKER,
}


class TVConfiguration(BaseModel):
    """Saved identity and automation flags for the controlled TV.

    Immutable; a changed configuration is saved as a new instance.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Display name of the TV")
    ip_address: str = Field(description="TV IP address (e.g., '192.168.1.100')")
    mac_address: str = Field(description="TV MAC address for Wake-on-LAN")
    preferred_input: str = Field(default=TVInputType.HDMI_1.value, description="Input the host is connected to")
    auto_connect_on_launch: bool = True
    wake_with_host: bool = True
    sleep_with_host: bool = True
    switch_input_on_wake: bool = False
    enable_pc_mode: bool = False

    @field_validator("name", mode="after")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure name is not empty or whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator("ip_address", mode="after")
    @classmethod
    def validate_ip_address(cls, v: str) -> str:
        """Ensure ip_address is a valid IP address."""
        v = v.strip()
        try:
            ipaddress.ip_address(v)
        except ValueError as e:
            raise ValueError(f"ip_address must be a valid IPv4 or IPv6 address: {e}") from e
        return v

    @field_validator("mac_address", mode="after")
    @classmethod
    def validate_mac_address(cls, v: str) -> str:
        """Ensure mac_address normalizes to six hex octets; keep the user's spelling."""
        try:
            normalize_mac_address(v)
        except InvalidAddressException as e:
            raise ValueError(e.message) from e
        return v.strip()

    @field_validator("preferred_input", mode="after")
    @classmethod
    def validate_preferred_input(cls, v: str) -> str:
        """Ensure preferred_input names a known input."""
        try:
            return TVInputType(v.strip().upper()).value
        except ValueError as e:
            valid = ", ".join(t.value for t in TVInputType)
            raise ValueError(f"preferred_input must be one of: {valid}") from e

    @property
    def preferred_input_type(self) -> TVInputType:
        return TVInputType(self.preferred_input)


class TVCapabilities(BaseModel):
    """Best-effort snapshot of what the TV reported; safe to discard and rebuild."""

    uses_ssl: bool = True
    model_name: str = ""
    chip_type: str = ""
    model_year: int = 0
    # Input ID -> current icon, e.g. {"HDMI_1": "pc.png"}
    input_icons: dict[str, str] = Field(default_factory=dict)

    def is_pc_mode(self, input_id: str) -> bool:
        return "pc" in self.input_icons.get(input_id, "").lower()

    @staticmethod
    def parse_chip_type(model_name: str) -> tuple[str, int] | None:
        """Parse chip type and year from a model name.

        "HE_DTV_W22O_AFABATAA" -> ("W22O", 2022)
        """
        if not model_name.startswith(_CHIP_PREFIX) or len(model_name) < len(_CHIP_PREFIX) + 4:
            return None

        chip = model_name[len(_CHIP_PREFIX) : len(_CHIP_PREFIX) + 4]
        if not chip.startswith("W") or not chip[1:3].isdigit():
            return None
        return chip, 2000 + int(chip[1:3])


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REGISTERING = "registering"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True, eq=False)
class ConnectionState:
    """Connection state published by the webOS client.

    Two states are equal when their status matches; error causes are not
    compared, so repeated failures do not count as a state change.
    """

    status: ConnectionStatus
    cause: BaseException | None = None

    @classmethod
    def disconnected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.DISCONNECTED)

    @classmethod
    def connecting(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTING)

    @classmethod
    def connected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTED)

    @classmethod
    def error(cls, cause: BaseException) -> "ConnectionState":
        return cls(ConnectionStatus.ERROR, cause)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    @property
    def is_disconnected(self) -> bool:
        return self.status is ConnectionStatus.DISCONNECTED

    @property
    def is_transitioning(self) -> bool:
        return self.status in (ConnectionStatus.CONNECTING, ConnectionStatus.REGISTERING)

    @property
    def has_error(self) -> bool:
        return self.status is ConnectionStatus.ERROR

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConnectionState):
            return NotImplemented
        return self.status is other.status

    def __hash__(self) -> int:
        return hash(self.status)

    def __str__(self) -> str:
        if self.cause is not None:
            return f"Error: {self.cause}"
        return self.status.value.capitalize()


class TVStatus(BaseModel):
    """Externally observable TV state, as tracked by the orchestrator."""

    connection: ConnectionStatus
    volume: int = 0
    is_muted: bool = False
    current_input: TVInputType | None = None
    sound_output: TVSoundOutput = TVSoundOutput.UNKNOWN
    capabilities: TVCapabilities | None = None
