"""ISP protocol layer - packet framing, command/response vocabulary, session."""

from .packet import Packet, PacketType, checksum, encode, decode
from .commands import (
    CommandType,
    Command,
    IdentifyCommand,
    EndCommand,
    KeyCommand,
    FlashEraseCommand,
    FlashWriteCommand,
    FlashVerifyCommand,
    ConfigReadCommand,
    ConfigWriteCommand,
    IDENTIFY_PASSWORD,
)
from .responses import (
    ResponseType,
    Response,
    BootloaderVersion,
    decode_response,
)
from .session import (
    Session,
    DeviceIdentity,
    DeviceConfig,
    CHUNK_SIZE,
    SECTOR_SIZE,
)

__all__ = [
    # Packet
    "Packet",
    "PacketType",
    "checksum",
    "encode",
    "decode",
    # Commands
    "CommandType",
    "Command",
    "IdentifyCommand",
    "EndCommand",
    "KeyCommand",
    "FlashEraseCommand",
    "FlashWriteCommand",
    "FlashVerifyCommand",
    "ConfigReadCommand",
    "ConfigWriteCommand",
    "IDENTIFY_PASSWORD",
    # Responses
    "ResponseType",
    "Response",
    "BootloaderVersion",
    "decode_response",
    # Session
    "Session",
    "DeviceIdentity",
    "DeviceConfig",
    "CHUNK_SIZE",
    "SECTOR_SIZE",
]
