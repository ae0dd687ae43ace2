"""
WCH ISP bootloader session.

A Session owns one transceiver connection for its lifetime and sequences the
bootloader operations over it. Every operation follows the same exchange:

    build command -> (frame) -> transmit -> receive fixed-size response
    -> check packet -> decode -> check shape -> check success

Nothing is retried here; any failure aborts the operation with a single
exception and the caller decides whether to start over.

Typical flash sequence (mirrors the vendor tool's order):
    identify -> config_read -> key_generate -> flash_erase -> flash_write
    -> key_generate -> flash_verify -> reset
"""

import logging
import struct
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from wch_isp.errors import (
    DeviceTypeMismatchError,
    InvalidPacketError,
    InvalidResponseError,
    KeyChecksumMismatchError,
    ProtocolInvariantError,
    UnsuccessfulResponseError,
)
from wch_isp.protocol.commands import (
    Command,
    ConfigReadCommand,
    ConfigWriteCommand,
    EndCommand,
    FlashEraseCommand,
    FlashVerifyCommand,
    FlashWriteCommand,
    IdentifyCommand,
    KeyCommand,
)
from wch_isp.protocol.packet import Packet, PacketType
from wch_isp.protocol.responses import (
    BootloaderVersion,
    ConfigReadResponse,
    IdentifyResponse,
    KeyResponse,
    Response,
    ResponseType,
    decode_response,
)
from wch_isp.transport.base import DEFAULT_TIMEOUT, Transceiver
from wch_isp.utils.formatting import hex_bytes

logger = logging.getLogger(__name__)

CHUNK_SIZE = 56
SECTOR_SIZE = 1024

ProgressCallback = Callable[[Optional[int], Optional[int]], None]


@dataclass
class DeviceIdentity:
    """Bootloader-reported device variant and type bytes."""
    variant: int
    type: int


@dataclass
class DeviceConfig:
    """Result of a config read."""
    option_bytes: List[int]
    bootloader_version: BootloaderVersion
    chip_unique_id: bytes

    @property
    def rdpr(self) -> int:
        return self.option_bytes[0]

    @property
    def user(self) -> int:
        return self.option_bytes[1]

    @property
    def data(self) -> List[int]:
        return self.option_bytes[2:4]

    @property
    def wrpr(self) -> List[int]:
        return self.option_bytes[4:8]


def unique_id_checksum_ok(unique_id: bytes) -> bool:
    """Sum of the first three LE 16-bit words must equal the fourth."""
    if len(unique_id) != 8:
        return False
    w0, w1, w2, w3 = struct.unpack("<4H", unique_id)
    return (w0 + w1 + w2) & 0xFFFF == w3


class Session:
    """
    Stateful conversation with one ISP bootloader.

    Progress is reported through progress_cb(increment, total); a (None, None)
    pair means indeterminate progress. Long operations always finish with a
    call where increment == total.

    Example:
        with Session(SerialTransceiver("/dev/ttyUSB0"), 0x30, 0x21) as sess:
            sess.identify()
            sess.config_read()
            sess.key_generate()
            sess.flash_erase(firmware.sector_count(1024))
            sess.flash_write(firmware.bytes)
            sess.key_generate()
            sess.flash_verify(firmware.bytes)
            sess.reset(True)
    """

    def __init__(
        self,
        transceiver: Transceiver,
        device_variant: int,
        device_type: int,
        progress_cb: Optional[ProgressCallback] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.transceiver = transceiver
        self.device = DeviceIdentity(variant=device_variant, type=device_type)
        self.progress_cb = progress_cb
        self.timeout = timeout

        self.key: Optional[bytes] = None
        self.key_checksum: Optional[int] = None
        self.option_bytes: Optional[List[int]] = None
        self.bootloader_version: Optional[BootloaderVersion] = None
        self.chip_unique_id: Optional[bytes] = None
        self.sequence = 0

    def __enter__(self) -> "Session":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.end()

    def _progress(self, increment: Optional[int], total: Optional[int]) -> None:
        if self.progress_cb:
            self.progress_cb(increment, total)

    def _begin(self, name: str) -> None:
        self.sequence += 1
        logger.debug(f"{self.sequence}: {name}")

    def start(self) -> None:
        logger.info("Starting new session")
        self.transceiver.open()
        self.sequence = 0

    def end(self) -> None:
        self.transceiver.close()
        logger.info("Ended session")

    def _exchange(self, cmd: Command, response_type: ResponseType) -> Response:
        """
        Send one command and return its validated, successful response.

        Raises:
            InvalidPacketError: Bad response header or checksum
            InvalidResponseError: Unknown/unexpected type or bad data length
            UnsuccessfulResponseError: Device reported failure
            TransportError: Transmit/receive failed or timed out
        """
        trx = self.transceiver

        if trx.uses_packet_framing:
            packet = Packet.from_command(cmd)
            logger.debug(f"TX ({len(packet)} bytes): {packet}")
            trx.transmit(packet.to_bytes())

            raw = trx.receive(Packet.size_for_response_type(response_type), self.timeout)
            packet = Packet.from_bytes(raw, PacketType.RESPONSE)
            logger.debug(f"RX ({len(raw)} bytes): {hex_bytes(raw)}")
            if not packet.is_valid():
                raise InvalidPacketError()
            payload = packet.payload
        else:
            payload = cmd.to_bytes()
            logger.debug(f"TX ({len(payload)} bytes): {hex_bytes(payload)}")
            trx.transmit(payload)

            payload = trx.receive(response_type.size, self.timeout)
            logger.debug(f"RX ({len(payload)} bytes): {hex_bytes(payload)}")

        resp = decode_response(payload)
        if resp.response_type is not response_type or not resp.is_valid():
            raise InvalidResponseError()
        if not resp.success:
            raise UnsuccessfulResponseError(response_type.name, resp.status)
        return resp

    def identify(self) -> DeviceIdentity:
        """
        Identify the device and reconcile it with the selected one.

        A different device type is fatal; a different variant only warns.
        Afterwards the session uses the device's own reported identity.

        Raises:
            DeviceTypeMismatchError: Reported type differs from selected type
        """
        self._begin("Identify")
        self._progress(None, None)

        resp: IdentifyResponse = self._exchange(
            IdentifyCommand(self.device.variant, self.device.type),
            ResponseType.IDENTIFY,
        )

        logger.info(
            f"Device variant: 0x{resp.device_variant:02X}, type: 0x{resp.device_type:02X}"
        )

        if resp.device_type != self.device.type:
            raise DeviceTypeMismatchError(
                f"Reported device type 0x{resp.device_type:02X} does not match "
                f"selected device (0x{self.device.type:02X})"
            )
        if resp.device_variant != self.device.variant:
            logger.warning(
                f"Reported device variant 0x{resp.device_variant:02X} does not match "
                f"selected device (0x{self.device.variant:02X})"
            )

        self.device = DeviceIdentity(variant=resp.device_variant, type=resp.device_type)

        self._progress(100, 100)
        return self.device

    def reset(self, do_reset: bool = True) -> None:
        """End the session on the device side, optionally resetting it."""
        self._begin("Reset")
        self._progress(None, None)

        self._exchange(EndCommand(do_reset), ResponseType.END)

        self._progress(100, 100)

    def key_generate(self, seed: Optional[bytes] = None) -> bytes:
        """
        Derive a new session key and confirm it with the device.

        A fresh random seed is used unless one is given.

        Raises:
            ProtocolInvariantError: Chip unique ID not read yet
            KeyChecksumMismatchError: Device derived a different key
        """
        self._begin("Key Generate")
        self._progress(None, None)

        if self.chip_unique_id is None:
            raise ProtocolInvariantError(
                "Chip unique ID unknown; read configuration before generating a key"
            )

        cmd = KeyCommand(self.chip_unique_id, self.device.variant, seed=seed)
        # Overwritten even if the exchange fails, so a stale key is never reused.
        self.key = cmd.key
        self.key_checksum = cmd.key_checksum

        resp: KeyResponse = self._exchange(cmd, ResponseType.KEY)

        if resp.key_checksum != cmd.key_checksum:
            raise KeyChecksumMismatchError(
                f"Key checksum mismatch (local 0x{cmd.key_checksum:02X}, "
                f"device 0x{resp.key_checksum:02X})"
            )

        self._progress(100, 100)
        return self.key

    def flash_erase(self, sector_count: int) -> None:
        """Erase the given number of 1 KiB flash sectors."""
        self._begin("Flash Erase")
        self._progress(None, None)

        logger.info(f"Erasing {sector_count} sectors ({sector_count * SECTOR_SIZE:,} bytes)")
        self._exchange(FlashEraseCommand(sector_count), ResponseType.FLASH_ERASE)

        self._progress(100, 100)

    def _require_key(self) -> bytes:
        if not self.key:
            raise ProtocolInvariantError("No session key; generate a key before flash write/verify")
        return self.key

    def flash_write(self, data: bytes) -> None:
        """
        Write an image in CHUNK_SIZE chunks, then flush the device buffer.

        After the last chunk a zero-length write at offset len(data) makes the
        bootloader commit any partially buffered block.
        """
        self._begin("Flash Write")
        key = self._require_key()
        data = bytes(data)
        total = len(data)

        logger.info(f"Writing {total:,} bytes")
        for offset in range(0, total, CHUNK_SIZE):
            chunk = data[offset:offset + CHUNK_SIZE]
            self._exchange(FlashWriteCommand(offset, chunk, key), ResponseType.FLASH_WRITE)
            self._progress(offset + len(chunk), total)

        self._exchange(FlashWriteCommand(total, b"", key), ResponseType.FLASH_WRITE)

        self._progress(total, total)

    def flash_verify(self, data: bytes) -> None:
        """
        Verify an image against flash contents in CHUNK_SIZE chunks.

        The device deciphers each chunk and compares it itself; the only
        result is success or failure of each chunk.
        """
        self._begin("Flash Verify")
        key = self._require_key()
        data = bytes(data)
        total = len(data)

        logger.info(f"Verifying {total:,} bytes")
        for offset in range(0, total, CHUNK_SIZE):
            chunk = data[offset:offset + CHUNK_SIZE]
            self._exchange(FlashVerifyCommand(offset, chunk, key), ResponseType.FLASH_VERIFY)
            self._progress(offset + len(chunk), total)

        self._progress(total, total)

    def config_read(self) -> DeviceConfig:
        """Read option bytes, bootloader version and chip unique ID."""
        self._begin("Config Read")
        self._progress(None, None)

        resp: ConfigReadResponse = self._exchange(ConfigReadCommand(), ResponseType.CONFIG_READ)

        unique_id = resp.chip_unique_id
        if not unique_id_checksum_ok(unique_id):
            logger.warning("Possibly invalid chip unique ID; checksum mismatch")

        self.option_bytes = resp.option_bytes_raw
        self.bootloader_version = resp.bootloader_version
        self.chip_unique_id = unique_id

        opt = self.option_bytes
        logger.info("Device configuration:")
        logger.info(f"   RDPR: 0x{opt[0]:02X}")
        logger.info(f"   USER: 0x{opt[1]:02X}")
        logger.info(f"  DATA0: 0x{opt[2]:02X}")
        logger.info(f"  DATA1: 0x{opt[3]:02X}")
        for i, value in enumerate(opt[4:8]):
            logger.info(f"  WRPR{i}: 0x{value:02X}")
        logger.info(f"  BTVER: {self.bootloader_version}")
        logger.info(f"  UNIID: {hex_bytes(unique_id, ' ')}")

        self._progress(100, 100)
        return DeviceConfig(
            option_bytes=list(self.option_bytes),
            bootloader_version=self.bootloader_version,
            chip_unique_id=unique_id,
        )

    def config_write(self, config: Sequence[int]) -> None:
        """
        Write option bytes.

        Args:
            config: RDPR, USER, DATA0, DATA1, WRPR0, WRPR1, WRPR2, WRPR3
        """
        self._begin("Config Write")
        cmd = ConfigWriteCommand(config)
        self._progress(None, None)

        self._exchange(cmd, ResponseType.CONFIG_WRITE)

        self._progress(100, 100)
