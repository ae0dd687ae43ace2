"""
Exception hierarchy for WCH ISP operations.

Every error raised by the protocol engine, the transports and the firmware
decoders derives from WCHISPError, so callers orchestrating a multi-step
sequence can stop on the first failure with a single except clause.
"""


class WCHISPError(Exception):
    """Base exception for all WCH ISP errors"""
    pass


# Protocol framing / response errors


class InvalidPacketError(WCHISPError):
    """Received packet has a bad header or checksum"""

    def __init__(self, message: str = "Invalid packet; bad header or checksum"):
        super().__init__(message)


class InvalidResponseError(WCHISPError):
    """Response has an unknown type or inconsistent data length"""

    def __init__(self, message: str = "Invalid response; unknown type or bad data length"):
        super().__init__(message)


class UnsuccessfulResponseError(WCHISPError):
    """Well-formed response reporting a device-side failure"""

    def __init__(self, operation: str = "", code: int = None):
        self.operation = operation
        self.code = code
        message = "Unsuccessful response; command returned error"
        if operation:
            message = f"Unsuccessful response to {operation}; command returned error"
        if code is not None:
            message += f" (0x{code:02X})"
        super().__init__(message)


class ProtocolInvariantError(WCHISPError):
    """Client and device disagree about shared session state"""
    pass


class KeyChecksumMismatchError(ProtocolInvariantError):
    """Locally derived key checksum differs from the device's"""
    pass


class DeviceTypeMismatchError(ProtocolInvariantError):
    """Bootloader reported a different device type than selected"""
    pass


# Transport errors


class TransportError(WCHISPError):
    """Base exception for transport layer errors"""
    pass


class TransportTimeoutError(TransportError):
    """Expected bytes did not arrive before the timeout expired"""
    pass


class UnexpectedDataError(TransportError):
    """More bytes were received than the expected response length"""
    pass


class DeviceNotFoundError(WCHISPError):
    """Requested device is not connected or not in the catalog"""
    pass


# Firmware decoding errors


class FirmwareDecodeError(WCHISPError):
    """Malformed or unsupported firmware image"""
    pass


class MaximumSizeExceededError(FirmwareDecodeError):
    """Decoded image would grow past the maximum allowed size"""

    def __init__(self, max_size: int):
        self.max_size = max_size
        super().__init__(f"Maximum size of {max_size:,} bytes exceeded")


class FirmwareLoadError(WCHISPError):
    """Firmware file could not be read or downloaded"""
    pass
