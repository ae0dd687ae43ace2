"""
Core module for WCH ISP.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Byte, option byte and USB ID parsing (parsing.py)
- Result objects (results.py)
- Log capture and log sink adapters (logsink.py)
- Complete bootloader workflows (actions.py)

Front ends should call into this module rather than sequencing sessions
themselves.
"""

from .safety import (
    SafetyContext,
    require_write_permission,
    WritePermissionError,
    CONFIRMATION_TOKEN,
)
from .parsing import parse_byte, parse_config_bytes, parse_vid_pid
from .results import OperationResult
from .logsink import CallbackLogHandler, ListLogHandler
from .actions import (
    read_config,
    write_config,
    flash_firmware,
    verify_firmware,
    erase_flash,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    "CONFIRMATION_TOKEN",
    # Parsing
    "parse_byte",
    "parse_config_bytes",
    "parse_vid_pid",
    # Results
    "OperationResult",
    # Logging
    "CallbackLogHandler",
    "ListLogHandler",
    # Actions
    "read_config",
    "write_config",
    "flash_firmware",
    "verify_firmware",
    "erase_flash",
]
