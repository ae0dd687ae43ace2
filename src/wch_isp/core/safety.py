"""
Write gating for flash-modifying operations.

Flash write, flash erase and option byte writes all change the device, so
front ends must pass the same checks before any of them run.
"""

from dataclasses import dataclass
from typing import Callable, Optional

CONFIRMATION_TOKEN = "ERASE"


class WritePermissionError(Exception):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why the write was denied
        details: Additional context (device, operation, size)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Attributes:
        write_enabled: Whether --write was given
        assume_yes: Skip the interactive confirmation (--yes)
        device_name: Selected device name
        prompt_confirmation: Callback asking the user to type the token
    """
    write_enabled: bool = False
    assume_yes: bool = False
    device_name: str = ""
    prompt_confirmation: Optional[Callable[[str], str]] = None


def require_write_permission(
    ctx: SafetyContext,
    operation: str,
    confirm: bool = False,
    bytes_length: int = 0,
) -> None:
    """
    Enforce write permission rules.

    Rules:
    1. Write must be explicitly enabled
    2. Device must be known
    3. Operations needing confirmation prompt unless assume_yes is set

    Raises:
        WritePermissionError: If the write is not permitted
    """
    details = {
        "operation": operation,
        "device": ctx.device_name or "Unknown",
        "bytes_length": bytes_length,
    }

    if not ctx.write_enabled:
        raise WritePermissionError(
            f"{operation} modifies the device and requires the --write flag",
            details=details,
        )

    if not ctx.device_name:
        raise WritePermissionError("Cannot write to an unknown device", details=details)

    if not confirm or ctx.assume_yes:
        return

    if ctx.prompt_confirmation is None:
        raise WritePermissionError(
            f"{operation} requires confirmation; use --yes in non-interactive mode",
            details=details,
        )

    answer = ctx.prompt_confirmation(
        f"Type {CONFIRMATION_TOKEN} to {operation.lower()} {ctx.device_name}"
    )
    if (answer or "").strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError("Confirmation not given; aborting", details=details)
