"""
Outcome of a bootloader workflow.

The workflows in actions.py fill in the fields that apply to them; the CLI
reads them back to print tables and pick an exit status.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from wch_isp.protocol.session import DeviceConfig


@dataclass
class OperationResult:
    """
    Attributes:
        ok: Whether the whole sequence completed
        operation: "config_read", "config_write", "flash", "verify" or "erase"
        device: Selected device name
        image_size: Sector-padded image length for flash/verify
        image_sha256: Digest of that image
        config: Configuration read at the start of the session
        written_config: Option bytes sent by a config write
        sectors_erased: Sector count passed to the erase command
        verified: Flash contents matched the image
        warnings: Warnings logged while the session ran
        errors: Error that stopped the sequence
    """
    ok: bool
    operation: str
    device: str = ""
    image_size: int = 0
    image_sha256: str = ""
    config: Optional[DeviceConfig] = None
    written_config: List[int] = field(default_factory=list)
    sectors_erased: int = 0
    verified: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    @classmethod
    def success(cls, operation: str, device: str = "", **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, device=device, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, device: str = "", **kwargs) -> "OperationResult":
        return cls(ok=False, operation=operation, device=device, errors=[error], **kwargs)
