"""
Core workflow actions for WCH ISP.

Each action runs one complete bootloader sequence over a fresh session,
stops at the first error, always ends the session, and reports the outcome
as an OperationResult. Front ends call these instead of sequencing Session
methods themselves.
"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Callable, Optional, Sequence

from wch_isp.errors import WCHISPError
from wch_isp.firmware import FORMAT_UNKNOWN, Firmware
from wch_isp.models import DeviceInfo
from wch_isp.protocol.session import SECTOR_SIZE, ProgressCallback, Session
from wch_isp.transport.base import DEFAULT_TIMEOUT, Transceiver
from wch_isp.utils.formatting import byte_size

from .logsink import ListLogHandler
from .results import OperationResult

logger = logging.getLogger(__name__)


@contextmanager
def _capture_logs(logger_name: str = "wch_isp"):
    """Collect warnings logged during a core operation."""
    target_logger = logging.getLogger(logger_name)
    handler = ListLogHandler()
    previous_level = target_logger.level
    if previous_level > logging.WARNING:
        target_logger.setLevel(logging.WARNING)
    target_logger.addHandler(handler)
    try:
        yield handler
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _run_session(
    operation: str,
    transceiver: Transceiver,
    device: DeviceInfo,
    steps: Callable[[Session, OperationResult], None],
    progress_cb: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
    **fields,
) -> OperationResult:
    """Open a session, run steps, always end it, and wrap the outcome."""
    with _capture_logs() as captured:
        result = OperationResult.success(operation, device=device.name, **fields)
        session = Session(
            transceiver,
            device.variant,
            device.type,
            progress_cb=progress_cb,
            timeout=timeout,
        )
        try:
            try:
                session.start()
                steps(session, result)
            finally:
                session.end()
        except WCHISPError as e:
            logger.error(f"{operation} failed: {e}")
            result.add_error(str(e))
        except Exception as e:
            logger.exception(f"{operation} failed")
            result.add_error(str(e))

        result.warnings.extend(captured.warnings)
        return result


def read_config(
    transceiver: Transceiver,
    device: DeviceInfo,
    progress_cb: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
    do_reset: bool = True,
) -> OperationResult:
    """
    Read option bytes, bootloader version and chip unique ID.

    Sequence: identify -> config read -> end

    Returns:
        OperationResult with config set to the decoded DeviceConfig
    """
    def steps(sess: Session, result: OperationResult) -> None:
        sess.identify()
        result.config = sess.config_read()
        sess.reset(do_reset)

    return _run_session("config_read", transceiver, device, steps, progress_cb, timeout)


def write_config(
    transceiver: Transceiver,
    device: DeviceInfo,
    config: Sequence[int],
    progress_cb: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
    do_reset: bool = True,
) -> OperationResult:
    """
    Write option bytes (RDPR, USER, DATA0, DATA1, WRPR0-3).

    Sequence: identify -> config read -> config write -> end

    Returns:
        OperationResult with config holding the values before the write
    """
    def steps(sess: Session, result: OperationResult) -> None:
        sess.identify()
        result.config = sess.config_read()
        sess.config_write(config)
        result.written_config = list(config)
        sess.reset(do_reset)

    return _run_session("config_write", transceiver, device, steps, progress_cb, timeout)


def _image_for(firmware: Firmware, device: DeviceInfo, operation: str):
    """Return the sector-padded image, or a failure result if unusable."""
    try:
        if firmware.format == FORMAT_UNKNOWN:
            firmware.parse()
        firmware.fill_to_end_of_segment(SECTOR_SIZE)
        image = firmware.bytes
    except WCHISPError as e:
        logger.error(f"{operation} failed: {e}")
        return None, OperationResult.failure(operation, str(e), device=device.name)

    if len(image) > device.flash_size:
        return None, OperationResult.failure(
            operation,
            f"Firmware size ({byte_size(len(image))}) is larger than "
            f"device flash size ({byte_size(device.flash_size)})",
            device=device.name,
            image_size=len(image),
        )
    return image, None


def flash_firmware(
    transceiver: Transceiver,
    device: DeviceInfo,
    firmware: Firmware,
    progress_cb: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
    do_reset: bool = True,
) -> OperationResult:
    """
    Erase, write and verify a firmware image.

    Sequence: identify -> config read -> key -> erase -> write -> key
    -> verify -> end

    The image is padded to whole 1 KiB sectors first. Images larger than the
    device flash are refused without touching the device.

    Returns:
        OperationResult with image_sha256 of the written image
    """
    image, failure = _image_for(firmware, device, "flash")
    if failure is not None:
        return failure

    def steps(sess: Session, result: OperationResult) -> None:
        sess.identify()
        sess.config_read()
        sess.key_generate()
        sess.flash_erase(firmware.sector_count(SECTOR_SIZE))
        sess.flash_write(image)
        sess.key_generate()
        sess.flash_verify(image)
        result.verified = True
        sess.reset(do_reset)

    return _run_session(
        "flash", transceiver, device, steps, progress_cb, timeout,
        image_size=len(image), image_sha256=hashlib.sha256(image).hexdigest(),
    )


def verify_firmware(
    transceiver: Transceiver,
    device: DeviceInfo,
    firmware: Firmware,
    progress_cb: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
    do_reset: bool = True,
) -> OperationResult:
    """
    Compare a firmware image with flash contents on the device.

    Sequence: identify -> config read -> key -> verify -> end
    """
    image, failure = _image_for(firmware, device, "verify")
    if failure is not None:
        return failure

    def steps(sess: Session, result: OperationResult) -> None:
        sess.identify()
        sess.config_read()
        sess.key_generate()
        sess.flash_verify(image)
        result.verified = True
        sess.reset(do_reset)

    return _run_session(
        "verify", transceiver, device, steps, progress_cb, timeout,
        image_size=len(image), image_sha256=hashlib.sha256(image).hexdigest(),
    )


def erase_flash(
    transceiver: Transceiver,
    device: DeviceInfo,
    progress_cb: Optional[ProgressCallback] = None,
    timeout: float = DEFAULT_TIMEOUT,
    do_reset: bool = True,
) -> OperationResult:
    """
    Erase the device's entire flash.

    Sequence: identify -> config read -> erase(all sectors) -> end
    """
    sectors = -(-device.flash_size // SECTOR_SIZE)

    def steps(sess: Session, result: OperationResult) -> None:
        sess.identify()
        sess.config_read()
        sess.flash_erase(sectors)
        result.sectors_erased = sectors
        sess.reset(do_reset)

    return _run_session("erase", transceiver, device, steps, progress_cb, timeout)
