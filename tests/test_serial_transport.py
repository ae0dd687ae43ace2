"""Tests for the serial transceiver using a stand-in pyserial port."""

import pytest
import serial

from wch_isp.errors import TransportError, TransportTimeoutError, UnexpectedDataError
from wch_isp.transport import serial_transport
from wch_isp.transport.serial_transport import SerialTransceiver


class FakeSerial:
    """Minimal pyserial Serial replacement fed from a list of read chunks."""

    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.timeout = kwargs.get("timeout")
        self.is_open = True
        self.chunks = []
        self.written = bytearray()
        self.reset_count = 0
        FakeSerial.instances.append(self)

    @property
    def in_waiting(self):
        return len(self.chunks[0]) if self.chunks else 0

    def read(self, size=1):
        if not self.chunks:
            return b""
        return self.chunks.pop(0)

    def write(self, data):
        self.written += data
        return len(data)

    def flush(self):
        pass

    def reset_input_buffer(self):
        self.reset_count += 1

    def close(self):
        self.is_open = False


@pytest.fixture
def fake_serial(monkeypatch):
    FakeSerial.instances = []
    monkeypatch.setattr(serial_transport.serial, "Serial", FakeSerial)
    monkeypatch.setattr(serial_transport, "list_serial_ports", lambda: [])
    return FakeSerial


def open_port(flush=False):
    trx = SerialTransceiver("/dev/ttyUSB0", flush=flush, timeout=0.05)
    trx.open()
    return trx, FakeSerial.instances[-1]


def test_open_uses_115200_8n1(fake_serial):
    trx, ser = open_port()
    assert trx.is_open
    assert ser.kwargs["baudrate"] == 115200
    assert ser.kwargs["bytesize"] == serial.EIGHTBITS
    assert ser.kwargs["parity"] == serial.PARITY_NONE
    assert ser.kwargs["stopbits"] == serial.STOPBITS_ONE
    assert not ser.kwargs["rtscts"]


def test_open_failure(monkeypatch):
    def fail(**kwargs):
        raise serial.SerialException("no such port")

    monkeypatch.setattr(serial_transport.serial, "Serial", fail)
    with pytest.raises(TransportError, match="Cannot open port"):
        SerialTransceiver("/dev/none").open()


def test_flush_drains_junk(fake_serial, monkeypatch):
    class JunkSerial(FakeSerial):
        def __init__(self, **kwargs):
            super().__init__(**kwargs)
            self.chunks.append(b"\x00")

    monkeypatch.setattr(serial_transport.serial, "Serial", JunkSerial)
    SerialTransceiver("/dev/ttyUSB0", flush=True, timeout=0.5).open()
    ser = FakeSerial.instances[-1]
    assert ser.reset_count == 1
    assert ser.chunks == []
    assert ser.timeout == 0.5


def test_flush_skipped_for_denylisted_bridge(fake_serial, monkeypatch):
    monkeypatch.setattr(serial_transport, "port_usb_ids", lambda port: (0x1A86, 0x55D3))
    trx = SerialTransceiver("/dev/ttyACM0", flush=True)
    trx.open()
    assert FakeSerial.instances[-1].reset_count == 0


def test_transmit(fake_serial):
    trx, ser = open_port()
    trx.transmit(b"\x57\xAB\x01")
    assert bytes(ser.written) == b"\x57\xAB\x01"


def test_receive_assembles_chunks(fake_serial):
    trx, ser = open_port()
    ser.chunks = [b"\x55\xAA", b"\xA1\x00\x02", b"\x00\x30\x21\xF4"]
    assert trx.receive(9) == b"\x55\xAA\xA1\x00\x02\x00\x30\x21\xF4"
    assert ser.timeout == 0.05


def test_receive_timeout(fake_serial):
    trx, ser = open_port()
    ser.chunks = [b"\x55"]
    with pytest.raises(TransportTimeoutError, match=r"Timed-out after 50 ms .*\(1/9 bytes\)"):
        trx.receive(9)
    assert ser.timeout == 0.05


def test_receive_overflow(fake_serial):
    trx, ser = open_port()
    ser.chunks = [b"\x00" * 8, b"\x00\x00"]
    with pytest.raises(UnexpectedDataError, match="more than 9 bytes"):
        trx.receive(9)


def test_closed_port_rejected(fake_serial):
    trx, _ = open_port()
    trx.close()
    assert not trx.is_open
    with pytest.raises(TransportError, match="not open"):
        trx.transmit(b"\x00")
    with pytest.raises(TransportError, match="not open"):
        trx.receive(1)


def test_context_manager(fake_serial):
    with SerialTransceiver("/dev/ttyUSB0", flush=False) as trx:
        assert trx.is_open
    assert not trx.is_open
