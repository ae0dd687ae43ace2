"""Tests for the bootloader session state machine against a simulated device."""

import logging

import pytest

from wch_isp.errors import (
    DeviceTypeMismatchError,
    InvalidPacketError,
    InvalidResponseError,
    KeyChecksumMismatchError,
    ProtocolInvariantError,
    UnsuccessfulResponseError,
    WCHISPError,
)
from wch_isp.protocol.session import (
    CHUNK_SIZE,
    DeviceIdentity,
    Session,
    unique_id_checksum_ok,
)

from conftest import (
    BAD_UID,
    VALID_UID,
    FakeBootloader,
    frame_response,
    response_payload,
)


def make_session(trx, variant=0x30, device_type=0x21):
    progress = []
    sess = Session(trx, variant, device_type, progress_cb=lambda inc, total: progress.append((inc, total)))
    return sess, progress


def keyed_session(trx):
    sess, progress = make_session(trx)
    sess.start()
    sess.identify()
    sess.config_read()
    sess.key_generate()
    progress.clear()
    return sess, progress


def test_unique_id_checksum():
    assert unique_id_checksum_ok(VALID_UID)
    assert not unique_id_checksum_ok(BAD_UID)
    assert not unique_id_checksum_ok(VALID_UID[:7])


class TestLifecycle:
    def test_context_manager_opens_and_closes(self, bootloader):
        with Session(bootloader, 0x30, 0x21) as sess:
            assert bootloader.is_open
            sess.identify()
        assert not bootloader.is_open
        assert bootloader.close_count == 1

    def test_closes_on_error(self, bootloader):
        bootloader.fail[0xA1] = 0xF1
        with pytest.raises(UnsuccessfulResponseError):
            with Session(bootloader, 0x30, 0x21) as sess:
                sess.identify()
        assert not bootloader.is_open

    def test_sequence_counter(self, bootloader, caplog):
        caplog.set_level(logging.DEBUG, logger="wch_isp")
        sess, _ = make_session(bootloader)
        sess.start()
        sess.identify()
        sess.reset()
        assert sess.sequence == 2
        assert "1: Identify" in caplog.text
        assert "2: Reset" in caplog.text


class TestIdentify:
    def test_matching_device(self, bootloader):
        sess, progress = make_session(bootloader)
        sess.start()
        assert sess.identify() == DeviceIdentity(0x30, 0x21)
        assert progress == [(None, None), (100, 100)]
        assert bootloader.sent[0][:2] == b"\x57\xAB"

    def test_type_mismatch_is_fatal(self):
        trx = FakeBootloader(device_type=0x19)
        sess, _ = make_session(trx)
        sess.start()
        with pytest.raises(DeviceTypeMismatchError, match="0x19"):
            sess.identify()
        assert isinstance(DeviceTypeMismatchError("x"), ProtocolInvariantError)

    def test_variant_mismatch_warns_and_adopts(self, caplog):
        trx = FakeBootloader(variant=0x31)
        sess, _ = make_session(trx)
        sess.start()
        with caplog.at_level(logging.WARNING):
            identity = sess.identify()
        assert identity == DeviceIdentity(0x31, 0x21)
        assert sess.device.variant == 0x31
        assert "variant 0x31 does not match" in caplog.text

    def test_rejected_password(self, bootloader):
        bootloader.fail[0xA1] = 0xF1
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(UnsuccessfulResponseError) as excinfo:
            sess.identify()
        assert excinfo.value.code == 0xF1
        assert excinfo.value.operation == "IDENTIFY"


class TestExchangeErrors:
    def test_bad_checksum(self, bootloader):
        frame = bytearray(frame_response(response_payload(0xA1, b"\x30\x21")))
        frame[-1] ^= 0xFF
        bootloader.raw_responses.append(bytes(frame))
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(InvalidPacketError):
            sess.identify()

    def test_bad_header(self, bootloader):
        frame = bytearray(frame_response(response_payload(0xA1, b"\x30\x21")))
        frame[0] = 0x57
        bootloader.raw_responses.append(bytes(frame))
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(InvalidPacketError):
            sess.identify()

    def test_wrong_response_opcode(self, bootloader):
        bootloader.raw_responses.append(frame_response(response_payload(0xA4, b"\x00\x00")))
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(InvalidResponseError):
            sess.identify()

    def test_declared_length_mismatch(self, bootloader):
        payload = bytearray(response_payload(0xA2, b"\x00\x00"))
        payload[2] = 0x05
        bootloader.raw_responses.append(frame_response(bytes(payload)))
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(InvalidResponseError):
            sess.reset()

    def test_all_errors_share_base(self, bootloader):
        bootloader.fail[0xA2] = 0x01
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(WCHISPError):
            sess.reset()


class TestConfig:
    def test_read(self, bootloader):
        sess, progress = make_session(bootloader)
        sess.start()
        config = sess.config_read()
        assert config.rdpr == 0xA5
        assert config.user == 0x3F
        assert config.wrpr == [0xFF] * 4
        assert str(config.bootloader_version) == "2.9"
        assert config.chip_unique_id == VALID_UID
        assert sess.chip_unique_id == VALID_UID
        assert progress == [(None, None), (100, 100)]

    def test_read_logs_table(self, bootloader, caplog):
        sess, _ = make_session(bootloader)
        sess.start()
        with caplog.at_level(logging.INFO):
            sess.config_read()
        assert "RDPR: 0xA5" in caplog.text
        assert "BTVER: 2.9" in caplog.text
        assert "UNIID: 01 02 03 04 05 06 09 0C" in caplog.text

    def test_bad_unique_id_only_warns(self, caplog):
        trx = FakeBootloader(uid=BAD_UID)
        sess, _ = make_session(trx)
        sess.start()
        with caplog.at_level(logging.WARNING):
            config = sess.config_read()
        assert config.chip_unique_id == BAD_UID
        assert "Possibly invalid chip unique ID" in caplog.text

    def test_write(self, bootloader):
        sess, _ = make_session(bootloader)
        sess.start()
        new_config = [0xA5, 0x3F, 0x12, 0x34, 0x00, 0x00, 0xFF, 0xFF]
        sess.config_write(new_config)
        assert bootloader.option_bytes == new_config
        assert sess.config_read().option_bytes == new_config

    def test_write_rejects_bad_length_before_sending(self, bootloader):
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(ValueError):
            sess.config_write([0xA5])
        assert bootloader.sent == []


class TestKey:
    def test_requires_unique_id(self, bootloader):
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(ProtocolInvariantError, match="unique ID unknown"):
            sess.key_generate()
        assert bootloader.sent == []

    def test_matching_checksum(self, bootloader):
        sess, _ = make_session(bootloader)
        sess.start()
        sess.config_read()
        key = sess.key_generate(seed=bytes(range(60)))
        assert key == bytes([0x0A, 0x26, 0x22, 0x1A, 0x32, 0x0E, 0x02, 0x3A])
        assert bootloader.key == key

    def test_checksum_mismatch(self, bootloader):
        bootloader.key_checksum_offset = 1
        sess, _ = make_session(bootloader)
        sess.start()
        sess.config_read()
        with pytest.raises(KeyChecksumMismatchError, match="local 0xE8, device 0xE9"):
            sess.key_generate(seed=bytes(range(60)))

    def test_regenerating_replaces_key(self, bootloader):
        sess, _ = make_session(bootloader)
        sess.start()
        sess.config_read()
        first = sess.key_generate(seed=bytes(range(60)))
        second = sess.key_generate(seed=bytes(range(1, 61)))
        assert first != second
        assert bootloader.key == second


class TestFlash:
    def test_erase(self, bootloader):
        bootloader.flash[:4] = b"\x00\x00\x00\x00"
        sess, progress = make_session(bootloader)
        sess.start()
        sess.flash_erase(2)
        assert bootloader.flash[:4] == b"\xFF" * 4
        assert bootloader.commands[-1] == (0xA4, bytes([0x02, 0x00, 0x00, 0x00]))
        assert progress == [(None, None), (100, 100)]

    def test_write_requires_key(self, bootloader):
        sess, _ = make_session(bootloader)
        sess.start()
        with pytest.raises(ProtocolInvariantError, match="No session key"):
            sess.flash_write(b"\x00")
        with pytest.raises(ProtocolInvariantError):
            sess.flash_verify(b"\x00")

    def test_write_chunks_and_flushes(self, bootloader):
        data = bytes(range(130))
        sess, progress = keyed_session(bootloader)
        sess.flash_write(data)

        writes = [body for code, body in bootloader.commands if code == 0xA5]
        offsets = [int.from_bytes(body[:4], "little") for body in writes]
        assert offsets == [0, 56, 112, 130]
        assert [len(body) - 5 for body in writes] == [56, 56, 18, 0]
        assert bootloader.flash[:130] == data
        assert progress == [(56, 130), (112, 130), (130, 130), (130, 130)]

    def test_write_payload_is_ciphered(self, bootloader):
        sess, _ = keyed_session(bootloader)
        sess.flash_write(bytes(CHUNK_SIZE))
        first = [body for code, body in bootloader.commands if code == 0xA5][0]
        assert first[5:13] == sess.key

    def test_verify_matches(self, bootloader):
        data = bytes(range(100))
        sess, progress = keyed_session(bootloader)
        sess.flash_write(data)
        sess.key_generate(seed=bytes(range(3, 63)))
        progress.clear()
        sess.flash_verify(data)

        verifies = [body for code, body in bootloader.commands if code == 0xA6]
        assert len(verifies) == 2
        assert progress == [(56, 100), (100, 100), (100, 100)]

    def test_verify_mismatch(self, bootloader):
        sess, _ = keyed_session(bootloader)
        sess.flash_write(b"\x01\x02\x03")
        with pytest.raises(UnsuccessfulResponseError) as excinfo:
            sess.flash_verify(b"\x01\x02\x04")
        assert excinfo.value.code == 0xF5

    def test_failed_chunk_stops_write(self, bootloader):
        sess, _ = keyed_session(bootloader)
        bootloader.fail[0xA5] = 0xFE
        with pytest.raises(UnsuccessfulResponseError):
            sess.flash_write(bytes(200))
        assert [code for code in bootloader.codes() if code == 0xA5] == [0xA5]

    def test_empty_image_sends_only_flush(self, bootloader):
        sess, progress = keyed_session(bootloader)
        sess.flash_write(b"")
        assert [c for c in bootloader.codes() if c == 0xA5] == [0xA5]
        assert progress == [(0, 0)]


class TestUsbMode:
    def test_payloads_are_unframed(self, usb_bootloader):
        sess, _ = make_session(usb_bootloader)
        sess.start()
        sess.identify()
        assert usb_bootloader.sent[0][:3] == bytes([0xA1, 0x12, 0x00])

    def test_full_sequence(self, usb_bootloader):
        data = bytes(range(256)) * 2
        sess, _ = make_session(usb_bootloader)
        with sess:
            sess.identify()
            sess.config_read()
            sess.key_generate()
            sess.flash_erase(1)
            sess.flash_write(data)
            sess.key_generate()
            sess.flash_verify(data)
            sess.reset(True)
        assert usb_bootloader.flash[:len(data)] == data
        assert usb_bootloader.codes()[-1] == 0xA2
        assert usb_bootloader.commands[-1][1] == b"\x01"
