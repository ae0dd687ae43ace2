"""Tests for response decoding and success rules."""

import pytest

from wch_isp.errors import InvalidResponseError
from wch_isp.protocol.responses import (
    BootloaderVersion,
    ConfigReadResponse,
    FlashVerifyResponse,
    IdentifyResponse,
    KeyResponse,
    Response,
    ResponseType,
    decode_response,
)

from conftest import DEFAULT_OPTION_BYTES, VALID_UID, config_read_data, response_payload


def test_response_sizes():
    assert ResponseType.IDENTIFY.size == 6
    assert ResponseType.CONFIG_READ.size == 30
    assert ResponseType.from_code(0xA8) is ResponseType.CONFIG_WRITE
    assert ResponseType.from_code(0x00) is None


def test_decode_selects_subclass():
    resp = decode_response(response_payload(0xA1, bytes([0x30, 0x21])))
    assert isinstance(resp, IdentifyResponse)
    assert resp.is_valid()
    assert resp.success
    assert (resp.device_variant, resp.device_type) == (0x30, 0x21)


def test_decode_rejects_short_payload():
    with pytest.raises(InvalidResponseError, match="shorter than the header"):
        decode_response(b"\xA1\x00")


def test_decode_rejects_unknown_opcode():
    with pytest.raises(InvalidResponseError, match="unknown type 0x99"):
        decode_response(response_payload(0x99, b"\x00\x00"))


def test_length_mismatch_is_invalid():
    payload = bytearray(response_payload(0xA4, b"\x00\x00"))
    payload[2] = 3
    assert not decode_response(bytes(payload)).is_valid()


def test_empty_data_is_invalid():
    assert not decode_response(response_payload(0xA2, b"")).is_valid()


def test_from_bytes_returns_none_when_too_short():
    assert Response.from_bytes(b"\xA1") is None


class TestSuccessRules:
    @pytest.mark.parametrize("code", [0xA2, 0xA4, 0xA5, 0xA6, 0xA8])
    def test_status_zero_is_success(self, code):
        assert decode_response(response_payload(code, b"\x00\x00")).success
        assert not decode_response(response_payload(code, b"\xFE\x00")).success

    def test_identify_error_codes(self):
        assert not decode_response(response_payload(0xA1, b"\xF1\x00")).success
        assert decode_response(response_payload(0xA1, b"\xEF\x00")).success

    def test_key_zero_checksum_is_failure(self):
        resp = decode_response(response_payload(0xA3, b"\x00\x00"))
        assert isinstance(resp, KeyResponse)
        assert not resp.success

    def test_key_checksum_fe_counts_as_success(self):
        resp = decode_response(response_payload(0xA3, b"\xFE\x00"))
        assert resp.success
        assert resp.key_checksum == 0xFE

    def test_verify_mismatch_status(self):
        resp = decode_response(response_payload(0xA6, b"\xF5\x00"))
        assert isinstance(resp, FlashVerifyResponse)
        assert not resp.success
        assert resp.status == 0xF5


class TestConfigRead:
    def make(self):
        data = config_read_data(DEFAULT_OPTION_BYTES, version=(2, 9))
        return decode_response(response_payload(0xA7, data))

    def test_fields(self):
        resp = self.make()
        assert isinstance(resp, ConfigReadResponse)
        assert resp.success
        assert resp.option_bytes_raw == DEFAULT_OPTION_BYTES
        assert resp.option_bytes["rdpr"] == 0xA5
        assert resp.option_bytes["wrpr"] == [0xFF] * 4
        assert resp.bootloader_version == BootloaderVersion(2, 9)
        assert str(resp.bootloader_version) == "2.9"
        assert resp.chip_unique_id == VALID_UID

    def test_two_digit_version(self):
        data = config_read_data(DEFAULT_OPTION_BYTES, version=(12, 34))
        resp = decode_response(response_payload(0xA7, data))
        assert str(resp.bootloader_version) == "12.34"

    def test_short_config_is_not_success(self):
        resp = decode_response(response_payload(0xA7, b"\x00\x00"))
        assert not resp.success
