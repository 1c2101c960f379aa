"""Unit tests for the query wire codec.

Test Strategy:
1. Directory replies decode to "ip:port" strings and stop at the terminator
2. Info replies decode every fixed field and the optional extra-data block
3. Any truncation inside the info reply raises MalformedResponse
4. Player replies decode; challenge replies are reported as malformed
"""
import struct

import pytest

from server_scout.core.errors import MalformedResponse
from server_scout.services.query.codec import (
    INFO_REQUEST,
    PACKET_PREFIX,
    PLAYER_REQUEST,
    build_master_query,
    parse_info,
    parse_master_response,
    parse_players,
    read_cstring,
)


class TestReadCString:
    """Test suite for null-terminated string reads."""

    def test_reads_string_and_length(self):
        """Should return the decoded text and its byte length."""
        assert read_cstring(b"abc\x00def\x00", 0) == ("abc", 3)
        assert read_cstring(b"abc\x00def\x00", 4) == ("def", 3)

    def test_empty_string(self):
        """Should return an empty string when the terminator comes first."""
        assert read_cstring(b"\x00rest", 0) == ("", 0)

    def test_unterminated_string_raises(self):
        """Should raise MalformedResponse when no terminator follows the offset."""
        with pytest.raises(MalformedResponse):
            read_cstring(b"abc\x00def", 4)

    def test_offset_out_of_range_raises(self):
        """Should raise MalformedResponse for an offset past the buffer."""
        with pytest.raises(MalformedResponse):
            read_cstring(b"abc\x00", 10)

    def test_invalid_utf8_is_replaced(self):
        """Should decode invalid UTF-8 with replacement characters."""
        value, length = read_cstring(b"\xffok\x00", 0)
        assert length == 3
        assert value.endswith("ok")


class TestDirectoryCodec:
    """Test suite for the directory query and reply."""

    # Request encoding
    # ─────────────────────────────────────────────────────────────

    def test_query_layout(self):
        """Should encode prefix, header, region, seed and game filter."""
        query = build_master_query("garrysmod")
        assert query.startswith(PACKET_PREFIX + bytes([0x31, 0xFF]))
        assert b"0.0.0.0:0\x00" in query
        assert query.endswith(b"\\gamedir\\garrysmod\x00")

    # Reply decoding
    # ─────────────────────────────────────────────────────────────

    def test_single_record(self):
        """Should skip the 6-byte header and decode a big-endian port."""
        buf = bytes([1, 2, 3, 4, 5, 6, 192, 168, 1, 1, 0x69, 0xA7])
        assert parse_master_response(buf) == ["192.168.1.1:27047"]

    def test_stops_at_terminator(self):
        """Should stop reading at the 0.0.0.0:0 record."""
        header = b"\xff\xff\xff\xff\x66\x0a"
        records = bytes([10, 0, 0, 1, 0x69, 0x87]) + bytes(6) + bytes([10, 0, 0, 2, 0x69, 0x87])
        assert parse_master_response(header + records) == ["10.0.0.1:27015"]

    def test_ignores_trailing_partial_record(self):
        """Should ignore a record cut short at the end of the datagram."""
        buf = bytes(6) + bytes([10, 0, 0, 1, 0x69, 0x87]) + bytes([10, 0, 0])
        assert parse_master_response(buf) == ["10.0.0.1:27015"]

    def test_header_only(self):
        """Should return no addresses for a header-only reply."""
        assert parse_master_response(bytes(6)) == []

    def test_too_short_raises(self):
        """Should raise MalformedResponse for a reply shorter than the header."""
        with pytest.raises(MalformedResponse):
            parse_master_response(b"\xff\xff")


class TestInfoCodec:
    """Test suite for info query replies."""

    def test_request_bytes(self):
        """Should send the standard engine query string."""
        assert INFO_REQUEST == b"\xff\xff\xff\xffTSource Engine Query\x00"

    def test_decodes_fields(self, build_info_reply):
        """Should decode every field of a reply without extra data."""
        info = parse_info(build_info_reply())

        assert info.protocol == 17
        assert info.name == "[PL] DarkRP Polska"
        assert info.map == "rp_downtown_v4c"
        assert info.folder == "garrysmod"
        assert info.game == "DarkRP"
        assert info.app_id == 4000
        assert info.players == 12
        assert info.max_players == 64
        assert info.bots == 0
        assert info.server_type == "d"
        assert info.environment == "l"
        assert info.password_protected is False
        assert info.secure is True
        assert info.version == "2024.10.29"
        assert info.keywords == ""

    def test_decodes_keywords(self, info_reply):
        """Should read keywords from the extra-data block."""
        info = parse_info(info_reply)
        assert info.keywords == "gm:darkrp polska"
        assert info.port is None

    def test_decodes_port_and_game_id(self, build_info_reply):
        """Should read the port and game id flags in order."""
        buf = build_info_reply() + bytes([0x80 | 0x01]) + struct.pack("<H", 27015) + struct.pack("<Q", 4000)
        info = parse_info(buf)
        assert info.port == 27015
        assert info.game_id == 4000

    def test_unicode_name(self, build_info_reply):
        """Should decode UTF-8 server names."""
        info = parse_info(build_info_reply(name="Serwer Łódź 🇵🇱"))
        assert info.name == "Serwer Łódź 🇵🇱"

    def test_truncation_anywhere_raises(self, build_info_reply):
        """Should raise MalformedResponse for every truncated reply."""
        reply = build_info_reply()
        for cut in range(len(reply)):
            with pytest.raises(MalformedResponse):
                parse_info(reply[:cut])

    def test_wrong_header_raises(self, build_info_reply):
        """Should reject a reply whose type byte is not 'I'."""
        reply = bytearray(build_info_reply())
        reply[4] = ord("m")
        with pytest.raises(MalformedResponse):
            parse_info(bytes(reply))

    def test_missing_prefix_raises(self, build_info_reply):
        """Should reject a reply without the FF FF FF FF prefix."""
        with pytest.raises(MalformedResponse):
            parse_info(build_info_reply()[4:])

    def test_missing_type_byte_raises(self, build_info_reply):
        """Should reject a reply that starts with the protocol byte instead of 'I'."""
        reply = build_info_reply()
        with pytest.raises(MalformedResponse):
            parse_info(reply[:4] + reply[5:])

    def test_app_id_is_two_bytes_little_endian(self, build_info_reply):
        """Should read the app id as a 16-bit little-endian field after the game string."""
        info = parse_info(build_info_reply(app_id=0x1234))
        assert info.app_id == 0x1234
        assert info.players == 12


class TestPlayerCodec:
    """Test suite for player query replies."""

    def test_request_uses_placeholder_challenge(self):
        """Should send 'U' followed by the FF FF FF FF placeholder."""
        assert PLAYER_REQUEST == b"\xff\xff\xff\xff\x55\xff\xff\xff\xff"

    def test_decodes_players(self, build_player_reply):
        """Should decode index, name, score and duration per player."""
        players = parse_players(build_player_reply([("Kowalski", 15, 125.5), ("Nowak", -2, 3.0)]))

        assert [p.name for p in players] == ["Kowalski", "Nowak"]
        assert players[0].index == 0
        assert players[0].score == 15
        assert players[0].duration == pytest.approx(125.5)
        assert players[1].score == -2

    def test_empty_server(self, build_player_reply):
        """Should return an empty list for a zero player count."""
        assert parse_players(build_player_reply([])) == []

    def test_truncated_player_raises(self, build_player_reply):
        """Should raise MalformedResponse when the count overstates the entries."""
        reply = build_player_reply([("Kowalski", 15, 125.5)])
        with pytest.raises(MalformedResponse):
            parse_players(reply[:-3])

    def test_challenge_reply_raises(self):
        """Should report a challenge reply as malformed."""
        with pytest.raises(MalformedResponse, match="challenge"):
            parse_players(PACKET_PREFIX + b"A" + b"\x01\x02\x03\x04")
