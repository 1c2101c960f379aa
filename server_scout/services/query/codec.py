"""
Wire codec for the directory (master server) and server query protocols.

Pure functions over ``bytes``; no sockets, no state.

Directory query:
- Request: FF FF FF FF 31 <region> "0.0.0.0:0" 00 "\\gamedir\\<game>" 00
- Response: 6-byte header (FF FF FF FF 66 0A) + 6-byte records
  (4 IPv4 octets, big-endian port). A 0.0.0.0:0 record ends the list.

Info query:
- Request: FF FF FF FF "TSource Engine Query" 00
- Response: FF FF FF FF 'I', protocol, name, map, folder, game, app id,
  players, max players, bots, server type, environment, visibility, VAC,
  version, then an optional extra-data block.
  The 'I' type byte must precede the protocol byte, and the app id is a
  16-bit little-endian field read right after the game string, so a reply
  missing either is rejected or decodes the following fields out of place.

Player query:
- Request: FF FF FF FF 'U' + 4-byte challenge. The placeholder challenge
  FF FF FF FF is sent as-is; servers that insist on a handshake answer with a
  challenge packet ('A'), which is reported as a malformed response.
- Response: FF FF FF FF 'D', count, then per player: index, name,
  int32 LE score, float32 LE duration in seconds.

Every decoding failure raises ``MalformedResponse``.
"""
import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple

from server_scout.core.errors import MalformedResponse

PACKET_PREFIX = b"\xff\xff\xff\xff"

MASTER_QUERY_HEADER = 0x31
MASTER_REGION_ALL = 0xFF
MASTER_SEED = "0.0.0.0:0"
MASTER_RESPONSE_HEADER_SIZE = 6
MASTER_RECORD_SIZE = 6
MASTER_TERMINATOR = "0.0.0.0:0"

INFO_REQUEST = PACKET_PREFIX + b"TSource Engine Query\x00"
INFO_RESPONSE_HEADER = 0x49  # 'I'

PLAYER_CHALLENGE_PLACEHOLDER = b"\xff\xff\xff\xff"
PLAYER_REQUEST = PACKET_PREFIX + b"\x55" + PLAYER_CHALLENGE_PLACEHOLDER
PLAYER_RESPONSE_HEADER = 0x44  # 'D'
CHALLENGE_RESPONSE_HEADER = 0x41  # 'A'

# Extra data flag bits
EDF_PORT = 0x80
EDF_STEAM_ID = 0x10
EDF_SPECTATOR = 0x40
EDF_KEYWORDS = 0x20
EDF_GAME_ID = 0x01


@dataclass
class ServerInfo:
    """Decoded info-query response."""
    protocol: int
    name: str
    map: str
    folder: str
    game: str
    app_id: int
    players: int
    max_players: int
    bots: int
    server_type: str  # d (dedicated), l (listen), p (proxy)
    environment: str  # l, w, m/o
    visibility: int  # 0 public, 1 password protected
    vac: int
    version: str
    port: Optional[int] = None
    steam_id: Optional[int] = None
    keywords: str = ""
    game_id: Optional[int] = None

    @property
    def password_protected(self) -> bool:
        return self.visibility == 1

    @property
    def secure(self) -> bool:
        return self.vac == 1


@dataclass
class PlayerInfo:
    """One entry of a player-query response."""
    index: int
    name: str
    score: int
    duration: float


class _Reader:
    """Bounds-checked cursor over a response buffer."""

    def __init__(self, buf: bytes, offset: int = 0):
        self.buf = buf
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.buf) - self.offset

    def byte(self) -> int:
        if self.remaining < 1:
            raise MalformedResponse(f"Expected 1 byte at offset {self.offset}, buffer is {len(self.buf)} bytes")
        value = self.buf[self.offset]
        self.offset += 1
        return value

    def char(self) -> str:
        return chr(self.byte())

    def unpack(self, fmt: str):
        size = struct.calcsize(fmt)
        if self.remaining < size:
            raise MalformedResponse(
                f"Expected {size} bytes at offset {self.offset}, {self.remaining} left"
            )
        values = struct.unpack_from(fmt, self.buf, self.offset)
        self.offset += size
        return values[0] if len(values) == 1 else values

    def cstring(self) -> str:
        value, length = read_cstring(self.buf, self.offset)
        self.offset += length + 1
        return value


def read_cstring(buf: bytes, offset: int) -> Tuple[str, int]:
    """
    Read a null-terminated string starting at ``offset``.

    Returns:
        (decoded string, length in bytes without the terminator)

    Raises:
        MalformedResponse: if the offset is out of range or no terminator
            is found before the end of the buffer
    """
    if offset < 0 or offset > len(buf):
        raise MalformedResponse(f"String offset {offset} outside buffer of {len(buf)} bytes")

    end = buf.find(b"\x00", offset)
    if end == -1:
        raise MalformedResponse(f"Unterminated string at offset {offset}")

    raw = buf[offset:end]
    return raw.decode("utf-8", errors="replace"), len(raw)


def _check_prefix(reader: _Reader) -> None:
    if reader.remaining < len(PACKET_PREFIX) or reader.buf[:4] != PACKET_PREFIX:
        raise MalformedResponse("Missing FF FF FF FF packet prefix")
    reader.offset += len(PACKET_PREFIX)


# ─────────────────────────────────────────────────────────────────────────
# Directory protocol
# ─────────────────────────────────────────────────────────────────────────

def build_master_query(
    game_dir: str,
    region: int = MASTER_REGION_ALL,
    seed: str = MASTER_SEED
) -> bytes:
    """Encode a directory query for servers running ``game_dir``."""
    return (
        PACKET_PREFIX
        + bytes([MASTER_QUERY_HEADER, region])
        + seed.encode("ascii") + b"\x00"
        + f"\\gamedir\\{game_dir}".encode("utf-8") + b"\x00"
    )


def parse_master_response(buf: bytes) -> List[str]:
    """
    Decode a directory response datagram into "ip:port" strings.

    Records are read while a full 6-byte record remains; a trailing partial
    record and the 0.0.0.0:0 terminator are ignored.

    Raises:
        MalformedResponse: if the buffer is shorter than the reply header
    """
    if len(buf) < MASTER_RESPONSE_HEADER_SIZE:
        raise MalformedResponse(f"Directory response too short: {len(buf)} bytes")

    addresses = []
    offset = MASTER_RESPONSE_HEADER_SIZE
    while offset + MASTER_RECORD_SIZE <= len(buf):
        a, b, c, d, port = struct.unpack_from(">BBBBH", buf, offset)
        offset += MASTER_RECORD_SIZE

        address = f"{a}.{b}.{c}.{d}:{port}"
        if address == MASTER_TERMINATOR:
            break
        addresses.append(address)

    return addresses


# ─────────────────────────────────────────────────────────────────────────
# Info query
# ─────────────────────────────────────────────────────────────────────────

def parse_info(buf: bytes) -> ServerInfo:
    """Decode an info-query response."""
    reader = _Reader(buf)
    _check_prefix(reader)

    header = reader.byte()
    if header != INFO_RESPONSE_HEADER:
        raise MalformedResponse(f"Unexpected info response header 0x{header:02x}")

    protocol = reader.byte()
    name = reader.cstring()
    map_name = reader.cstring()
    folder = reader.cstring()
    game = reader.cstring()
    app_id = reader.unpack("<H")
    players = reader.byte()
    max_players = reader.byte()
    bots = reader.byte()
    server_type = reader.char()
    environment = reader.char()
    visibility = reader.byte()
    vac = reader.byte()
    version = reader.cstring()

    info = ServerInfo(
        protocol=protocol,
        name=name,
        map=map_name,
        folder=folder,
        game=game,
        app_id=app_id,
        players=players,
        max_players=max_players,
        bots=bots,
        server_type=server_type,
        environment=environment,
        visibility=visibility,
        vac=vac,
        version=version,
    )

    if reader.remaining > 0:
        edf = reader.byte()
        if edf & EDF_PORT:
            info.port = reader.unpack("<H")
        if edf & EDF_STEAM_ID:
            info.steam_id = reader.unpack("<Q")
        if edf & EDF_SPECTATOR:
            reader.unpack("<H")
            reader.cstring()
        if edf & EDF_KEYWORDS:
            info.keywords = reader.cstring()
        if edf & EDF_GAME_ID:
            info.game_id = reader.unpack("<Q")

    return info


# ─────────────────────────────────────────────────────────────────────────
# Player query
# ─────────────────────────────────────────────────────────────────────────

def parse_players(buf: bytes) -> List[PlayerInfo]:
    """Decode a player-query response."""
    reader = _Reader(buf)
    _check_prefix(reader)

    header = reader.byte()
    if header == CHALLENGE_RESPONSE_HEADER:
        raise MalformedResponse("Server requires a challenge handshake for player queries")
    if header != PLAYER_RESPONSE_HEADER:
        raise MalformedResponse(f"Unexpected player response header 0x{header:02x}")

    count = reader.byte()
    players = []
    for _ in range(count):
        index = reader.byte()
        name = reader.cstring()
        score = reader.unpack("<i")
        duration = reader.unpack("<f")
        players.append(PlayerInfo(index=index, name=name, score=score, duration=duration))

    return players
