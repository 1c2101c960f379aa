"""Shared pytest fixtures for server-scout tests."""
import struct
from datetime import datetime
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from server_scout.core.database import Database
from server_scout.repositories.gateway import PersistenceGateway
from server_scout.services.query.codec import PACKET_PREFIX, ServerInfo


@pytest.fixture(scope="function")
def database() -> Generator[Database, None, None]:
    """Fresh in-memory database with all tables created."""
    # StaticPool keeps one connection so every session sees the same memory db
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    db = Database("sqlite://", engine=engine)
    db.init_db()

    yield db

    db.dispose()


@pytest.fixture(scope="function")
def gateway(database: Database) -> PersistenceGateway:
    """Persistence gateway with no retry delay."""
    return PersistenceGateway(database, retry_attempts=3, retry_base_delay=0)


@pytest.fixture
def server_info() -> ServerInfo:
    """Parsed info reply for a Polish DarkRP server."""
    return ServerInfo(
        protocol=17,
        name="[PL] DarkRP Polska",
        map="rp_downtown_v4c",
        folder="garrysmod",
        game="DarkRP",
        app_id=4000,
        players=12,
        max_players=64,
        bots=0,
        server_type="d",
        environment="l",
        visibility=0,
        vac=1,
        version="2024.10.29",
        port=27015,
        keywords="gm:darkrp gmc:rp polska",
        game_id=4000,
    )


def _build_info_reply(
    name: str = "[PL] DarkRP Polska",
    map_name: str = "rp_downtown_v4c",
    folder: str = "garrysmod",
    game: str = "DarkRP",
    app_id: int = 4000,
    players: int = 12,
    max_players: int = 64,
    keywords: str = "",
) -> bytes:
    """Raw A2S_INFO reply bytes, optionally with a keywords EDF block."""
    body = bytearray(PACKET_PREFIX)
    body += b"I"
    body += bytes([17])
    for text in (name, map_name, folder, game):
        body += text.encode("utf-8") + b"\x00"
    body += app_id.to_bytes(2, "little")
    body += bytes([players, max_players, 0])
    body += b"dl"
    body += bytes([0, 1])
    body += b"2024.10.29\x00"
    if keywords:
        body += bytes([0x20])
        body += keywords.encode("utf-8") + b"\x00"
    return bytes(body)


def _build_player_reply(players) -> bytes:
    """Raw A2S_PLAYER reply bytes for ``(name, score, duration)`` tuples."""

    body = bytearray(PACKET_PREFIX)
    body += b"D"
    body += bytes([len(players)])
    for index, (name, score, duration) in enumerate(players):
        body += bytes([index])
        body += name.encode("utf-8") + b"\x00"
        body += struct.pack("<lf", score, duration)
    return bytes(body)


@pytest.fixture
def info_reply() -> bytes:
    return _build_info_reply(keywords="gm:darkrp polska")


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 11, 1, 12, 0, 0)


@pytest.fixture
def build_info_reply():
    """Factory for raw info replies."""
    return _build_info_reply


@pytest.fixture
def build_player_reply():
    """Factory for raw player replies."""
    return _build_player_reply
