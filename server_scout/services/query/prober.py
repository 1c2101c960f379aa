"""
Per-server UDP prober.

Each probe sends the info query and the player query at the same time over
two independent sockets. The two queries fail independently: a server is
online when either one answers.

Usage:
    prober = ServerProber(timeout=5.0)
    result = await prober.probe("203.0.113.7:27015")
    if result.online:
        print(result.info.name if result.info else "players only")
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Optional, List, Tuple

from server_scout.core.errors import MalformedResponse, NetworkError, QueryTimeout, ScoutError
from server_scout.core.logging import get_logger
from server_scout.services.query.codec import (
    INFO_REQUEST,
    PLAYER_REQUEST,
    PlayerInfo,
    ServerInfo,
    parse_info,
    parse_players,
)

logger = get_logger(__name__)


def split_address(address: str) -> Tuple[str, int]:
    """Split "ip:port" into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Invalid address: {address!r}")
    return host, int(port)


class _SingleReplyProtocol(asyncio.DatagramProtocol):
    """Resolves a future with the first datagram received."""

    def __init__(self, reply: asyncio.Future):
        self.reply = reply

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.reply.done():
            self.reply.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.reply.done():
            self.reply.set_exception(NetworkError(str(exc)))

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None and not self.reply.done():
            self.reply.set_exception(NetworkError(str(exc)))


async def udp_request(host: str, port: int, payload: bytes, timeout: float) -> bytes:
    """
    Send one datagram and wait for one reply.

    Raises:
        QueryTimeout: no reply within ``timeout`` seconds
        NetworkError: the socket could not be opened or reported an error
    """
    loop = asyncio.get_running_loop()
    reply = loop.create_future()

    try:
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _SingleReplyProtocol(reply),
            remote_addr=(host, port),
        )
    except OSError as e:
        raise NetworkError(f"Cannot open UDP socket to {host}:{port}: {e}") from e

    try:
        transport.sendto(payload)
        return await asyncio.wait_for(reply, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise QueryTimeout(f"No reply from {host}:{port} within {timeout}s") from e
    finally:
        transport.close()


@dataclass
class ProbeResult:
    """Outcome of probing one address."""
    address: str
    info: Optional[ServerInfo] = None
    players: Optional[List[PlayerInfo]] = None
    latency_ms: Optional[int] = None
    info_error: Optional[str] = None
    players_error: Optional[str] = None

    @property
    def online(self) -> bool:
        return self.info is not None or self.players is not None

    @property
    def ip(self) -> str:
        return split_address(self.address)[0]

    @property
    def port(self) -> int:
        return split_address(self.address)[1]


class ServerProber:
    """
    Issues the info and player queries for one address.

    Args:
        timeout: Per-query timeout in seconds
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def query_info(self, host: str, port: int) -> Tuple[ServerInfo, int]:
        """Returns the decoded info reply and the round-trip time in ms."""
        started = time.perf_counter()
        data = await udp_request(host, port, INFO_REQUEST, self.timeout)
        latency_ms = int((time.perf_counter() - started) * 1000)
        return parse_info(data), latency_ms

    async def query_players(self, host: str, port: int) -> List[PlayerInfo]:
        data = await udp_request(host, port, PLAYER_REQUEST, self.timeout)
        return parse_players(data)

    async def probe(self, address: str) -> ProbeResult:
        host, port = split_address(address)
        info_outcome, players_outcome = await asyncio.gather(
            self.query_info(host, port),
            self.query_players(host, port),
            return_exceptions=True,
        )

        result = ProbeResult(address=address)

        if isinstance(info_outcome, BaseException):
            result.info_error = self._describe(address, "info", info_outcome)
        else:
            result.info, result.latency_ms = info_outcome

        if isinstance(players_outcome, BaseException):
            result.players_error = self._describe(address, "player", players_outcome)
        else:
            result.players = players_outcome

        return result

    @staticmethod
    def _describe(address: str, query: str, error: BaseException) -> str:
        if isinstance(error, asyncio.CancelledError):
            raise error
        if isinstance(error, (QueryTimeout, NetworkError, MalformedResponse)):
            logger.debug(f"{query} query to {address} failed: {error}")
        elif isinstance(error, ScoutError):
            logger.warning(f"{query} query to {address} failed: {error}")
        else:
            logger.error(f"Unexpected {query} query error for {address}: {error!r}")
        return f"{type(error).__name__}: {error}"
