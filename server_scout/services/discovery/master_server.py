"""
Directory (master server) discovery adapter.

Sends one directory query over UDP and collects the address records from
every reply datagram that arrives within the time budget. The adapter never
raises: on any failure it logs and returns what it has, usually nothing.
"""
import asyncio
from typing import Optional, Set

from server_scout.core.errors import MalformedResponse
from server_scout.core.logging import get_logger
from server_scout.services.query.codec import build_master_query, parse_master_response

logger = get_logger(__name__)

TERMINATOR_RECORD = b"\x00" * 6


class _DirectoryProtocol(asyncio.DatagramProtocol):
    """Accumulates decoded addresses from every datagram received."""

    def __init__(self):
        self.addresses: Set[str] = set()
        self.finished = asyncio.Event()
        self.error: Optional[Exception] = None

    def datagram_received(self, data: bytes, addr) -> None:
        try:
            self.addresses.update(parse_master_response(data))
        except MalformedResponse as e:
            logger.warning(f"Skipping malformed directory datagram from {addr}: {e}")
            return

        if data.endswith(TERMINATOR_RECORD):
            self.finished.set()

    def error_received(self, exc: Exception) -> None:
        self.error = exc
        self.finished.set()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.finished.set()


class MasterServerAdapter:
    """
    Discovery source backed by the directory protocol.

    Args:
        host: Directory server host name
        port: Directory server UDP port
        game_dir: Game directory filter, e.g. "garrysmod"
        budget: Seconds to wait for reply datagrams
    """

    name = "master_server"

    def __init__(
        self,
        host: str = "hl2master.steampowered.com",
        port: int = 27011,
        game_dir: str = "garrysmod",
        budget: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.game_dir = game_dir
        self.budget = budget

    async def discover(self) -> Set[str]:
        """
        Query the directory server.

        Returns:
            Set of "ip:port" candidates (empty on failure or timeout)
        """
        logger.info(f"Discovering servers from directory {self.host}:{self.port}")
        loop = asyncio.get_running_loop()
        protocol = _DirectoryProtocol()

        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: protocol,
                remote_addr=(self.host, self.port),
            )
        except OSError as e:
            logger.error(f"Directory discovery failed: {e}")
            return set()

        try:
            transport.sendto(build_master_query(self.game_dir))
            try:
                await asyncio.wait_for(protocol.finished.wait(), timeout=self.budget)
            except asyncio.TimeoutError:
                # Budget spent; keep whatever arrived
                pass
        finally:
            transport.close()

        if protocol.error is not None:
            logger.error(f"Directory discovery error: {protocol.error}")

        logger.info(f"✅ Directory: {len(protocol.addresses)} servers discovered")
        return set(protocol.addresses)
